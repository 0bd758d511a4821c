"""Remote document analysis: task submission, polling and archive decoding."""

from offer_ingest.services.analysis.archive_decoder import decode_archive, normalize_analysis_payload
from offer_ingest.services.analysis.task_client import AnalysisTaskClient
from offer_ingest.services.analysis.task_parsing import build_task_snapshot, extract_task_id

__all__ = [
    "AnalysisTaskClient",
    "build_task_snapshot",
    "decode_archive",
    "extract_task_id",
    "normalize_analysis_payload",
]
