"""Repository layer modules."""

from offer_ingest.repositories.analysis_repository import AnalysisRepository, resolve_analysis_base_url

__all__ = [
    "AnalysisRepository",
    "resolve_analysis_base_url",
]
