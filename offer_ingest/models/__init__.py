"""Pydantic models for analysis results, sections and unified offers."""

from offer_ingest.models.analysis_models import (
    AnalysisResult,
    AnalysisTask,
    Block,
    BoundingBox,
    Page,
    StructureSummary,
    StructureSummaryPage,
    TaskState,
)
from offer_ingest.models.offer_models import (
    MISSING,
    AdditionalContract,
    AssistanceService,
    BaseContract,
    ExtractionConfidence,
    InsuredPerson,
    InsuredPlan,
    OfferDuration,
    OfferMetadata,
    UnifiedOffer,
)
from offer_ingest.models.section_models import (
    PageRange,
    ParsedSection,
    ProductTypeHeuristic,
    SectionSource,
    SectionType,
    SegmentationResult,
    TextDocument,
)

__all__ = [
    "AnalysisResult",
    "AnalysisTask",
    "Block",
    "BoundingBox",
    "Page",
    "StructureSummary",
    "StructureSummaryPage",
    "TaskState",
    "MISSING",
    "AdditionalContract",
    "AssistanceService",
    "BaseContract",
    "ExtractionConfidence",
    "InsuredPerson",
    "InsuredPlan",
    "OfferDuration",
    "OfferMetadata",
    "UnifiedOffer",
    "PageRange",
    "ParsedSection",
    "ProductTypeHeuristic",
    "SectionSource",
    "SectionType",
    "SegmentationResult",
    "TextDocument",
]
