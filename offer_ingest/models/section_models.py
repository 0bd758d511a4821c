"""Data models for section classification.

These models carry classified insurance sections, their page provenance and
the product-type heuristic from segmentation through to the offer builder.
"""

from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from offer_ingest.models.analysis_models import Page


class SectionType(str, Enum):
    """Semantic sections found in insurance offer documents."""

    INSURED = "insured"
    BASE_CONTRACT = "base_contract"
    ADDITIONAL_CONTRACT = "additional_contract"
    ASSISTANCE = "assistance"
    PREMIUM = "premium"
    DISCOUNT = "discount"
    DURATION = "duration"
    UNKNOWN = "unknown"


class PageRange(BaseModel):
    """Inclusive page range a section was read from."""

    model_config = ConfigDict(frozen=True)

    start: int = Field(..., ge=1)
    end: int = Field(..., ge=1)


class ParsedSection(BaseModel):
    """A classified unit of document text."""

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "type": "premium",
                "content": "Składka miesięczna: 123,45 zł",
                "keywords": ["składka", "zł", "miesięczna"],
                "confidence": 0.375,
                "page_range": {"start": 2, "end": 2},
                "snippet": "Składka miesięczna: 123,45 zł",
            }
        },
    )

    type: SectionType = Field(..., description="Classified section type")
    content: str = Field(..., description="Full text of the section")
    keywords: List[str] = Field(default_factory=list, description="Matched keywords")
    confidence: float = Field(..., ge=0.0, le=1.0)
    page_range: Optional[PageRange] = Field(None, description="Pages the text came from")
    snippet: str = Field(..., description="Content truncated for display")


class SectionSource(BaseModel):
    """Provenance record for one classified section."""

    model_config = ConfigDict(frozen=True)

    section_type: SectionType
    page_range: Optional[PageRange] = None
    snippet: str
    confidence: float


class ProductTypeHeuristic(BaseModel):
    """Keyword-based guess at the insurance product type."""

    model_config = ConfigDict(frozen=True)

    predicted_type: Optional[str] = None
    confidence: float = 0.0
    matched_keywords: List[str] = Field(default_factory=list)
    matches_by_type: Dict[str, List[str]] = Field(default_factory=dict)
    source: Literal["segmentation", "builder"] = "segmentation"


class SegmentationResult(BaseModel):
    """Output of one segmentation run."""

    model_config = ConfigDict(frozen=True)

    sections: List[ParsedSection] = Field(default_factory=list)
    sources: List[SectionSource] = Field(default_factory=list)
    product_type_heuristic: Optional[ProductTypeHeuristic] = None

    @property
    def identified_ratio(self) -> float:
        """Share of sections classified as something other than unknown."""
        if not self.sections:
            return 0.0
        identified = sum(1 for section in self.sections if section.type != SectionType.UNKNOWN)
        return identified / len(self.sections)


class TextDocument(BaseModel):
    """Plain text document produced by the legacy text-only parser."""

    model_config = ConfigDict(frozen=True)

    pages: List[Page] = Field(default_factory=list)
    lines: Optional[List[str]] = None
    line_page_map: Optional[List[int]] = None
    full_text: Optional[str] = None

