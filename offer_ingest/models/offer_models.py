"""Data models for the unified offer record.

Numeric fields hold ``None`` when no parseable value was found. Every such
field is listed by dotted path in ``UnifiedOffer.missing_fields`` and renders
as the ``"missing"`` sentinel in the JSON record consumed by the comparison
layer, so a real zero premium is never confused with an unknown one.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

MISSING = "missing"


def _missing_if_none(value: Optional[float]) -> Any:
    return MISSING if value is None else value


class ExtractionConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class InsuredPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str = "Nieznany plan"
    sum: Optional[float] = None
    premium: Optional[float] = None
    variant: str = "standard"
    duration: str = MISSING

    @field_serializer("sum", "premium", when_used="json")
    def _serialize_amount(self, value: Optional[float]) -> Any:
        return _missing_if_none(value)


class InsuredPerson(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = MISSING
    age: Optional[float] = None
    role: str = "ubezpieczony"
    plans: List[InsuredPlan] = Field(default_factory=list)

    @field_serializer("age", when_used="json")
    def _serialize_age(self, value: Optional[float]) -> Any:
        return _missing_if_none(value)


class BaseContract(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = "Umowa podstawowa"
    sum: Optional[float] = None
    premium: Optional[float] = None
    variant: str = "standard"

    @field_serializer("sum", "premium", when_used="json")
    def _serialize_amount(self, value: Optional[float]) -> Any:
        return _missing_if_none(value)


class AdditionalContract(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = "Umowa dodatkowa"
    coverage: str = MISSING
    premium: Optional[float] = None

    @field_serializer("premium", when_used="json")
    def _serialize_amount(self, value: Optional[float]) -> Any:
        return _missing_if_none(value)


class AssistanceService(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    coverage: str = "24/7"
    limits: str = "standardowe"


class OfferDuration(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: str = MISSING
    end: str = MISSING
    variant: str = "standardowy"


class OfferMetadata(BaseModel):
    """Document metadata supplied by the caller."""

    model_config = ConfigDict(frozen=True)

    document_id: Optional[str] = None
    file_name: str
    calculation_id: Optional[str] = None


class UnifiedOffer(BaseModel):
    """Canonical representation of one insurance offer."""

    model_config = ConfigDict(frozen=True)

    offer_id: str
    source_document: str
    insured: List[InsuredPerson] = Field(..., min_length=1)
    base_contracts: List[BaseContract] = Field(default_factory=list)
    additional_contracts: List[AdditionalContract] = Field(default_factory=list)
    discounts: List[str] = Field(default_factory=list)
    total_premium_before_discounts: Optional[float] = None
    total_premium_after_discounts: Optional[float] = None
    assistance: List[AssistanceService] = Field(default_factory=list)
    duration: OfferDuration = Field(default_factory=OfferDuration)
    notes: List[str] = Field(default_factory=list)
    missing_fields: List[str] = Field(default_factory=list)
    extraction_confidence: ExtractionConfidence = ExtractionConfidence.LOW

    @field_serializer("total_premium_before_discounts", "total_premium_after_discounts", when_used="json")
    def _serialize_total(self, value: Optional[float]) -> Any:
        return _missing_if_none(value)

    def is_missing(self, path: str) -> bool:
        return path in self.missing_fields

    def to_record(self) -> Dict[str, Any]:
        """Render the JSON record used by the comparison layer."""
        return self.model_dump(mode="json")
