"""Unified offer builder service.

This service reconciles classified sections and the secondary AI extraction
into one UnifiedOffer. Each field is resolved independently:
- the AI extraction's value when present and well-typed
- otherwise a value derived from classified sections
- otherwise the field's dotted path is recorded in ``missing_fields``

The AI payload is untrusted, so every value read from it is type-checked.
"""

import re
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

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
from offer_ingest.models.section_models import ParsedSection, ProductTypeHeuristic, SectionType
from offer_ingest.services.classification.section_classifier import SectionClassifier, extract_sections_by_type
from offer_ingest.services.offers.value_parsing import parse_number_value
from offer_ingest.utils.logging import get_logger

LOGGER = get_logger(__name__)

DISCOUNT_PATTERN = re.compile(r"(?:zniżka|rabat|upust)[:\s]+([^\n]+)", re.IGNORECASE)

# Total premium phrases in premium sections, used only when the AI extraction has none
TOTAL_PREMIUM_PATTERN = re.compile(
    r"(?:składka\s+(?:łączna|całkowita|razem)|łączna\s+składka|razem\s+do\s+zapłaty)"
    r"[^\d\n]{0,20}(\d[\d\s.,]*)\s*(?:zł|pln)",
    re.IGNORECASE,
)

CRITICAL_FIELDS = ("total_premium_after_discounts", "insured")
MAX_MISSING_FOR_HIGH_GRADE = 3
HIGH_CONFIDENCE_RATIO = 0.7
MEDIUM_CONFIDENCE_RATIO = 0.5


def _text(value: Any, default: str) -> str:
    """Non-blank string form of an AI value, or the default."""
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


class UnifiedOfferBuilder:
    """Builds the canonical offer record for one document.

    The builder is stateless; the missing-field ledger lives for a single
    ``build`` call only.
    """

    def __init__(self, classifier: Optional[SectionClassifier] = None):
        """Initialize unified offer builder.

        Args:
            classifier: Classifier used for the builder's product-type guess
        """
        self.classifier = classifier

    def build(
        self,
        sections: Sequence[ParsedSection],
        metadata: OfferMetadata,
        ai_data: Optional[Mapping[str, Any]] = None,
        identified_ratio: Optional[float] = None,
    ) -> UnifiedOffer:
        """Build the unified offer.

        Args:
            sections: Classified sections of the document
            metadata: Document identity supplied by the caller
            ai_data: Secondary AI extraction (any shape, validated here)
            identified_ratio: Classifier identified-section ratio; computed
                from ``sections`` when omitted

        Returns:
            UnifiedOffer with ``missing_fields`` listing every fallback used
        """
        ai = _dict(ai_data)
        missing_fields: List[str] = []

        if identified_ratio is None:
            identified_ratio = _identified_ratio(sections)

        offer_id = self._resolve_offer_id(metadata, ai, missing_fields)
        insured = self._build_insured(ai, missing_fields)
        base_contracts = self._build_base_contracts(ai, missing_fields)
        additional_contracts = self._build_additional_contracts(ai, missing_fields)
        discounts = self._extract_discounts(sections, ai)
        before_discounts, after_discounts = self._extract_premiums(sections, ai, missing_fields)
        assistance = self._build_assistance(ai)
        duration = self._extract_duration(ai)
        notes = [note.strip() for note in _list(ai.get("notes")) if isinstance(note, str) and note.strip()]

        confidence = grade_extraction_confidence(missing_fields, identified_ratio)

        LOGGER.info(
            f"Unified offer built (confidence: {confidence.value})",
            extra={
                "offer_id": offer_id,
                "document_id": metadata.document_id,
                "missing_fields": missing_fields,
                "identified_ratio": round(identified_ratio, 3),
            },
        )

        return UnifiedOffer(
            offer_id=offer_id,
            source_document=metadata.file_name,
            insured=insured,
            base_contracts=base_contracts,
            additional_contracts=additional_contracts,
            discounts=discounts,
            total_premium_before_discounts=before_discounts,
            total_premium_after_discounts=after_discounts,
            assistance=assistance,
            duration=duration,
            notes=notes,
            missing_fields=missing_fields,
            extraction_confidence=confidence,
        )

    def infer_product_type(self, sections: Sequence[ParsedSection]) -> Optional[ProductTypeHeuristic]:
        """Product-type guess over the classified section text."""
        classifier = self.classifier or SectionClassifier()
        text = "\n\n".join(section.content for section in sections)
        return classifier.infer_product_type_from_text(text, source="builder")

    def _resolve_offer_id(self, metadata: OfferMetadata, ai: Dict[str, Any], missing_fields: List[str]) -> str:
        candidates = (
            metadata.calculation_id,
            ai.get("calculation_id"),
            ai.get("calculationId"),
            metadata.document_id,
        )
        for candidate in candidates:
            offer_id = _text(candidate, "")
            if offer_id:
                return offer_id
        missing_fields.append("offer_id")
        return MISSING

    def _build_insured(self, ai: Dict[str, Any], missing_fields: List[str]) -> List[InsuredPerson]:
        insured: List[InsuredPerson] = []

        for person in _list(ai.get("insured")):
            if not isinstance(person, dict):
                continue
            person_index = len(insured)

            age = parse_number_value(person.get("age"))
            if age is None:
                missing_fields.append(f"insured[{person_index}].age")

            plans: List[InsuredPlan] = []
            for plan in _list(person.get("plans")):
                if not isinstance(plan, dict):
                    continue
                path = f"insured[{person_index}].plans[{len(plans)}]"
                plan_sum = parse_number_value(plan.get("sum"))
                if plan_sum is None:
                    missing_fields.append(f"{path}.sum")
                premium = parse_number_value(plan.get("premium"))
                if premium is None:
                    missing_fields.append(f"{path}.premium")

                plans.append(
                    InsuredPlan(
                        type=_text(plan.get("type"), "Nieznany plan"),
                        sum=plan_sum,
                        premium=premium,
                        variant=_text(plan.get("variant"), "standard"),
                        duration=_text(plan.get("duration"), MISSING),
                    )
                )

            if not plans:
                missing_fields.append(f"insured[{person_index}].plans")

            insured.append(
                InsuredPerson(
                    name=_text(person.get("name"), MISSING),
                    age=age,
                    role=_text(person.get("role"), "ubezpieczony"),
                    plans=plans,
                )
            )

        if insured:
            return insured

        # Downstream rendering needs at least one insured row
        missing_fields.append("insured")
        return [InsuredPerson()]

    def _build_base_contracts(self, ai: Dict[str, Any], missing_fields: List[str]) -> List[BaseContract]:
        contracts: List[BaseContract] = []
        for contract in _list(ai.get("base_contracts")):
            if not isinstance(contract, dict):
                continue
            index = len(contracts)
            contract_sum = parse_number_value(contract.get("sum"))
            if contract_sum is None:
                missing_fields.append(f"base_contracts[{index}].sum")
            premium = parse_number_value(contract.get("premium"))
            if premium is None:
                missing_fields.append(f"base_contracts[{index}].premium")

            contracts.append(
                BaseContract(
                    name=_text(contract.get("name"), "Umowa podstawowa"),
                    sum=contract_sum,
                    premium=premium,
                    variant=_text(contract.get("variant"), "standard"),
                )
            )
        return contracts

    def _build_additional_contracts(
        self, ai: Dict[str, Any], missing_fields: List[str]
    ) -> List[AdditionalContract]:
        contracts: List[AdditionalContract] = []
        for contract in _list(ai.get("additional_contracts")):
            if not isinstance(contract, dict):
                continue
            index = len(contracts)
            premium = parse_number_value(contract.get("premium"))
            if premium is None:
                missing_fields.append(f"additional_contracts[{index}].premium")

            contracts.append(
                AdditionalContract(
                    name=_text(contract.get("name"), "Umowa dodatkowa"),
                    coverage=_text(contract.get("coverage"), MISSING),
                    premium=premium,
                )
            )
        return contracts

    def _extract_discounts(self, sections: Sequence[ParsedSection], ai: Dict[str, Any]) -> List[str]:
        """AI discounts followed by discount phrases found in discount sections."""
        candidates: List[str] = [item for item in _list(ai.get("discounts")) if isinstance(item, str)]

        for section in extract_sections_by_type(sections, SectionType.DISCOUNT):
            candidates.extend(match.group(0) for match in DISCOUNT_PATTERN.finditer(section.content))

        discounts: List[str] = []
        for candidate in candidates:
            discount = candidate.strip()
            if discount and discount not in discounts:
                discounts.append(discount)
        return discounts

    def _extract_premiums(
        self,
        sections: Sequence[ParsedSection],
        ai: Dict[str, Any],
        missing_fields: List[str],
    ) -> Tuple[Optional[float], Optional[float]]:
        before_discounts = parse_number_value(ai.get("total_premium_before_discounts"))

        after_discounts = parse_number_value(ai.get("total_premium_after_discounts"))
        if after_discounts is None:
            after_discounts = parse_number_value(_dict(ai.get("premium")).get("total"))
        if after_discounts is None:
            after_discounts = _premium_from_sections(sections)

        if before_discounts is None:
            missing_fields.append("total_premium_before_discounts")
        if after_discounts is None:
            missing_fields.append("total_premium_after_discounts")

        return before_discounts, after_discounts

    def _build_assistance(self, ai: Dict[str, Any]) -> List[AssistanceService]:
        services: List[AssistanceService] = []
        for item in _list(ai.get("assistance")):
            if isinstance(item, dict):
                name = _text(item.get("name"), "")
                if not name:
                    continue
                services.append(
                    AssistanceService(
                        name=name,
                        coverage=_text(item.get("coverage"), "24/7"),
                        limits=_text(item.get("limits"), "standardowe"),
                    )
                )
            elif isinstance(item, str) and item.strip():
                services.append(AssistanceService(name=item.strip()))
        return services

    def _extract_duration(self, ai: Dict[str, Any]) -> OfferDuration:
        duration = _dict(ai.get("duration"))
        return OfferDuration(
            start=_text(ai.get("valid_from"), "") or _text(duration.get("start"), MISSING),
            end=_text(ai.get("valid_to"), "") or _text(duration.get("end"), MISSING),
            variant=_text(duration.get("variant"), "standardowy"),
        )


def _identified_ratio(sections: Sequence[ParsedSection]) -> float:
    if not sections:
        return 0.0
    identified = sum(1 for section in sections if section.type != SectionType.UNKNOWN)
    return identified / len(sections)


def _premium_from_sections(sections: Sequence[ParsedSection]) -> Optional[float]:
    for section in extract_sections_by_type(sections, SectionType.PREMIUM):
        match = TOTAL_PREMIUM_PATTERN.search(section.content)
        if match:
            value = parse_number_value(match.group(1))
            if value is not None:
                return value
    return None


def grade_extraction_confidence(missing_fields: Sequence[str], identified_ratio: float) -> ExtractionConfidence:
    """Grade an offer from its missing fields and section identification ratio.

    Checks run in order: a missing critical field is always low, then more
    than three missing fields caps the grade at medium.
    """
    if any(field in CRITICAL_FIELDS for field in missing_fields):
        return ExtractionConfidence.LOW
    if len(missing_fields) > MAX_MISSING_FOR_HIGH_GRADE:
        return ExtractionConfidence.MEDIUM
    if identified_ratio > HIGH_CONFIDENCE_RATIO and not missing_fields:
        return ExtractionConfidence.HIGH
    if identified_ratio > MEDIUM_CONFIDENCE_RATIO:
        return ExtractionConfidence.MEDIUM
    return ExtractionConfidence.LOW
