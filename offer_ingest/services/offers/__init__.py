"""Unified offer construction."""

from offer_ingest.services.offers.extraction_merge import (
    merge_entries_by_key,
    merge_extracted_data,
    normalize_product_type_value,
    parse_ai_extraction_response,
)
from offer_ingest.services.offers.unified_builder import UnifiedOfferBuilder, grade_extraction_confidence
from offer_ingest.services.offers.value_parsing import parse_number_value

__all__ = [
    "UnifiedOfferBuilder",
    "grade_extraction_confidence",
    "merge_entries_by_key",
    "merge_extracted_data",
    "normalize_product_type_value",
    "parse_ai_extraction_response",
    "parse_number_value",
]
