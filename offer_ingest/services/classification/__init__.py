"""Section classification for insurance offer text."""

from offer_ingest.services.classification.constants import PRODUCT_TYPE_KEYWORDS, SECTION_KEYWORDS
from offer_ingest.services.classification.pdf_text_parser import (
    combine_pages_text,
    estimate_text_document,
    parse_pdf_text,
    split_text_into_pages,
)
from offer_ingest.services.classification.section_classifier import (
    SectionClassifier,
    build_line_page_map,
    calculate_extraction_confidence,
    extract_sections_by_type,
    summarize_sections,
)

__all__ = [
    "PRODUCT_TYPE_KEYWORDS",
    "SECTION_KEYWORDS",
    "SectionClassifier",
    "build_line_page_map",
    "calculate_extraction_confidence",
    "combine_pages_text",
    "estimate_text_document",
    "extract_sections_by_type",
    "parse_pdf_text",
    "split_text_into_pages",
    "summarize_sections",
]
