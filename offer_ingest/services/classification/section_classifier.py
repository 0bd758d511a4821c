"""Keyword-based section classifier for insurance offer documents.

Turns page text (paragraph mode) or analysis blocks (block mode) into typed,
confidence-scored sections with page provenance, and guesses the product
type from the full document text.
"""

from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple, Union

from offer_ingest.core.config import ClassifierSettings
from offer_ingest.models.analysis_models import Block, Page
from offer_ingest.models.offer_models import ExtractionConfidence
from offer_ingest.models.section_models import (
    PageRange,
    ParsedSection,
    ProductTypeHeuristic,
    SectionSource,
    SectionType,
    SegmentationResult,
    TextDocument,
)
from offer_ingest.services.classification.constants import (
    DEFAULT_BLOCK_TYPE,
    HIGH_IDENTIFIED_RATIO,
    MATCHED_BLOCK_BASE_CONFIDENCE,
    MAX_BLOCK_CONFIDENCE,
    MEDIUM_IDENTIFIED_RATIO,
    PAGE_BLOCK_TYPE,
    PRODUCT_TYPE_KEYWORDS,
    SECTION_KEYWORDS,
    SNIPPET_ELLIPSIS,
    UNMATCHED_BLOCK_CONFIDENCE,
)
from offer_ingest.services.classification.pdf_text_parser import estimate_text_document
from offer_ingest.utils.logging import get_logger

LOGGER = get_logger(__name__)

SegmentInput = Union[TextDocument, Sequence[str], Sequence[Page]]


@dataclass(frozen=True)
class _Paragraph:
    text: str
    start_line: int
    end_line: int


class SectionClassifier:
    """Rule-based classifier for insurance offer sections.

    Keyword tables are injected read-only; the classifier holds no other
    state, so repeated calls on the same input return identical results.
    """

    def __init__(
        self,
        section_keywords: Mapping[SectionType, Sequence[str]] = SECTION_KEYWORDS,
        product_keywords: Mapping[str, Sequence[str]] = PRODUCT_TYPE_KEYWORDS,
        settings: Optional[ClassifierSettings] = None,
    ):
        """Initialize section classifier.

        Args:
            section_keywords: Keywords per section type, in tie-break order
            product_keywords: Keywords per product type
            settings: Length thresholds; defaults are read from the environment
        """
        self.section_keywords = section_keywords
        self.product_keywords = product_keywords
        self.settings = settings or ClassifierSettings()

    def segment(
        self,
        pages: Sequence[Page],
        full_text: Optional[str] = None,
        page_count: Optional[int] = None,
    ) -> SegmentationResult:
        """Segment analysed pages into sections.

        Block mode is used when any page carries layout blocks, paragraph
        mode otherwise. Text without pages is split evenly across
        ``page_count`` pages when that count is known.
        """
        if any(page.blocks for page in pages):
            return self.segment_blocks(pages, full_text=full_text)
        if not pages and full_text and page_count:
            return self.segment_text(estimate_text_document(full_text, page_count))
        return self.segment_text(TextDocument(pages=list(pages), full_text=full_text))

    def segment_text(self, document: SegmentInput) -> SegmentationResult:
        """Paragraph-mode segmentation for plain text input.

        Args:
            document: A TextDocument, a list of page texts or a list of Pages

        Returns:
            SegmentationResult with sections in paragraph order
        """
        text_document = _as_text_document(document)
        pages = text_document.pages

        full_text = text_document.full_text
        if full_text is None:
            full_text = "\n\n".join(page.text for page in pages)

        lines = text_document.lines
        if lines is None:
            lines = full_text.replace("\r\n", "\n").split("\n")

        line_page_map = text_document.line_page_map
        if line_page_map is None:
            line_page_map = build_line_page_map(pages, len(lines))

        sections: List[ParsedSection] = []
        for paragraph in _collect_paragraphs(lines):
            if len(paragraph.text.strip()) < self.settings.min_paragraph_length:
                continue

            section_type, keywords, ratio = self.classify_text(paragraph.text)
            sections.append(
                ParsedSection(
                    type=section_type,
                    content=paragraph.text,
                    keywords=keywords,
                    confidence=ratio if section_type != SectionType.UNKNOWN else 0.0,
                    page_range=resolve_page_range(line_page_map, paragraph.start_line, paragraph.end_line),
                    snippet=self.build_snippet(paragraph.text),
                )
            )

        return self._finish(sections, full_text, mode="paragraph")

    def segment_blocks(self, pages: Sequence[Page], full_text: Optional[str] = None) -> SegmentationResult:
        """Block-mode segmentation for analysis service output.

        Every flattened block plus one synthetic whole-page block is a
        candidate. Candidates repeating an earlier (page, type, snippet) are
        dropped.
        """
        sections: List[ParsedSection] = []
        seen: Set[Tuple[int, SectionType, str]] = set()

        for page in pages:
            page_block = Block(type=PAGE_BLOCK_TYPE, text=page.text, page_number=page.page_number)
            for block in page.flattened_blocks() + [page_block]:
                content = (block.text or "").strip()
                if len(content) < self.settings.min_block_length:
                    continue

                section_type, keywords, ratio = self.classify_text(_block_classification_text(block, content))
                snippet = self.build_snippet(content)
                key = (page.page_number, section_type, snippet)
                if key in seen:
                    continue
                seen.add(key)

                sections.append(
                    ParsedSection(
                        type=section_type,
                        content=content,
                        keywords=keywords,
                        confidence=_block_confidence(block, section_type, ratio),
                        page_range=PageRange(start=page.page_number, end=page.page_number),
                        snippet=snippet,
                    )
                )

        if full_text is None:
            full_text = "\n\n".join(page.text for page in pages if page.text.strip())
            if not full_text:
                full_text = "\n".join(
                    block.text for page in pages for block in page.flattened_blocks() if block.text
                )

        return self._finish(sections, full_text, mode="block")

    def classify_text(self, text: str) -> Tuple[SectionType, List[str], float]:
        """Classify text by keyword match ratio.

        Returns:
            Tuple of (section type, matched keywords, match ratio). Ties go to
            the type listed first in the keyword table.
        """
        lower_text = text.lower()
        best_type = SectionType.UNKNOWN
        best_keywords: List[str] = []
        best_score = 0.0

        for section_type, keywords in self.section_keywords.items():
            if not keywords:
                continue
            matched = [keyword for keyword in keywords if keyword in lower_text]
            if not matched:
                continue
            score = len(matched) / len(keywords)
            if score > best_score:
                best_type, best_keywords, best_score = section_type, matched, score

        return best_type, best_keywords, best_score

    def infer_product_type_from_text(
        self, text: str, source: str = "segmentation"
    ) -> Optional[ProductTypeHeuristic]:
        """Guess the insurance product type from document text.

        Returns:
            None for blank text; otherwise the best-scoring type (or an empty
            result when no keyword matches) with per-type matches
        """
        if not text or not text.strip():
            return None

        lower_text = text.lower()
        matches_by_type: Dict[str, List[str]] = {}
        best_type: Optional[str] = None
        best_keywords: List[str] = []
        best_score = 0.0

        for product_type, keywords in self.product_keywords.items():
            matched = [keyword for keyword in keywords if keyword in lower_text]
            if not matched:
                continue
            matches_by_type[product_type] = matched
            score = len(matched) / len(keywords)
            if best_type is None or score > best_score:
                best_type, best_keywords, best_score = product_type, matched, score

        return ProductTypeHeuristic(
            predicted_type=best_type,
            confidence=best_score,
            matched_keywords=best_keywords,
            matches_by_type=matches_by_type,
            source=source,
        )

    def build_snippet(self, content: str) -> str:
        limit = self.settings.snippet_length
        if len(content) <= limit:
            return content
        return f"{content[: limit - len(SNIPPET_ELLIPSIS)]}{SNIPPET_ELLIPSIS}"

    def _finish(self, sections: List[ParsedSection], full_text: str, mode: str) -> SegmentationResult:
        sources = [
            SectionSource(
                section_type=section.type,
                page_range=section.page_range,
                snippet=section.snippet,
                confidence=section.confidence,
            )
            for section in sections
        ]
        heuristic = self.infer_product_type_from_text(full_text, source="segmentation")

        LOGGER.info(
            f"Identified {len(sections)} sections",
            extra={
                "mode": mode,
                "section_breakdown": summarize_sections(sections),
                "predicted_product_type": heuristic.predicted_type if heuristic else None,
            },
        )
        return SegmentationResult(sections=sections, sources=sources, product_type_heuristic=heuristic)


def _as_text_document(document: SegmentInput) -> TextDocument:
    if isinstance(document, TextDocument):
        return document
    pages: List[Page] = []
    for index, item in enumerate(document):
        if isinstance(item, Page):
            pages.append(item)
        else:
            pages.append(Page(page_number=index + 1, text=str(item)))
    return TextDocument(pages=pages)


def _collect_paragraphs(lines: Sequence[str]) -> List[_Paragraph]:
    """Group contiguous non-blank lines; line indices are inclusive."""
    paragraphs: List[_Paragraph] = []
    buffer: List[str] = []
    start_line = -1

    for index, line in enumerate(lines):
        if not line.strip():
            if buffer:
                paragraphs.append(_Paragraph("\n".join(buffer), start_line, index - 1))
                buffer = []
            continue
        if not buffer:
            start_line = index
        buffer.append(line)

    if buffer:
        paragraphs.append(_Paragraph("\n".join(buffer), start_line, len(lines) - 1))
    return paragraphs


def _block_classification_text(block: Block, content: str) -> str:
    hints = [block.hint_text]
    if block.type and block.type not in (DEFAULT_BLOCK_TYPE, PAGE_BLOCK_TYPE):
        hints.append(block.type)
    return " ".join([content] + [hint for hint in hints if hint])


def _block_confidence(block: Block, section_type: SectionType, ratio: float) -> float:
    if block.confidence is not None:
        return block.confidence
    if section_type == SectionType.UNKNOWN:
        return UNMATCHED_BLOCK_CONFIDENCE
    return min(MAX_BLOCK_CONFIDENCE, MATCHED_BLOCK_BASE_CONFIDENCE + ratio)


def build_line_page_map(pages: Sequence[Page], target_length: int) -> List[int]:
    """Map each line of the joined page text to its page number.

    Every page contributes its own line count plus one separator line, and
    the map is padded with the last page number or truncated to
    ``target_length``.
    """
    line_page_map: List[int] = []
    for page in pages:
        line_count = len(page.text.replace("\r\n", "\n").split("\n"))
        line_page_map.extend([page.page_number] * (line_count + 1))

    filler = pages[-1].page_number if pages else 1
    if len(line_page_map) < target_length:
        line_page_map.extend([filler] * (target_length - len(line_page_map)))
    return line_page_map[:target_length]


def resolve_page_range(line_page_map: Sequence[int], start_line: int, end_line: int) -> Optional[PageRange]:
    if not line_page_map:
        return None
    page_numbers = [page for page in line_page_map[start_line : end_line + 1] if page > 0]
    if not page_numbers:
        return None
    return PageRange(start=min(page_numbers), end=max(page_numbers))


def extract_sections_by_type(sections: Sequence[ParsedSection], section_type: SectionType) -> List[ParsedSection]:
    return [section for section in sections if section.type == section_type]


def calculate_extraction_confidence(sections: Sequence[ParsedSection]) -> ExtractionConfidence:
    """Grade segmentation quality by the share of identified sections."""
    if not sections:
        return ExtractionConfidence.LOW

    identified = sum(1 for section in sections if section.type != SectionType.UNKNOWN)
    ratio = identified / len(sections)
    if ratio > HIGH_IDENTIFIED_RATIO:
        return ExtractionConfidence.HIGH
    if ratio > MEDIUM_IDENTIFIED_RATIO:
        return ExtractionConfidence.MEDIUM
    return ExtractionConfidence.LOW


def summarize_sections(sections: Sequence[ParsedSection]) -> Dict[str, int]:
    """Count sections per type, in first-seen order."""
    return dict(Counter(section.type.value for section in sections))
