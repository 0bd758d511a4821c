"""Text-only PDF parser used when the analysis service is not available.

Produces a TextDocument whose line-to-page map is exact, so paragraph-mode
segmentation can resolve page ranges without guessing.
"""

import time
from io import BytesIO
from typing import List, Sequence

import pdfplumber

from offer_ingest.core.exceptions import DocumentParseError
from offer_ingest.models.analysis_models import Page
from offer_ingest.models.section_models import TextDocument
from offer_ingest.utils.logging import get_logger

LOGGER = get_logger(__name__)

PAGE_SEPARATOR = "\n\n"


def parse_pdf_text(pdf_bytes: bytes) -> TextDocument:
    """Extract per-page text from PDF bytes.

    Args:
        pdf_bytes: Raw PDF content

    Returns:
        TextDocument with pages, lines, line_page_map and full_text

    Raises:
        DocumentParseError: If the PDF cannot be opened or read
    """
    if not pdf_bytes:
        raise DocumentParseError("Cannot parse an empty PDF document")

    start_time = time.time()
    try:
        with pdfplumber.open(BytesIO(pdf_bytes)) as pdf:
            pages = [
                Page(
                    page_number=page_num,
                    text=page.extract_text() or "",
                    width=float(page.width),
                    height=float(page.height),
                )
                for page_num, page in enumerate(pdf.pages, start=1)
            ]
    except Exception as e:
        LOGGER.error("Failed to extract PDF text", exc_info=True, extra={"error": str(e)})
        raise DocumentParseError(f"Failed to extract PDF text: {str(e)}", original_error=e) from e

    lines: List[str] = []
    line_page_map: List[int] = []
    for index, page in enumerate(pages):
        page_lines = page.text.replace("\r\n", "\n").split("\n")
        lines.extend(page_lines)
        line_page_map.extend([page.page_number] * len(page_lines))
        if index < len(pages) - 1:
            # Blank separator line between pages belongs to the preceding page
            lines.append("")
            line_page_map.append(page.page_number)

    LOGGER.info(
        f"Extracted text from {len(pages)} pages in {time.time() - start_time:.2f}s",
        extra={"total_pages": len(pages), "line_count": len(lines)},
    )
    return TextDocument(
        pages=pages,
        lines=lines,
        line_page_map=line_page_map,
        full_text=combine_pages_text(pages),
    )


def split_text_into_pages(full_text: str, page_count: int) -> List[Page]:
    """Split text evenly into ``page_count`` pages by line.

    Last resort when only the page count is known; page boundaries are
    estimates.
    """
    lines = full_text.split("\n")
    page_count = max(1, page_count)
    lines_per_page = _lines_per_page(len(lines), page_count)

    pages: List[Page] = []
    for index in range(page_count):
        chunk = lines[index * lines_per_page : (index + 1) * lines_per_page]
        pages.append(Page(page_number=index + 1, text="\n".join(chunk)))
    return pages


def estimate_text_document(full_text: str, page_count: int) -> TextDocument:
    """Build a TextDocument for text whose page boundaries were lost.

    Lines are assigned to pages with the same even split as
    ``split_text_into_pages``.
    """
    text = full_text.replace("\r\n", "\n")
    lines = text.split("\n")
    page_count = max(1, page_count)
    lines_per_page = _lines_per_page(len(lines), page_count)

    LOGGER.debug(
        "Estimating page boundaries from text",
        extra={"page_count": page_count, "line_count": len(lines)},
    )
    return TextDocument(
        pages=split_text_into_pages(text, page_count),
        lines=lines,
        line_page_map=[min(index // lines_per_page, page_count - 1) + 1 for index in range(len(lines))],
        full_text=text,
    )


def _lines_per_page(line_count: int, page_count: int) -> int:
    return max(1, -(-line_count // page_count))


def combine_pages_text(pages: Sequence[Page]) -> str:
    return PAGE_SEPARATOR.join(page.text for page in pages)
