"""Archive decoding and analysis payload normalization.

The analysis service returns a zip archive holding a JSON description of the
document. Field names differ between backend versions, so every value is
read through an ordered list of candidate keys and coerced defensively.
"""

import io
import json
import math
import zipfile
from typing import Any, Dict, List, Optional, Sequence, Tuple

from offer_ingest.core.exceptions import AnalysisError, AnalysisErrorCode
from offer_ingest.models.analysis_models import (
    AnalysisResult,
    Block,
    BoundingBox,
    Page,
    StructureSummary,
    StructureSummaryPage,
)
from offer_ingest.utils.logging import get_logger

LOGGER = get_logger(__name__)

CANONICAL_ENTRY_NAME = "analysis.json"
MAX_SUMMARY_HEADINGS = 10


def decode_archive(data: bytes) -> Dict[str, Any]:
    """Open the result archive and return its JSON payload.

    Prefers the ``analysis.json`` entry; otherwise every ``.json`` entry is
    tried in archive order and the first one that parses wins.

    Raises:
        AnalysisError: ARCHIVE_ERROR when the archive is unreadable or holds
            no parseable JSON entry
    """
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except (zipfile.BadZipFile, ValueError) as e:
        raise AnalysisError(
            "Analysis archive is not a valid zip file",
            code=AnalysisErrorCode.ARCHIVE_ERROR,
            original_error=e,
        ) from e

    with archive:
        names = [info.filename for info in archive.infolist() if not info.is_dir()]
        canonical = [name for name in names if _basename(name).lower() == CANONICAL_ENTRY_NAME]
        fallbacks = [
            name for name in names
            if name.lower().endswith(".json") and name not in canonical
        ]

        for name in canonical + fallbacks:
            payload = _read_json_entry(archive, name)
            if payload is not None:
                LOGGER.debug("Decoded analysis archive entry", extra={"entry": name, "entries": len(names)})
                return payload

    raise AnalysisError(
        "Analysis archive does not contain a JSON payload",
        code=AnalysisErrorCode.ARCHIVE_ERROR,
    )


def _basename(name: str) -> str:
    return name.rsplit("/", 1)[-1]


def _read_json_entry(archive: zipfile.ZipFile, name: str) -> Optional[Dict[str, Any]]:
    try:
        raw = archive.read(name)
        parsed = json.loads(raw.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError, zipfile.BadZipFile, RuntimeError) as e:
        LOGGER.warning("Skipping unreadable archive entry", extra={"entry": name, "error": str(e)})
        return None
    if not isinstance(parsed, dict):
        LOGGER.warning("Skipping non-object archive entry", extra={"entry": name})
        return None
    return parsed


def to_number(value: Any) -> Optional[float]:
    """Coerce numbers and numeric strings; anything else is None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _to_int(value: Any) -> Optional[int]:
    number = to_number(value)
    return int(number) if number is not None else None


def _first_number(raw: Dict[str, Any], keys: Sequence[str]) -> Optional[float]:
    for key in keys:
        number = to_number(raw.get(key))
        if number is not None:
            return number
    return None


def _first_list(raw: Any, keys: Sequence[str]) -> Optional[List[Any]]:
    if not isinstance(raw, dict):
        return None
    for key in keys:
        value = raw.get(key)
        if isinstance(value, list):
            return value
    return None


def _text_from_parts(parts: List[Any]) -> str:
    texts: List[str] = []
    for part in parts:
        if isinstance(part, str):
            texts.append(part)
        elif isinstance(part, dict):
            for key in ("text", "content"):
                value = part.get(key)
                if isinstance(value, str):
                    texts.append(value)
                    break
    return "\n".join(text for text in texts if text.strip())


def _resolve_text(raw: Dict[str, Any], keys: Sequence[str]) -> Optional[str]:
    """First non-empty text among candidate keys (string or list of parts)."""
    for key in keys:
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            return value
        if isinstance(value, list):
            joined = _text_from_parts(value)
            if joined:
                return joined
    return None


def _page_text(raw: Dict[str, Any]) -> str:
    text = _resolve_text(raw, ("text", "content", "markdown"))
    if text is not None:
        return text
    lines = raw.get("lines")
    if isinstance(lines, list):
        return _text_from_parts(lines)
    return ""


def _page_number(raw: Dict[str, Any], index: int) -> int:
    for key in ("pageNumber", "page_number"):
        number = _to_int(raw.get(key))
        if number is not None and number >= 1:
            return number
    page_idx = _to_int(raw.get("page_idx"))
    if page_idx is not None and page_idx >= 0:
        return page_idx + 1
    return index + 1


def _bounding_box(raw: Dict[str, Any]) -> Optional[BoundingBox]:
    source = raw.get("boundingBox") or raw.get("bounding_box") or raw.get("bbox")
    if isinstance(source, dict):
        values = [to_number(source.get(key)) for key in ("x", "y", "width", "height")]
        if all(value is not None for value in values):
            x, y, width, height = values
            return BoundingBox(x=x, y=y, width=width, height=height)
    elif isinstance(source, list) and len(source) == 4:
        values = [to_number(value) for value in source]
        if all(value is not None for value in values):
            x0, y0, x1, y1 = values
            return BoundingBox(x=x0, y=y0, width=x1 - x0, height=y1 - y0)
    return None


def _block_fields(raw: Dict[str, Any], page_number: int) -> Dict[str, Any]:
    block_type = raw.get("type") if isinstance(raw.get("type"), str) else raw.get("block_type")
    confidence = _first_number(raw, ("confidence", "score"))
    if confidence is not None:
        confidence = min(1.0, max(0.0, confidence))

    raw_id = raw.get("id")
    metadata = raw.get("metadata")
    return {
        "id": str(raw_id) if isinstance(raw_id, (str, int)) and not isinstance(raw_id, bool) else None,
        "type": block_type if isinstance(block_type, str) and block_type else "text",
        "category": raw.get("category") if isinstance(raw.get("category"), str) else None,
        "label": raw.get("label") if isinstance(raw.get("label"), str) else None,
        "text": _resolve_text(raw, ("text", "content", "value")),
        "page_number": page_number,
        "confidence": confidence,
        "heading_level": _to_int(raw.get("headingLevel", raw.get("heading_level"))),
        "bounding_box": _bounding_box(raw),
        "metadata": metadata if isinstance(metadata, dict) else None,
    }


def normalize_blocks(raw_blocks: List[Any], page_number: int) -> List[Block]:
    """Normalize a block tree without recursion.

    Nodes are visited with an explicit work-list and assembled bottom-up, so
    nesting depth in the remote payload cannot exhaust the call stack.
    """
    # Each entry: (raw block, fields, raw children, child slot list)
    nodes: List[Tuple[Dict[str, Any], Dict[str, Any], List[Any], List[Block]]] = []
    parents: List[int] = []
    work: List[Tuple[Any, int]] = [(raw, -1) for raw in reversed(raw_blocks)]

    while work:
        raw, parent_index = work.pop()
        if not isinstance(raw, dict):
            continue
        children = raw.get("children") if isinstance(raw.get("children"), list) else []
        nodes.append((raw, _block_fields(raw, page_number), children, []))
        parents.append(parent_index)
        index = len(nodes) - 1
        work.extend((child, index) for child in reversed(children))

    # Pre-order indices: children always follow their parent, so build in reverse.
    built: List[Optional[Block]] = [None] * len(nodes)
    for index in range(len(nodes) - 1, -1, -1):
        _, fields, _, child_blocks = nodes[index]
        block = Block(children=list(reversed(child_blocks)), **fields)
        built[index] = block
        parent_index = parents[index]
        if parent_index >= 0:
            nodes[parent_index][3].append(block)

    return [built[index] for index, parent in enumerate(parents) if parent < 0]


def normalize_page(raw: Any, index: int) -> Page:
    if not isinstance(raw, dict):
        raw = {"text": raw} if isinstance(raw, str) else {}

    page_number = _page_number(raw, index)
    raw_blocks = _first_list(raw, ("blocks", "para_blocks", "layout")) or []
    return Page(
        page_number=page_number,
        text=_page_text(raw),
        width=_first_number(raw, ("width", "pageWidth", "page_width")),
        height=_first_number(raw, ("height", "pageHeight", "page_height")),
        blocks=normalize_blocks(raw_blocks, page_number),
    )


def normalize_structure_summary(raw: Any) -> Optional[StructureSummary]:
    if not isinstance(raw, dict):
        return None

    pages: List[StructureSummaryPage] = []
    for index, page in enumerate(_first_list(raw, ("pages", "pageSummaries")) or []):
        if not isinstance(page, dict):
            continue
        block_count = None
        for key in ("blockCount", "blocks", "block_count"):
            block_count = _to_int(page.get(key))
            if block_count is not None:
                break

        headings_raw = page.get("headings", page.get("heading", page.get("top_headings")))
        if isinstance(headings_raw, list):
            headings = [item for item in headings_raw if isinstance(item, str)][:MAX_SUMMARY_HEADINGS]
        elif isinstance(headings_raw, str):
            headings = [headings_raw]
        else:
            headings = None

        keywords_raw = page.get("keywords")
        pages.append(
            StructureSummaryPage(
                page_number=_page_number(page, index),
                block_count=block_count or 0,
                headings=headings,
                keywords=[item for item in keywords_raw if isinstance(item, str)]
                if isinstance(keywords_raw, list)
                else None,
            )
        )

    return StructureSummary(confidence=to_number(raw.get("confidence")), pages=pages)


def normalize_analysis_payload(payload: Any, task_id: Optional[str] = None) -> AnalysisResult:
    """Normalize a decoded archive payload into an AnalysisResult."""
    root = payload.get("data") if isinstance(payload, dict) and isinstance(payload.get("data"), dict) else payload
    if not isinstance(root, dict):
        root = {}

    raw_pages = _first_list(root, ("pages", "pdf_info"))
    if raw_pages is None:
        raw_pages = _first_list(root.get("document"), ("pages",)) or []

    pages = [normalize_page(raw, index) for index, raw in enumerate(raw_pages)]

    text = _resolve_text(root, ("text", "full_text", "markdown"))
    if text is None:
        text = "\n\n".join(page.text for page in pages if page.text)

    summary_raw = None
    for key in ("structureSummary", "structure_summary", "structural_summary", "structure"):
        if root.get(key) is not None:
            summary_raw = root[key]
            break

    return AnalysisResult(
        text=text,
        pages=pages,
        structure_summary=normalize_structure_summary(summary_raw),
        task_id=task_id,
    )
