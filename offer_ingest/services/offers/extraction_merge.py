"""Helpers for reading and combining secondary AI extraction payloads."""

import json
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from offer_ingest.core.exceptions import ExtractionError
from offer_ingest.models.offer_models import MISSING
from offer_ingest.utils.logging import get_logger

LOGGER = get_logger(__name__)

PRODUCT_TYPE_KEYS = ("value", "label", "name", "type")

_FENCED_JSON = re.compile(r"```json\n?([\s\S]*?)\n?```")
_FENCED_ANY = re.compile(r"```\n?([\s\S]*?)\n?```")


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == MISSING


def _same_item(left: Any, right: Any) -> bool:
    if isinstance(left, (dict, list)) or isinstance(right, (dict, list)):
        return json.dumps(left, sort_keys=True, default=str) == json.dumps(right, sort_keys=True, default=str)
    return left == right


def merge_extracted_data(base: Mapping[str, Any], addition: Any) -> Dict[str, Any]:
    """Merge one partial extraction into another.

    Lists are unioned by value, nested dicts merged recursively, and scalars
    only fill slots that are empty or ``"missing"`` in ``base``. Neither input
    is modified.

    Args:
        base: Extraction accumulated so far
        addition: Extraction from the next document segment

    Returns:
        A new merged dict
    """
    result: Dict[str, Any] = dict(base)
    if not isinstance(addition, Mapping):
        return result

    for key, value in addition.items():
        if value is None:
            continue

        existing = result.get(key)
        if isinstance(value, list):
            combined = list(existing) if isinstance(existing, list) else []
            for item in value:
                if not any(_same_item(item, present) for present in combined):
                    combined.append(item)
            result[key] = combined
        elif isinstance(value, Mapping):
            result[key] = merge_extracted_data(existing if isinstance(existing, Mapping) else {}, value)
        elif _is_empty(existing):
            result[key] = value

    return result


def merge_entries_by_key(
    existing: Any,
    incoming: Sequence[Any],
    key: Union[str, Sequence[str]],
) -> List[Dict[str, Any]]:
    """Merge lists of records, combining records that share an identifier.

    The identifier is the first non-empty value among ``key``. Records
    without one are kept as separate entries. Later fields win.
    """
    keys = [key] if isinstance(key, str) else list(key)

    def identifier(item: Mapping[str, Any]) -> Optional[str]:
        for candidate in keys:
            value = item.get(candidate)
            if value is not None and value != "":
                return str(value)
        return None

    merged: Dict[str, Dict[str, Any]] = {}
    base_items = existing if isinstance(existing, list) else []

    for item in list(base_items) + list(incoming):
        if not isinstance(item, Mapping):
            continue
        item_id = identifier(item)
        if item_id is None:
            merged[f"__anonymous_{len(merged)}"] = dict(item)
            continue
        merged[item_id] = {**merged.get(item_id, {}), **item}

    return list(merged.values())


def normalize_product_type_value(value: Any) -> Optional[str]:
    """Read a product type given as a string or as a labelled object."""
    if isinstance(value, str):
        return value.strip() or None

    if isinstance(value, Mapping):
        for key in PRODUCT_TYPE_KEYS:
            candidate = value.get(key)
            if isinstance(candidate, str) and candidate.strip():
                return candidate.strip()

    return None


def parse_ai_extraction_response(response: Mapping[str, Any]) -> Dict[str, Any]:
    """Extract the JSON payload from a chat-completion style response.

    Tool-call arguments are preferred; otherwise the message content is read,
    unwrapping a fenced code block when present.

    Raises:
        ExtractionError: If the response has no message or no parseable JSON
    """
    choices = response.get("choices") if isinstance(response, Mapping) else None
    message = None
    if isinstance(choices, list) and choices and isinstance(choices[0], Mapping):
        message = choices[0].get("message")
    if not isinstance(message, Mapping):
        raise ExtractionError("AI response missing message payload")

    tool_calls = message.get("tool_calls")
    content = message.get("content")

    try:
        if isinstance(tool_calls, list) and tool_calls:
            arguments = tool_calls[0].get("function", {}).get("arguments")
            extracted = json.loads(arguments) if isinstance(arguments, str) else arguments
            LOGGER.debug("Structured data extracted via tool calling")
        elif isinstance(content, str) and content.strip():
            match = _FENCED_JSON.search(content) or _FENCED_ANY.search(content)
            extracted = json.loads((match.group(1) if match else content).strip())
            LOGGER.debug("Structured data extracted from message content")
        else:
            raise ExtractionError("No tool call or content in AI response")
    except (json.JSONDecodeError, AttributeError, TypeError) as e:
        LOGGER.error("Failed to parse AI response", exc_info=True)
        raise ExtractionError(f"Failed to parse AI response: {str(e)}", original_error=e) from e

    if not isinstance(extracted, dict):
        raise ExtractionError("AI response payload is not a JSON object")
    return extracted
