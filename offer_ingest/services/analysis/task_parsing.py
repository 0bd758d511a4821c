"""Readers for the task payloads returned by the analysis service.

The service has shipped several response shapes over time, so every field is
resolved from an ordered list of candidate key paths and the first non-empty
match wins. All functions here are pure and accept arbitrary decoded JSON.
"""

import re
from collections import deque
from typing import Any, Deque, Iterable, Optional, Sequence, Tuple

from offer_ingest.models.analysis_models import AnalysisTask, TaskState

TASK_ID_PATHS: Sequence[Tuple[str, ...]] = (
    ("task_id",),
    ("taskId",),
    ("id",),
    ("task", "task_id"),
    ("task", "id"),
    ("data", "task_id"),
    ("data", "task", "task_id"),
    ("data", "id"),
)

TASK_STATE_PATHS: Sequence[Tuple[str, ...]] = (
    ("status",),
    ("state",),
    ("data", "status"),
    ("data", "state"),
    ("task", "status"),
    ("task", "state"),
    ("data", "task", "status"),
    ("data", "task", "state"),
)

ARCHIVE_URL_PATHS: Sequence[Tuple[str, ...]] = (
    ("full_zip_url",),
    ("result", "full_zip_url"),
    ("data", "full_zip_url"),
    ("data", "result", "full_zip_url"),
    ("result_url",),
    ("archive_url",),
    ("zip_url",),
    ("result", "url"),
)

ERROR_MESSAGE_KEYS = ("err_msg", "error_message", "message")

_IDENTIFIER = re.compile(r"^[\w-]+$")


def get_path(payload: Any, path: Iterable[str]) -> Any:
    """Walk nested dicts; returns None as soon as a step is missing."""
    current = payload
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _as_text(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def first_text(payload: Any, paths: Iterable[Tuple[str, ...]]) -> Optional[str]:
    for path in paths:
        text = _as_text(get_path(payload, path))
        if text:
            return text
    return None


def _scan_for_task_id(payload: Any) -> Optional[str]:
    # Breadth-first so shallow keys win over deeply nested ones
    queue: Deque[Any] = deque([payload])
    while queue:
        node = queue.popleft()
        if isinstance(node, dict):
            for key, value in node.items():
                lowered = str(key).lower()
                if "task" in lowered and "id" in lowered:
                    text = _as_text(value)
                    if text and _IDENTIFIER.match(text):
                        return text
                if isinstance(value, (dict, list)):
                    queue.append(value)
        elif isinstance(node, list):
            queue.extend(item for item in node if isinstance(item, (dict, list)))
    return None


def extract_task_id(payload: Any) -> Optional[str]:
    """Return the task identifier from a submit or poll payload."""
    task_id = first_text(payload, TASK_ID_PATHS)
    if task_id and _IDENTIFIER.match(task_id):
        return task_id
    return _scan_for_task_id(payload)


def extract_task_state(payload: Any) -> Optional[str]:
    return first_text(payload, TASK_STATE_PATHS)


def extract_archive_url(payload: Any) -> Optional[str]:
    return first_text(payload, ARCHIVE_URL_PATHS)


def extract_task_error(payload: Any) -> Tuple[Optional[str], Optional[str]]:
    """Return ``(code, message)`` reported for a failed task."""
    for root in (payload, get_path(payload, ("data",))):
        if not isinstance(root, dict):
            continue

        error = root.get("error")
        if isinstance(error, dict):
            code = _as_text(error.get("code"))
            message = _as_text(error.get("message"))
            if code or message:
                return code, message
        elif _as_text(error):
            return None, _as_text(error)

        code = _as_text(root.get("err_code")) or _as_text(root.get("error_code"))
        for key in ERROR_MESSAGE_KEYS:
            message = _as_text(root.get(key))
            if message:
                return code, message
        if code:
            return code, None

    return None, None


def build_task_snapshot(payload: Any, fallback_task_id: Optional[str] = None) -> AnalysisTask:
    """Build an immutable task snapshot from one service response."""
    raw_state = extract_task_state(payload)
    error_code, error_message = extract_task_error(payload)
    return AnalysisTask(
        task_id=extract_task_id(payload) or fallback_task_id,
        state=TaskState.parse(raw_state),
        raw_state=raw_state,
        result_archive_url=extract_archive_url(payload),
        error_code=error_code,
        error_message=error_message,
    )
