"""Tolerant parsing of amounts written in Polish offer documents."""

import math
import re
from typing import Any, Optional

_NON_NUMERIC = re.compile(r"[^0-9,.\-]")
_GROUPING_DOT = re.compile(r"\.(?=\d{3}(?:\D|$))")
_GROUPING_COMMA = re.compile(r",(?=\d{3}(?:\D|$))")
_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")


def parse_number_value(value: Any) -> Optional[float]:
    """Parse a number from a numeric value or a locale-formatted string.

    Grouping separators (a dot or comma followed by exactly three digits) are
    dropped and the remaining decimal comma becomes a dot, so ``"1 234,56"``
    and ``"1.234,56"`` both parse as ``1234.56``.

    Args:
        value: Any value read from an extraction payload

    Returns:
        The parsed float, or None when no number can be read. Zero is a valid
        result and is never used to signal failure.
    """
    if isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None

    if not isinstance(value, str):
        return None

    sanitized = _NON_NUMERIC.sub("", value)
    sanitized = _GROUPING_DOT.sub("", sanitized)
    sanitized = _GROUPING_COMMA.sub("", sanitized)
    sanitized = sanitized.replace(",", ".", 1)

    match = _NUMBER.search(sanitized)
    if not match:
        return None
    number = float(match.group(0))
    return number if math.isfinite(number) else None
