from __future__ import annotations

import json
import logging
import math
from typing import Any

from .constants import JSON_VALUE_PREFIXES

logger = logging.getLogger(__name__)


def decode_stored_value(value: Any) -> Any:
    """Decode a value that the remote store may hold as a JSON string.

    Only strings that look like JSON (leading quote, bracket or brace) are
    decoded. On a decode failure the original string is returned unchanged.
    """
    if not isinstance(value, str) or not value.startswith(JSON_VALUE_PREFIXES):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        logger.warning("Keeping undecodable JSON-like value as text: %r", value[:80])
        return value


def is_blank(value: Any) -> bool:
    """Return True for an empty answer value.

    None, empty lists and empty or whitespace-only strings are blank. Any
    other scalar (including 0 and False) counts as a given answer.
    """
    if value is None:
        return True
    if isinstance(value, list | tuple):
        return len(value) == 0
    if isinstance(value, str):
        return value.strip() == ""
    return False


def to_number(value: Any) -> float | None:
    """Parse a value as a number, or return None when it is not numeric."""
    if value is None or isinstance(value, bool | list | tuple | dict):
        return None
    try:
        number = float(str(value).strip())
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return number
