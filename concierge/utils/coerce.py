"""
Defensive coercion helpers for untrusted values.

Everything that comes back from the model (final JSON, tool arguments) or from
an external collaborator passes through these helpers before any business
logic looks at it. None of them raise: a value that does not have the expected
shape collapses to None (or to an explicit fallback).
"""

from __future__ import annotations

import json
import math
import re
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional


_NUMERIC_PREFIX = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_CURRENCY_CODE = re.compile(r"^[A-Z]{3}$")
_NON_WORD = re.compile(r"[\W_]+", re.UNICODE)
_CODE_FENCE_OPEN = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_CODE_FENCE_CLOSE = re.compile(r"\s*```$")


def parse_record(value: Any) -> Optional[Dict[str, Any]]:
    """Return value if it is a JSON object (dict), otherwise None."""
    return value if isinstance(value, dict) else None


def to_trimmed_string(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def to_finite_number(value: Any) -> Optional[float]:
    """
    Accept finite ints/floats and numeric strings ("12.5", "40 USD").

    Booleans are rejected even though bool is an int subclass.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None
    if isinstance(value, str):
        match = _NUMERIC_PREFIX.match(value.strip())
        if not match:
            return None
        try:
            number = float(match.group(0))
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def to_safe_integer(value: Any) -> Optional[int]:
    number = to_finite_number(value)
    if number is None:
        return None
    return math.floor(number)


def clamp_integer(value: Any, minimum: int, maximum: int, fallback: int) -> int:
    number = to_finite_number(value)
    if number is None:
        return fallback
    return min(maximum, max(minimum, math.floor(number)))


def to_boolean(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized == "true":
            return True
        if normalized == "false":
            return False
    return None


def to_currency_code(value: Any) -> Optional[str]:
    raw = to_trimmed_string(value)
    if not raw:
        return None
    code = raw.upper()
    return code if _CURRENCY_CODE.match(code) else None


def to_iso_date(value: Any) -> Optional[str]:
    """Return a valid calendar date as YYYY-MM-DD (datetimes are truncated)."""
    raw = to_trimmed_string(value)
    if not raw:
        return None
    candidate = raw[:10]
    if not _ISO_DATE.match(candidate):
        return None
    try:
        date.fromisoformat(candidate)
    except ValueError:
        return None
    return candidate


def to_iso_datetime(value: Any) -> Optional[str]:
    if isinstance(value, datetime):
        parsed = value
    else:
        raw = to_trimmed_string(value)
        if not raw:
            return None
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def to_array_of_strings(value: Any, max_items: int = 8) -> List[str]:
    if not isinstance(value, list):
        return []
    strings = [entry for entry in (to_trimmed_string(item) for item in value) if entry]
    return strings[:max_items]


def unique_strings(values: Iterable[str], max_items: int = 8) -> List[str]:
    """De-duplicate case-insensitively, keeping the first spelling seen."""
    seen = set()
    output: List[str] = []
    for value in values:
        key = value.lower()
        if key in seen:
            continue
        seen.add(key)
        output.append(value)
    return output[:max_items]


def parse_json_like(raw: Any) -> Any:
    """
    Parse a JSON document that may be wrapped in a ``` / ```json fence.

    Returns None for empty or unparseable input.
    """
    if not isinstance(raw, str):
        return None
    trimmed = raw.strip()
    if not trimmed:
        return None
    if trimmed.startswith("```") and trimmed.endswith("```"):
        trimmed = _CODE_FENCE_CLOSE.sub("", _CODE_FENCE_OPEN.sub("", trimmed)).strip()
    try:
        return json.loads(trimmed)
    except ValueError:
        return None


def normalize_match_token(value: Optional[str]) -> str:
    """Lowercase and collapse punctuation/whitespace for fuzzy name matching."""
    if not isinstance(value, str):
        return ""
    return _NON_WORD.sub(" ", value.lower()).strip()


def amounts_close(left: float, right: float) -> bool:
    return abs(left - right) <= max(3.0, abs(right) * 0.03)


def currencies_match(left: Any, right: Any) -> bool:
    normalized_left = to_currency_code(left)
    normalized_right = to_currency_code(right)
    if not normalized_left or not normalized_right:
        return False
    return normalized_left == normalized_right
