"""Normalization helpers.

Centralizes defensive parsing of platform and backend values.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Any

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000


def safe_float(value: Any) -> float | None:
    if value is None or value == "" or value == "--":
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def safe_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def non_negative_or_none(value: Any) -> float | None:
    """Parse a float, treating negative readings as "not available"."""
    parsed = safe_float(value)
    if parsed is None or parsed < 0:
        return None
    return parsed


def parse_epoch(value: Any) -> datetime | None:
    """Convert an epoch timestamp (seconds **or** milliseconds) to a UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    parsed = safe_float(value)
    if parsed is None:
        return None
    if parsed >= _MS_THRESHOLD:
        parsed /= 1000.0
    return datetime.fromtimestamp(parsed, tz=UTC)
