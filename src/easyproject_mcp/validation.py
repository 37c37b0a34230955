"""Shared validation functions for tool arguments.

Pure functions with no MCP or HTTP dependencies. Each returns
``(value, None)`` on success or ``(fallback, error_message)`` on failure.
"""

from __future__ import annotations

import unicodedata
from datetime import date
from typing import Any

MAX_HOURS_PER_ENTRY = 24.0
_MAX_TEXT_LENGTH = 255


def parse_date(value: Any, field: str) -> tuple[date | None, str | None]:
    """Validate a ``YYYY-MM-DD`` date string."""
    if not isinstance(value, str):
        return (None, f"{field} must be a date string (YYYY-MM-DD)")
    try:
        parsed = date.fromisoformat(value)
    except ValueError:
        return (None, f"{field} must be a valid date in YYYY-MM-DD format, got {value!r}")
    # fromisoformat also accepts compact forms like 20240101.
    if parsed.isoformat() != value:
        return (None, f"{field} must be a valid date in YYYY-MM-DD format, got {value!r}")
    return (parsed, None)


def check_date_range(from_value: str | None, to_value: str | None) -> str | None:
    """Validate optional ``from_date``/``to_date``; return an error or None."""
    start = end = None
    if from_value is not None:
        start, err = parse_date(from_value, "from_date")
        if err:
            return err
    if to_value is not None:
        end, err = parse_date(to_value, "to_date")
        if err:
            return err
    if start is not None and end is not None and start > end:
        return f"from_date ({from_value}) must not be after to_date ({to_value})"
    return None


def check_hours(value: Any) -> tuple[float, str | None]:
    """Hours logged in one entry must be in (0, 24]."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        return (0.0, "hours must be a number")
    hours = float(value)
    if hours <= 0:
        return (0.0, "hours must be greater than 0")
    if hours > MAX_HOURS_PER_ENTRY:
        return (0.0, f"hours must not exceed {MAX_HOURS_PER_ENTRY:g} for a single entry")
    return (hours, None)


def sanitize_text(value: Any, field: str, *, max_length: int = _MAX_TEXT_LENGTH) -> tuple[str, str | None]:
    """Clean a short single-line text value such as a name or subject.

    Strips whitespace, then checks: non-empty, max length, no control chars.
    """
    if not isinstance(value, str):
        return ("", f"{field} must be a string")
    for ch in value:
        if unicodedata.category(ch).startswith("C"):
            return ("", f"{field} must not contain control characters (found U+{ord(ch):04X})")
    cleaned = value.strip()
    if not cleaned:
        return ("", f"{field} must not be empty")
    if len(cleaned) > max_length:
        return ("", f"{field} must be at most {max_length} characters")
    return (cleaned, None)
