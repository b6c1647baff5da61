"""
Due Dates — Best-Effort Free-Text Resolution

Accepted forms (month names full or three-letter, case-insensitive):
    2026-01-15            → passed through unchanged
    14 Jan / 14 January 2026
    Jan 14 / January 14, 2026

A missing year resolves to the current calendar year at resolution time.
Near a year boundary this misreads dates: "14 Jan" written in late December
resolves to January of the *current* year, not the next one.  The behavior
is kept as documented; callers that care pass ``today`` explicitly.
"""

from __future__ import annotations

import re
from datetime import date
from typing import Dict, Optional

MONTHS: Dict[str, int] = {
    "jan": 1, "january": 1, "feb": 2, "february": 2, "mar": 3, "march": 3,
    "apr": 4, "april": 4, "may": 5, "jun": 6, "june": 6,
    "jul": 7, "july": 7, "aug": 8, "august": 8, "sep": 9, "september": 9,
    "oct": 10, "october": 10, "nov": 11, "november": 11, "dec": 12, "december": 12,
}

_ISO_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DAY_MONTH_RE = re.compile(r"^(\d{1,2})\s+([A-Za-z]+)(?:\s+(\d{4}))?$")
_MONTH_DAY_RE = re.compile(r"^([A-Za-z]+)\s+(\d{1,2})(?:,?\s+(\d{4}))?$")


def _build(year: int, month_name: str, day: int) -> Optional[str]:
    month = MONTHS.get(month_name.lower())
    if month is None:
        return None
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def parse_due_date(due: Optional[str], *, today: Optional[date] = None) -> Optional[str]:
    """Resolve a free-text due date to ``YYYY-MM-DD``.

    Args:
        due: Free text from an action table cell.
        today: Reference date for year-omitted input (default: today).

    Returns:
        ISO date string, or None when nothing matches.  Never raises.
    """
    if not due or not due.strip():
        return None

    text = due.strip()
    if _ISO_RE.match(text):
        return text

    current_year = (today or date.today()).year

    m = _DAY_MONTH_RE.match(text)
    if m:
        year = int(m.group(3)) if m.group(3) else current_year
        resolved = _build(year, m.group(2), int(m.group(1)))
        if resolved:
            return resolved

    m = _MONTH_DAY_RE.match(text)
    if m:
        year = int(m.group(3)) if m.group(3) else current_year
        return _build(year, m.group(1), int(m.group(2)))

    return None
