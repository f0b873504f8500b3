"""
Date helpers - history keys are local calendar days in YYYY-MM-DD form.
"""
import re
from datetime import date, datetime, timedelta
from typing import List, Optional, Union

from ..core.errors import InvalidOperation

DateLike = Union[date, datetime, str]

_LOOSE_DATE = re.compile(r"^\s*(\d{4})-(\d{1,2})-(\d{1,2})(?:[T ].*)?\s*$")


def today_key() -> str:
    """Today's local calendar day as a history key"""
    return date.today().isoformat()


def normalize_date_key(value: str) -> Optional[str]:
    """
    Normalize a history key spelling to YYYY-MM-DD.

    Accepts unpadded dates ("2024-1-5") and ISO timestamps
    ("2024-01-05T08:00:00Z"); the time part is ignored.

    Returns:
        Canonical key or None if the value is not a calendar date
    """
    match = _LOOSE_DATE.match(value) if isinstance(value, str) else None
    if not match:
        return None

    year, month, day = (int(part) for part in match.groups())
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def to_date_key(value: Optional[DateLike] = None) -> str:
    """Convert a date, datetime or string into a history key (default: today)"""
    if value is None:
        return today_key()
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    key = normalize_date_key(value)
    if key is None:
        raise InvalidOperation(f"Not a calendar date: {value!r}")
    return key


def trailing_date_keys(days: int, end: Optional[DateLike] = None) -> List[str]:
    """Keys of the last `days` days ending at `end` (inclusive), oldest first"""
    if days <= 0:
        return []
    end_day = date.fromisoformat(to_date_key(end))
    start = end_day - timedelta(days=days - 1)
    return [(start + timedelta(days=offset)).isoformat() for offset in range(days)]
