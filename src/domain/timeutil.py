"""Date/time helpers shared by the domain and analytics layers.

All timestamps inside the engine are naive UTC datetimes.
"""

from datetime import date, datetime, timezone
from typing import Any, Optional


def utc_now() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values pass through."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a datetime, date or ISO-8601 string.

    Returns None when the value is missing or cannot be parsed; callers
    decide whether that is an error.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        # fromisoformat only accepts a trailing "Z" from Python 3.11 on
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return to_naive_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None
