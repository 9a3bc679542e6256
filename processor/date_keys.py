"""Canonical day-only cache keys.

Keys are ISO 8601 calendar dates (YYYY-MM-DD). Aware datetimes are first
converted to the calendar's fixed timezone, so the same instant always
maps to the same key regardless of where it was produced.
"""
from datetime import date, datetime, timedelta
from typing import List, Union
from zoneinfo import ZoneInfo

from processor.errors import InvalidKeyError

CALENDAR_TIMEZONE = ZoneInfo('America/Chicago')
KEY_FORMAT = '%Y-%m-%d'

DateLike = Union[date, datetime]


def day_of(value: DateLike) -> date:
    """Truncate a date or datetime to its calendar day in the fixed timezone."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(CALENDAR_TIMEZONE)
        return value.date()
    return value


def key_of(value: DateLike) -> str:
    """Return the cache key for a date or datetime."""
    return day_of(value).strftime(KEY_FORMAT)


def date_of(key: str) -> date:
    """
    Parse a cache key back to a date.

    Raises:
        InvalidKeyError: If the key is not a YYYY-MM-DD date
    """
    try:
        return datetime.strptime(key, KEY_FORMAT).date()
    except (TypeError, ValueError) as e:
        raise InvalidKeyError(f"Invalid date key {key!r}: {e}") from e


def date_window(start: date, days: int) -> List[date]:
    """Consecutive days starting at ``start`` (inclusive)."""
    return [start + timedelta(days=offset) for offset in range(days)]
