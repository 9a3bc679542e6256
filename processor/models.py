"""Data models for calendar events and cached records."""
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Dict, Generic, Optional, TypeVar

from processor.errors import ErrorKind

T = TypeVar('T')

PARASHAT_PREFIX = 'Parashat '


class EventCategory(str, Enum):
    """Category of a timeline item returned by the calendar service."""
    CANDLES = 'candles'
    PARASHAT = 'parashat'
    HAVDALAH = 'havdalah'
    OTHER = 'other'

    @classmethod
    def from_api(cls, category: Optional[str], title: str) -> 'EventCategory':
        """
        Map the API category string to an EventCategory.

        A missing category falls back to the "Parashat " title prefix.
        """
        if category:
            try:
                return cls(category)
            except ValueError:
                return cls.OTHER
        if title.startswith(PARASHAT_PREFIX):
            return cls.PARASHAT
        return cls.OTHER


@dataclass(frozen=True)
class CalendarEvent:
    """Timeline item from a month fetch. Never persisted."""
    title: str
    date: datetime
    category: EventCategory


@dataclass(frozen=True)
class SabbathRecord:
    """Candle lighting, havdalah and parsha for one Sabbath."""
    shabbat_date: date
    candle_lighting: datetime
    havdalah: datetime
    parsha: Optional[str] = None


@dataclass
class CacheMetadata:
    """Refresh bookkeeping for the persistent cache."""
    last_refreshed_at: Optional[datetime]
    schema_version: Optional[int]


@dataclass
class FetchResult(Generic[T]):
    """Outcome of a remote fetch: a value, or the kind of failure."""
    value: Optional[T] = None
    error: Optional[ErrorKind] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> 'FetchResult[T]':
        return cls(value=value)

    @classmethod
    def failure(cls, error: ErrorKind) -> 'FetchResult[T]':
        return cls(error=error)


@dataclass
class PreloadResult:
    """Result of a preload run."""
    hebrew_dates_fetched: int = 0
    hebrew_dates_skipped: int = 0
    hebrew_dates_failed: int = 0
    months_fetched: int = 0
    months_failed: int = 0
    sabbath_records_stored: int = 0
    cancelled: bool = False
    errors: list[str] = field(default_factory=list)
    hebrew_dates: Dict[str, str] = field(default_factory=dict)
    sabbath_records: Dict[str, SabbathRecord] = field(default_factory=dict)
