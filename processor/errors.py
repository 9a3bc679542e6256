"""Error types for calendar fetching, parsing and caching."""
from enum import Enum


class ErrorKind(str, Enum):
    """Why a value is absent."""
    NETWORK = 'network'
    DECODE = 'decode'
    STORAGE = 'storage'


class CalendarError(Exception):
    """Base class for calendar engine errors."""


class NetworkError(CalendarError):
    """Request to the calendar service failed or timed out."""
    kind = ErrorKind.NETWORK


class DecodeError(CalendarError):
    """Response did not match any expected shape."""
    kind = ErrorKind.DECODE


class MalformedEventOrder(CalendarError):
    """Havdalah event seen with no pending candle lighting.

    Only used for logging; the event is dropped.
    """


class InvalidKeyError(CalendarError, ValueError):
    """Cache key could not be parsed back to a date."""
