"""Client for the Hebcal calendar and date converter APIs."""
import logging
from datetime import date, datetime
from typing import Any, Dict, List

import requests

from processor.date_keys import CALENDAR_TIMEZONE
from processor.errors import DecodeError, NetworkError
from processor.models import CalendarEvent, EventCategory, FetchResult

logger = logging.getLogger(__name__)


def strip_hebrew_year(hebrew_date: str) -> str:
    """
    Drop the year from a Hebrew date string.

    Args:
        hebrew_date: Date such as "15 Cheshvan 5785"

    Returns:
        The first two tokens ("15 Cheshvan") when there are three or more,
        otherwise the input unchanged
    """
    tokens = hebrew_date.split()
    if len(tokens) >= 3:
        return f"{tokens[0]} {tokens[1]}"
    return hebrew_date


def parse_event_date(value: str) -> datetime:
    """
    Parse a timeline item date.

    Full ISO 8601 timestamps are tried first, then bare YYYY-MM-DD dates,
    which are placed at midnight in the calendar timezone.

    Raises:
        DecodeError: If neither format matches
    """
    if not isinstance(value, str):
        raise DecodeError(f"Date is not a string: {value!r}")

    text = value.strip()
    if 'T' in text:
        try:
            parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=CALENDAR_TIMEZONE)
            return parsed
        except ValueError:
            pass

    try:
        parsed = datetime.strptime(text, '%Y-%m-%d')
    except ValueError:
        raise DecodeError(
            f"Date string '{value}' does not match expected formats"
        ) from None
    return parsed.replace(tzinfo=CALENDAR_TIMEZONE)


class HebcalClient:
    """Fetches Sabbath timelines and Hebrew dates from hebcal.com."""

    BASE_URL = "https://www.hebcal.com"
    CITY = "Chicago"

    # Holidays, Rosh Chodesh, sunrise/sunset, candle lighting, weekly reading
    TIMELINE_FLAGS = {
        'v': '1',
        'cfg': 'json',
        'maj': 'on',
        'min': 'on',
        'mod': 'on',
        'nx': 'on',
        'ss': 'on',
        'mf': 'on',
        'c': 'on',
        'geo': 'city',
        'city': CITY,
        'M': 'on',
        's': 'on',
    }

    def __init__(self, timeout: int = 30):
        """
        Initialize the client.

        Args:
            timeout: HTTP request timeout in seconds (default: 30)
        """
        self.timeout = timeout

    def fetch_month_timeline(self, year: int, month: int) -> FetchResult[List[CalendarEvent]]:
        """
        Fetch the ordered timeline of calendar events for one month.

        Args:
            year: Gregorian year
            month: Gregorian month (1-12)

        Returns:
            FetchResult holding the events, or the kind of failure
        """
        params = dict(self.TIMELINE_FLAGS, year=str(year), month=str(month))

        try:
            payload = self._get_json('/hebcal', params)
            events = self._decode_timeline(payload)
        except (NetworkError, DecodeError) as e:
            logger.warning(f"Failed to fetch timeline for {year}-{month:02d}: {e}")
            return FetchResult.failure(e.kind)

        logger.info(f"Fetched {len(events)} timeline events for {year}-{month:02d}")
        return FetchResult.success(events)

    def fetch_hebrew_date(self, gregorian_date: date) -> FetchResult[str]:
        """
        Convert a Gregorian date to a Hebrew date without the year.

        Args:
            gregorian_date: Date to convert

        Returns:
            FetchResult holding e.g. "15 Cheshvan", or the kind of failure
        """
        params = {
            'cfg': 'json',
            'gy': str(gregorian_date.year),
            'gm': str(gregorian_date.month),
            'gd': str(gregorian_date.day),
            'g2h': '1',
        }

        try:
            payload = self._get_json('/converter', params)
            hebrew = self._decode_conversion(payload)
        except (NetworkError, DecodeError) as e:
            logger.warning(
                f"Failed to fetch Hebrew date for {gregorian_date.isoformat()}: {e}"
            )
            return FetchResult.failure(e.kind)

        return FetchResult.success(strip_hebrew_year(hebrew))

    def _get_json(self, path: str, params: Dict[str, str]) -> Any:
        """
        Issue a GET request and decode the JSON body.

        Raises:
            NetworkError: If the request fails, times out or returns an error status
            DecodeError: If the body is not JSON
        """
        url = f"{self.BASE_URL}{path}"
        try:
            response = requests.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise NetworkError(f"Request to {url} failed: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise DecodeError(f"Response from {url} is not JSON: {e}") from e

    def _decode_timeline(self, payload: Any) -> List[CalendarEvent]:
        """Decode a month timeline response; any bad item fails the whole month."""
        if not isinstance(payload, dict) or not isinstance(payload.get('items'), list):
            raise DecodeError("Timeline response has no 'items' list")

        return [self._decode_item(item) for item in payload['items']]

    def _decode_item(self, item: Any) -> CalendarEvent:
        if not isinstance(item, dict):
            raise DecodeError(f"Timeline item is not an object: {item!r}")

        title = item.get('title')
        if not isinstance(title, str):
            raise DecodeError(f"Timeline item has no title: {item!r}")
        if 'date' not in item:
            raise DecodeError(f"Timeline item '{title}' has no date")

        category = item.get('category')
        if not isinstance(category, str):
            category = None

        return CalendarEvent(
            title=title,
            date=parse_event_date(item['date']),
            category=EventCategory.from_api(category, title),
        )

    def _decode_conversion(self, payload: Any) -> str:
        """Validate a converter response and return its Hebrew date string."""
        if not isinstance(payload, dict):
            raise DecodeError("Converter response is not an object")

        expected = {'hebrew': str, 'hy': int, 'hm': str, 'hd': int}
        for name, kind in expected.items():
            if not isinstance(payload.get(name), kind):
                raise DecodeError(f"Converter response field '{name}' is missing or invalid")

        return payload['hebrew']
