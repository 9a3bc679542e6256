"""Calendar cache service: memory, then DynamoDB, then the calendar API."""
import logging
import threading
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Optional

from client.hebcal_client import HebcalClient
from processor.date_keys import DateLike, day_of, key_of
from processor.errors import ErrorKind
from processor.models import FetchResult, PreloadResult, SabbathRecord
from processor.shabbat_parser import ShabbatParser
from service.preload_orchestrator import PreloadOrchestrator
from storage.dynamodb_cache import HEBREW_DATES, SHABBAT_TIMES, DynamoDBCalendarCache

logger = logging.getLogger(__name__)

CLEARED = 'cleared'

Listener = Callable[[str, Optional[str], Any], None]


class CalendarCache:
    """
    Hebrew date and Sabbath time lookups for calendar consumers.

    Reads are served from the in-memory map, then the persistent cache.
    Hebrew dates fall back to a direct API request; Sabbath times only
    come from preload() or refresh_month(). Listeners registered with
    subscribe() are told about every value mirrored into memory.
    """

    SATURDAY = 5

    def __init__(
        self,
        client: HebcalClient,
        store: DynamoDBCalendarCache,
        orchestrator: Optional[PreloadOrchestrator] = None,
        parser: Optional[ShabbatParser] = None,
    ):
        self.client = client
        self.store = store
        self.parser = parser or ShabbatParser()
        self.orchestrator = orchestrator or PreloadOrchestrator(
            client, store, parser=self.parser
        )
        self._hebrew_dates: Dict[str, str] = {}
        self._sabbath_records: Dict[str, SabbathRecord] = {}
        self._lock = threading.Lock()
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        """Register a callback receiving (namespace, date_key, value)."""
        self._listeners.append(listener)

    def activate(self, cancel_event: Optional[threading.Event] = None) -> Optional[PreloadResult]:
        """
        Prepare the cache for use.

        Clears stale-schema data, then preloads if needed or loads the
        preload window from the persistent cache into memory. After a
        preload, memory is filled from the values the preload persisted.

        Returns:
            PreloadResult if a preload ran, otherwise None
        """
        self.store.ensure_schema()

        if not self.orchestrator.needs_preload():
            logger.info("Cache is valid, skipping preload")
            self._load_window()
            return None

        result = self.orchestrator.preload(cancel_event=cancel_event)
        self._mirror_preload(result)
        return result

    def get_hebrew_date(self, day: DateLike) -> Optional[str]:
        """
        Hebrew date (without year) for a day.

        Returns:
            e.g. "15 Cheshvan", or None if it could not be found or fetched
        """
        date_key = key_of(day)

        with self._lock:
            cached = self._hebrew_dates.get(date_key)
        if cached is not None:
            return cached

        stored = self.store.get_hebrew_date(date_key)
        if stored is not None:
            self._mirror(HEBREW_DATES, date_key, stored)
            return stored

        fetched = self.client.fetch_hebrew_date(day_of(day))
        if not fetched.ok:
            return None

        if not self.store.set_hebrew_date(date_key, fetched.value):
            # Not mirrored, so the next lookup tries to persist it again
            logger.warning(f"Hebrew date {date_key} fetched but not persisted")
            return fetched.value

        self._mirror(HEBREW_DATES, date_key, fetched.value)
        return fetched.value

    def get_hebrew_dates(self, days: Iterable[DateLike]) -> Dict[date, str]:
        """Hebrew dates for several days; days without one are omitted."""
        found = {}
        for day in days:
            value = self.get_hebrew_date(day)
            if value is not None:
                found[day_of(day)] = value
        return found

    def get_sabbath_record(self, day: DateLike) -> Optional[SabbathRecord]:
        """Sabbath record whose candle lighting falls on the given day."""
        date_key = key_of(day)

        with self._lock:
            cached = self._sabbath_records.get(date_key)
        if cached is not None:
            return cached

        stored = self.store.get_sabbath_record(date_key)
        if stored is not None:
            self._mirror(SHABBAT_TIMES, date_key, stored)
        return stored

    def get_sabbath_records(self, days: Iterable[DateLike]) -> Dict[date, SabbathRecord]:
        found = {}
        for day in days:
            record = self.get_sabbath_record(day)
            if record is not None:
                found[day_of(day)] = record
        return found

    def refresh_month(self, year: int, month: int) -> FetchResult[List[SabbathRecord]]:
        """
        Fetch, parse and persist Sabbath times for one month.

        Returns:
            FetchResult holding the month's records, or the kind of failure
        """
        timeline = self.client.fetch_month_timeline(year, month)
        if not timeline.ok:
            return FetchResult.failure(timeline.error)

        records = self.parser.parse_by_key(timeline.value)
        stored = self.store.set_sabbath_records(records)
        if stored < len(records):
            logger.error(
                f"Stored {stored} of {len(records)} Sabbath records for {year}-{month:02d}"
            )
            return FetchResult.failure(ErrorKind.STORAGE)

        for date_key, record in records.items():
            self._mirror(SHABBAT_TIMES, date_key, record)

        logger.info(f"Refreshed {len(records)} Sabbath records for {year}-{month:02d}")
        return FetchResult.success(list(records.values()))

    def clear_all(self) -> None:
        """Drop the in-memory map and the persistent cache."""
        with self._lock:
            self._hebrew_dates.clear()
            self._sabbath_records.clear()
        self.store.clear()
        self._notify(CLEARED, None, None)

    def is_shabbat(self, day: DateLike) -> bool:
        return day_of(day).weekday() == self.SATURDAY

    def _load_window(self) -> None:
        """Mirror the persisted preload window into memory."""
        window = {key_of(day) for day in self.orchestrator.window_dates()}

        hebrew_dates = self.store.load_hebrew_dates()
        for date_key in sorted(window & hebrew_dates.keys()):
            self._mirror(HEBREW_DATES, date_key, hebrew_dates[date_key])

        for date_key, record in sorted(self.store.load_sabbath_records().items()):
            if date_key in window:
                self._mirror(SHABBAT_TIMES, date_key, record)

    def _mirror_preload(self, result: PreloadResult) -> None:
        window = {key_of(day) for day in self.orchestrator.window_dates()}

        for date_key in sorted(window & result.hebrew_dates.keys()):
            self._mirror(HEBREW_DATES, date_key, result.hebrew_dates[date_key])

        for date_key in sorted(window & result.sabbath_records.keys()):
            self._mirror(SHABBAT_TIMES, date_key, result.sabbath_records[date_key])

    def _mirror(self, namespace: str, date_key: str, value: Any) -> None:
        with self._lock:
            if namespace == HEBREW_DATES:
                self._hebrew_dates[date_key] = value
            else:
                self._sabbath_records[date_key] = value
        self._notify(namespace, date_key, value)

    def _notify(self, namespace: str, date_key: Optional[str], value: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(namespace, date_key, value)
            except Exception as e:
                logger.warning(f"Cache listener failed for {namespace}/{date_key}: {e}")
