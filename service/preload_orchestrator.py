"""Bulk refresh of the rolling calendar window."""
import logging
import threading
import time
from datetime import date, datetime
from typing import Callable, List, Optional, Tuple

from client.hebcal_client import HebcalClient
from processor.date_keys import date_window, day_of, key_of
from processor.errors import ErrorKind
from processor.models import PreloadResult
from processor.shabbat_parser import ShabbatParser
from storage.dynamodb_cache import DynamoDBCalendarCache, utc_now

logger = logging.getLogger(__name__)


def months_from(start: date, count: int) -> List[Tuple[int, int]]:
    """(year, month) pairs for the start date's month and the following ones."""
    months = []
    for offset in range(count):
        year_offset, month_index = divmod(start.month - 1 + offset, 12)
        months.append((start.year + year_offset, month_index + 1))
    return months


class PreloadOrchestrator:
    """Decides when the cache needs a bulk refresh and performs it."""

    COVERAGE_THRESHOLD = 0.8

    def __init__(
        self,
        client: HebcalClient,
        cache: DynamoDBCalendarCache,
        parser: Optional[ShabbatParser] = None,
        days_ahead: int = 90,
        months_ahead: int = 3,
        request_delay: float = 0.1,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the orchestrator.

        Args:
            client: Remote calendar client
            cache: Persistent cache to fill
            parser: Timeline parser (default: ShabbatParser())
            days_ahead: Days of Hebrew dates to keep cached, today included
            months_ahead: Months of Sabbath times to fetch, this month included
            request_delay: Seconds to wait after each Hebrew date request
            clock: Returns the current aware datetime
            sleep: Called with request_delay between requests
        """
        self.client = client
        self.cache = cache
        self.parser = parser or ShabbatParser()
        self.days_ahead = days_ahead
        self.months_ahead = months_ahead
        self.request_delay = request_delay
        self.clock = clock
        self.sleep = sleep

    def today(self) -> date:
        return day_of(self.clock())

    def window_dates(self) -> List[date]:
        """Dates in the preload window, starting today."""
        return date_window(self.today(), self.days_ahead)

    def needs_preload(self) -> bool:
        """
        Check whether a bulk refresh is warranted.

        Returns:
            True if the cache is expired or stale-versioned, or covers
            less than 80% of the preload window
        """
        if not self.cache.is_valid():
            logger.info("Cache is expired or missing; preload needed")
            return True

        required_keys = {key_of(day) for day in self.window_dates()}
        ratio = self.cache.coverage_ratio(required_keys)
        logger.info(f"Cache covers {ratio:.1%} of the next {self.days_ahead} days")
        return ratio < self.COVERAGE_THRESHOLD

    def preload(self, cancel_event: Optional[threading.Event] = None) -> PreloadResult:
        """
        Fill the cache for the preload window.

        Hebrew dates already cached are skipped; each fetched date is
        persisted before the next request. Sabbath times are fetched one
        month at a time and written as one batch per month. Requests run
        sequentially with a fixed delay between Hebrew date conversions.

        Args:
            cancel_event: Checked before every request; when set, the run
                stops and the cache is not marked refreshed

        Returns:
            PreloadResult with counts, and the window's Hebrew dates and
            fetched Sabbath records that are now persisted
        """
        result = PreloadResult()
        today = self.today()
        logger.info(f"Preloading {self.days_ahead} days of calendar data from {today}")

        cached = self.cache.load_hebrew_dates()

        for day in date_window(today, self.days_ahead):
            date_key = key_of(day)
            if date_key in cached:
                result.hebrew_dates[date_key] = cached[date_key]
                result.hebrew_dates_skipped += 1
                continue

            if self._cancelled(cancel_event, result):
                return result

            fetched = self.client.fetch_hebrew_date(day)
            if not fetched.ok:
                self._hebrew_date_failed(result, date_key, fetched.error)
            elif not self.cache.set_hebrew_date(date_key, fetched.value):
                self._hebrew_date_failed(result, date_key, ErrorKind.STORAGE)
            else:
                result.hebrew_dates[date_key] = fetched.value
                result.hebrew_dates_fetched += 1

            self.sleep(self.request_delay)

        for year, month in months_from(today, self.months_ahead):
            if self._cancelled(cancel_event, result):
                return result

            timeline = self.client.fetch_month_timeline(year, month)
            if not timeline.ok:
                result.months_failed += 1
                result.errors.append(f"Month {year}-{month:02d}: {timeline.error.value} error")
                continue

            records = self.parser.parse_by_key(timeline.value)
            stored = self.cache.set_sabbath_records(records)
            result.sabbath_records_stored += stored
            if stored < len(records):
                result.months_failed += 1
                result.errors.append(f"Month {year}-{month:02d}: {ErrorKind.STORAGE.value} error")
                continue

            result.sabbath_records.update(records)
            result.months_fetched += 1

        self.cache.mark_refreshed()
        logger.info(
            f"Preload complete",
            extra={
                'hebrew_dates_fetched': result.hebrew_dates_fetched,
                'hebrew_dates_skipped': result.hebrew_dates_skipped,
                'hebrew_dates_failed': result.hebrew_dates_failed,
                'months_fetched': result.months_fetched,
                'months_failed': result.months_failed,
            }
        )
        return result

    def _cancelled(self, cancel_event: Optional[threading.Event], result: PreloadResult) -> bool:
        if cancel_event is None or not cancel_event.is_set():
            return False
        logger.info("Preload cancelled; keeping data persisted so far")
        result.cancelled = True
        return True

    def _hebrew_date_failed(self, result: PreloadResult, date_key: str, error: ErrorKind) -> None:
        result.hebrew_dates_failed += 1
        result.errors.append(f"Hebrew date {date_key}: {error.value} error")
