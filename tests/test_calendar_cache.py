"""Unit tests for the CalendarCache service."""
from datetime import date, datetime, timedelta
from unittest.mock import Mock, patch

import pytest
from botocore.exceptions import ClientError

from client.hebcal_client import HebcalClient
from processor.date_keys import CALENDAR_TIMEZONE
from processor.errors import ErrorKind
from processor.models import CalendarEvent, EventCategory, FetchResult, SabbathRecord
from service.calendar_cache import CLEARED, CalendarCache
from service.preload_orchestrator import PreloadOrchestrator

CANDLES = datetime(2024, 11, 1, 17, 29, tzinfo=CALENDAR_TIMEZONE)
HAVDALAH = datetime(2024, 11, 2, 18, 28, tzinfo=CALENDAR_TIMEZONE)
RECORD = SabbathRecord(date(2024, 11, 1), CANDLES, HAVDALAH, "Noach")


@pytest.fixture
def client():
    stub = Mock(spec=HebcalClient)
    stub.fetch_hebrew_date.side_effect = lambda day: FetchResult.success(f"hebrew {day.isoformat()}")
    stub.fetch_month_timeline.return_value = FetchResult.success([
        CalendarEvent("Candle lighting", CANDLES, EventCategory.CANDLES),
        CalendarEvent("Parashat Noach", HAVDALAH, EventCategory.PARASHAT),
        CalendarEvent("Havdalah", HAVDALAH, EventCategory.HAVDALAH),
    ])
    return stub


@pytest.fixture
def calendar_cache(client, store, clock):
    orchestrator = PreloadOrchestrator(
        client, store, days_ahead=10, months_ahead=1, clock=clock, sleep=Mock()
    )
    return CalendarCache(client, store, orchestrator=orchestrator)


class TestHebrewDateLookup:

    def test_served_from_persistent_cache(self, calendar_cache, store, client):
        store.set_hebrew_date("2024-11-05", "4 Cheshvan")

        assert calendar_cache.get_hebrew_date(date(2024, 11, 5)) == "4 Cheshvan"
        client.fetch_hebrew_date.assert_not_called()

    def test_mirrored_into_memory(self, calendar_cache, store):
        store.set_hebrew_date("2024-11-05", "4 Cheshvan")
        calendar_cache.get_hebrew_date(date(2024, 11, 5))
        store.clear()

        assert calendar_cache.get_hebrew_date(date(2024, 11, 5)) == "4 Cheshvan"

    def test_falls_back_to_remote_and_persists(self, calendar_cache, store, client):
        value = calendar_cache.get_hebrew_date(datetime(2024, 11, 5, 21, 0))

        assert value == "hebrew 2024-11-05"
        client.fetch_hebrew_date.assert_called_once_with(date(2024, 11, 5))
        assert store.get_hebrew_date("2024-11-05") == "hebrew 2024-11-05"

    def test_remote_failure_is_absent(self, calendar_cache, store, client):
        client.fetch_hebrew_date.side_effect = None
        client.fetch_hebrew_date.return_value = FetchResult.failure(ErrorKind.NETWORK)

        assert calendar_cache.get_hebrew_date(date(2024, 11, 5)) is None
        assert store.get_hebrew_date("2024-11-05") is None

    def test_batch_lookup_omits_missing(self, calendar_cache, client):
        client.fetch_hebrew_date.side_effect = lambda day: (
            FetchResult.failure(ErrorKind.DECODE) if day.day == 2
            else FetchResult.success(f"h{day.day}")
        )

        found = calendar_cache.get_hebrew_dates([date(2024, 11, 1), date(2024, 11, 2), date(2024, 11, 3)])

        assert found == {date(2024, 11, 1): "h1", date(2024, 11, 3): "h3"}

    def test_unpersisted_value_is_not_mirrored(self, calendar_cache, store, client):
        error = ClientError({'Error': {'Code': 'InternalServerError', 'Message': 'boom'}}, 'PutItem')

        with patch.object(store.table, 'put_item', side_effect=error):
            assert calendar_cache.get_hebrew_date(date(2024, 11, 5)) == "hebrew 2024-11-05"
            assert calendar_cache.get_hebrew_date(date(2024, 11, 5)) == "hebrew 2024-11-05"

        assert client.fetch_hebrew_date.call_count == 2
        assert store.get_hebrew_date("2024-11-05") is None


class TestSabbathLookup:

    def test_from_persistent_cache(self, calendar_cache, store):
        store.set_sabbath_record("2024-11-01", RECORD)

        assert calendar_cache.get_sabbath_record(date(2024, 11, 1)) == RECORD
        assert calendar_cache.get_sabbath_records([date(2024, 11, 1), date(2024, 11, 2)]) == {
            date(2024, 11, 1): RECORD
        }

    def test_no_remote_fallback(self, calendar_cache, client):
        assert calendar_cache.get_sabbath_record(date(2024, 11, 1)) is None
        client.fetch_month_timeline.assert_not_called()

    def test_refresh_month(self, calendar_cache, store, client):
        result = calendar_cache.refresh_month(2024, 11)

        assert result.ok
        assert result.value == [RECORD]
        client.fetch_month_timeline.assert_called_once_with(2024, 11)
        assert store.get_sabbath_record("2024-11-01") == RECORD
        assert calendar_cache.get_sabbath_record(CANDLES) == RECORD

    def test_refresh_month_failure(self, calendar_cache, store, client):
        client.fetch_month_timeline.return_value = FetchResult.failure(ErrorKind.NETWORK)

        result = calendar_cache.refresh_month(2024, 11)

        assert result.error == ErrorKind.NETWORK
        assert store.load_sabbath_records() == {}

    def test_refresh_month_storage_failure(self, calendar_cache, store):
        with patch.object(store, 'set_sabbath_records', return_value=0):
            result = calendar_cache.refresh_month(2024, 11)

        assert result.ok is False
        assert result.error == ErrorKind.STORAGE
        assert calendar_cache.get_sabbath_record(date(2024, 11, 1)) is None


class TestActivation:

    def test_activate_preloads_when_needed(self, calendar_cache, store, client):
        result = calendar_cache.activate()

        assert result is not None
        assert result.hebrew_dates_fetched == 10
        assert store.is_valid() is True
        assert calendar_cache.get_sabbath_record(date(2024, 11, 1)) == RECORD

    def test_activate_mirrors_preloaded_values(self, calendar_cache, store, client):
        with patch.object(store, 'load_sabbath_records', wraps=store.load_sabbath_records) as load:
            calendar_cache.activate()

        load.assert_not_called()
        store.clear()

        assert calendar_cache.get_hebrew_date(date(2024, 11, 1)) == "hebrew 2024-11-01"
        assert calendar_cache.get_sabbath_record(date(2024, 11, 1)) == RECORD
        assert client.fetch_hebrew_date.call_count == 10

    def test_activate_loads_from_cache_when_valid(self, calendar_cache, store, client):
        store.set_hebrew_dates({
            (date(2024, 11, 1) + timedelta(days=i)).isoformat(): f"h{i}" for i in range(10)
        })
        store.set_sabbath_record("2024-11-01", RECORD)
        store.mark_refreshed()
        seen = []
        calendar_cache.subscribe(lambda namespace, key, value: seen.append((namespace, key)))

        assert calendar_cache.activate() is None

        client.fetch_hebrew_date.assert_not_called()
        assert ("hebrew_dates", "2024-11-01") in seen
        assert ("shabbat_times", "2024-11-01") in seen
        assert len(seen) == 11

    def test_activate_clears_stale_schema(self, calendar_cache, store, dynamodb_table):
        store.set_hebrew_date("2024-11-01", "stale")
        store.mark_refreshed()
        dynamodb_table.put_item(Item={
            'cache_namespace': 'metadata', 'date_key': 'schema_version', 'value': 0
        })

        calendar_cache.activate()

        assert store.get_hebrew_date("2024-11-01") == "hebrew 2024-11-01"

    def test_activate_cancelled(self, calendar_cache, store):
        cancel = Mock()
        cancel.is_set.return_value = True

        result = calendar_cache.activate(cancel_event=cancel)

        assert result.cancelled is True
        assert store.is_valid() is False


class TestMisc:

    def test_clear_all(self, calendar_cache, store):
        store.set_hebrew_date("2024-11-05", "4 Cheshvan")
        calendar_cache.get_hebrew_date(date(2024, 11, 5))
        events = []
        calendar_cache.subscribe(lambda namespace, key, value: events.append(namespace))

        calendar_cache.clear_all()

        assert events == [CLEARED]
        assert store.load_hebrew_dates() == {}
        assert calendar_cache.get_hebrew_date(date(2024, 11, 5)) == "hebrew 2024-11-05"

    def test_failing_listener_does_not_break_lookup(self, calendar_cache, store):
        store.set_hebrew_date("2024-11-05", "4 Cheshvan")
        calendar_cache.subscribe(Mock(side_effect=RuntimeError("ui gone")))

        assert calendar_cache.get_hebrew_date(date(2024, 11, 5)) == "4 Cheshvan"

    def test_is_shabbat(self, calendar_cache):
        assert calendar_cache.is_shabbat(date(2024, 11, 2)) is True
        assert calendar_cache.is_shabbat(date(2024, 11, 1)) is False
