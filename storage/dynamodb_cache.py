"""DynamoDB-backed persistent cache for Hebrew dates and Sabbath times."""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from processor.date_keys import date_of
from processor.errors import InvalidKeyError
from processor.models import CacheMetadata, SabbathRecord

logger = logging.getLogger(__name__)

HEBREW_DATES = 'hebrew_dates'
SHABBAT_TIMES = 'shabbat_times'
METADATA = 'metadata'

LAST_REFRESHED_AT = 'last_refreshed_at'
SCHEMA_VERSION_KEY = 'schema_version'


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DynamoDBCalendarCache:
    """
    Durable key-value cache stored in a single DynamoDB table.

    Items are keyed by ``cache_namespace`` (partition) and ``date_key``
    (sort). Missing keys read as None; storage errors are logged and
    read as absent.
    """

    BATCH_SIZE = 25  # DynamoDB batch operation limit
    SCHEMA_VERSION = 1
    EXPIRATION = timedelta(days=7)

    def __init__(
        self,
        table_name: str,
        region_name: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize DynamoDB resource and table reference.

        Args:
            table_name: Name of the DynamoDB table
            region_name: AWS region (default: boto3 configuration)
            clock: Returns the current aware datetime
        """
        self.table_name = table_name
        self.clock = clock
        self.dynamodb = boto3.resource('dynamodb', region_name=region_name)
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBCalendarCache for table: {table_name}")

    # Hebrew dates

    def get_hebrew_date(self, date_key: str) -> Optional[str]:
        item = self._get_item(HEBREW_DATES, date_key)
        if item is None:
            return None
        return item.get('hebrew_date')

    def set_hebrew_date(self, date_key: str, value: str) -> bool:
        return self._put_item({
            'cache_namespace': HEBREW_DATES,
            'date_key': date_key,
            'hebrew_date': value,
        })

    def set_hebrew_dates(self, values: Dict[str, str]) -> int:
        """Write several Hebrew dates; returns the count written."""
        items = [
            {'cache_namespace': HEBREW_DATES, 'date_key': key, 'hebrew_date': value}
            for key, value in values.items()
        ]
        return self._batch_write(items)

    def load_hebrew_dates(self) -> Dict[str, str]:
        """Read the whole Hebrew-date namespace."""
        return {
            item['date_key']: item['hebrew_date']
            for item in self._query_namespace(HEBREW_DATES)
            if 'hebrew_date' in item
        }

    # Sabbath times

    def get_sabbath_record(self, date_key: str) -> Optional[SabbathRecord]:
        item = self._get_item(SHABBAT_TIMES, date_key)
        if item is None:
            return None
        return self._item_to_record(item)

    def set_sabbath_record(self, date_key: str, record: SabbathRecord) -> bool:
        return self._put_item(self._record_to_item(date_key, record))

    def set_sabbath_records(self, records: Dict[str, SabbathRecord]) -> int:
        """Write several Sabbath records; returns the count written."""
        items = [
            self._record_to_item(key, record) for key, record in records.items()
        ]
        return self._batch_write(items)

    def load_sabbath_records(self) -> Dict[str, SabbathRecord]:
        """Read the whole Sabbath-time namespace, skipping unreadable items."""
        records = {}
        for item in self._query_namespace(SHABBAT_TIMES):
            record = self._item_to_record(item)
            if record:
                records[item['date_key']] = record
        return records

    # Metadata and coverage

    def get_metadata(self) -> CacheMetadata:
        values = {
            item['date_key']: item.get('value')
            for item in self._query_namespace(METADATA)
        }

        last_refreshed_at = None
        raw_refreshed = values.get(LAST_REFRESHED_AT)
        if raw_refreshed:
            try:
                last_refreshed_at = datetime.fromisoformat(raw_refreshed)
            except (TypeError, ValueError):
                logger.warning(f"Ignoring unreadable {LAST_REFRESHED_AT}: {raw_refreshed!r}")

        schema_version = values.get(SCHEMA_VERSION_KEY)
        return CacheMetadata(
            last_refreshed_at=last_refreshed_at,
            schema_version=int(schema_version) if schema_version is not None else None,
        )

    def is_valid(self) -> bool:
        """
        Check that the cache is fresh and written by the current schema.

        Returns:
            True if refreshed less than 7 days ago with a matching schema version
        """
        metadata = self.get_metadata()
        if metadata.last_refreshed_at is None:
            return False
        if metadata.schema_version != self.SCHEMA_VERSION:
            return False
        return self.clock() - metadata.last_refreshed_at < self.EXPIRATION

    def coverage_ratio(self, required_keys: Iterable[str]) -> float:
        """
        Fraction of the required keys present in the Hebrew-date namespace.

        Args:
            required_keys: Date keys that should be cached

        Returns:
            Ratio in [0, 1]; 1.0 when nothing is required
        """
        required = set(required_keys)
        if not required:
            return 1.0
        present = self._namespace_keys(HEBREW_DATES)
        return len(required & present) / len(required)

    def cached_date_range(self) -> Optional[Tuple[date, date]]:
        """First and last date in the Hebrew-date namespace, or None if empty."""
        dates = []
        for key in self._namespace_keys(HEBREW_DATES):
            try:
                dates.append(date_of(key))
            except InvalidKeyError as e:
                logger.warning(f"Skipping cache key: {e}")

        if not dates:
            return None
        return min(dates), max(dates)

    def mark_refreshed(self) -> None:
        """Record a completed refresh at the current time and schema version."""
        now = self.clock()
        self._put_item({
            'cache_namespace': METADATA,
            'date_key': LAST_REFRESHED_AT,
            'value': now.isoformat(),
        })
        self._put_item({
            'cache_namespace': METADATA,
            'date_key': SCHEMA_VERSION_KEY,
            'value': self.SCHEMA_VERSION,
        })
        logger.info(f"Marked cache refreshed at {now.isoformat()}")

    def ensure_schema(self) -> bool:
        """
        Clear the cache if it was written by another schema version.

        Returns:
            True if the cache was cleared
        """
        stored = self.get_metadata().schema_version
        if stored is None or stored == self.SCHEMA_VERSION:
            return False

        logger.info(
            f"Cache schema version {stored} does not match {self.SCHEMA_VERSION}; clearing"
        )
        self.clear()
        return True

    def clear(self) -> int:
        """
        Delete both stores and the metadata.

        Returns:
            Count of deleted items
        """
        deleted = 0
        for namespace in (HEBREW_DATES, SHABBAT_TIMES, METADATA):
            keys = sorted(self._namespace_keys(namespace))
            deleted += self._batch_delete(namespace, keys)

        logger.info(f"Cleared calendar cache ({deleted} items)")
        return deleted

    # DynamoDB helpers

    def _get_item(self, namespace: str, date_key: str) -> Optional[dict]:
        try:
            response = self.table.get_item(
                Key={'cache_namespace': namespace, 'date_key': date_key}
            )
        except ClientError as e:
            logger.error(f"Error reading {namespace}/{date_key}: {e}")
            return None
        return response.get('Item')

    def _put_item(self, item: dict) -> bool:
        try:
            self.table.put_item(Item=item)
            return True
        except ClientError as e:
            logger.error(
                f"Error writing {item['cache_namespace']}/{item['date_key']}: {e}"
            )
            return False

    def _query_namespace(self, namespace: str, **kwargs) -> List[dict]:
        """Query every item in a namespace, following pagination."""
        items = []
        try:
            response = self.table.query(
                KeyConditionExpression=Key('cache_namespace').eq(namespace), **kwargs
            )
            items.extend(response.get('Items', []))

            while 'LastEvaluatedKey' in response:
                response = self.table.query(
                    KeyConditionExpression=Key('cache_namespace').eq(namespace),
                    ExclusiveStartKey=response['LastEvaluatedKey'],
                    **kwargs
                )
                items.extend(response.get('Items', []))
        except ClientError as e:
            logger.error(f"Error querying namespace {namespace}: {e}")
        return items

    def _namespace_keys(self, namespace: str) -> Set[str]:
        items = self._query_namespace(
            namespace,
            ProjectionExpression='#dk',
            ExpressionAttributeNames={'#dk': 'date_key'},
        )
        return {item['date_key'] for item in items}

    def _batch_write(self, items: List[dict]) -> int:
        """
        Write items in batches of 25.

        Returns:
            Count of successfully written items
        """
        if not items:
            return 0

        success_count = 0
        for i in range(0, len(items), self.BATCH_SIZE):
            batch = items[i:i + self.BATCH_SIZE]
            try:
                with self.table.batch_writer() as writer:
                    for item in batch:
                        writer.put_item(Item=item)
                success_count += len(batch)
            except ClientError as e:
                logger.error(f"Error writing batch {i // self.BATCH_SIZE + 1}: {e}")
                continue

        logger.info(f"Wrote {success_count} of {len(items)} cache items")
        return success_count

    def _batch_delete(self, namespace: str, keys: List[str]) -> int:
        if not keys:
            return 0

        success_count = 0
        for i in range(0, len(keys), self.BATCH_SIZE):
            batch = keys[i:i + self.BATCH_SIZE]
            try:
                with self.table.batch_writer() as writer:
                    for date_key in batch:
                        writer.delete_item(
                            Key={'cache_namespace': namespace, 'date_key': date_key}
                        )
                success_count += len(batch)
            except ClientError as e:
                logger.error(
                    f"Error deleting {namespace} batch {i // self.BATCH_SIZE + 1}: {e}"
                )
                continue

        return success_count

    def _record_to_item(self, date_key: str, record: SabbathRecord) -> dict:
        item = {
            'cache_namespace': SHABBAT_TIMES,
            'date_key': date_key,
            'candle_lighting': record.candle_lighting.isoformat(),
            'havdalah': record.havdalah.isoformat(),
        }
        if record.parsha is not None:
            item['parsha'] = record.parsha
        return item

    def _item_to_record(self, item: dict) -> Optional[SabbathRecord]:
        """
        Convert a DynamoDB item to a SabbathRecord.

        Returns:
            SabbathRecord, or None if the item is incomplete or unreadable
        """
        try:
            return SabbathRecord(
                shabbat_date=date_of(item['date_key']),
                candle_lighting=datetime.fromisoformat(item['candle_lighting']),
                havdalah=datetime.fromisoformat(item['havdalah']),
                parsha=item.get('parsha'),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Failed to convert item to SabbathRecord: {e}")
            return None
