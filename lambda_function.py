"""AWS Lambda handler for the Hebrew calendar cache."""
import json
import logging
import os
import time
from typing import Any, Dict, Optional

from client.hebcal_client import HebcalClient
from processor.models import PreloadResult
from service.calendar_cache import CalendarCache
from service.preload_orchestrator import PreloadOrchestrator
from storage.dynamodb_cache import DynamoDBCalendarCache

# Attributes every LogRecord carries; anything else came from `extra`
_RESERVED_ATTRS = set(vars(logging.makeLogRecord({}))) | {'message', 'asctime'}


class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including `extra` fields."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for name, value in vars(record).items():
            if name not in _RESERVED_ATTRS and name not in log_data:
                log_data[name] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def build_calendar_cache(config: Dict[str, Any]) -> CalendarCache:
    """
    Wire the calendar cache and its collaborators.

    Args:
        config: Settings read by load_config()

    Returns:
        Ready-to-activate CalendarCache
    """
    client = HebcalClient(timeout=config['timeout_seconds'])
    store = DynamoDBCalendarCache(
        table_name=config['table_name'],
        region_name=config['region_name'],
    )
    orchestrator = PreloadOrchestrator(
        client,
        store,
        days_ahead=config['days_ahead'],
        months_ahead=config['months_ahead'],
        request_delay=config['request_delay'],
    )
    return CalendarCache(client, store, orchestrator=orchestrator)


def load_config() -> Dict[str, Any]:
    """Read configuration from environment variables."""
    return {
        'table_name': os.environ.get('TABLE_NAME', 'hebrew-calendar-cache'),
        'region_name': os.environ.get('AWS_REGION'),
        'log_level': os.environ.get('LOG_LEVEL', 'INFO'),
        'days_ahead': int(os.environ.get('DAYS_AHEAD', '90')),
        'months_ahead': int(os.environ.get('MONTHS_AHEAD', '3')),
        'timeout_seconds': int(os.environ.get('TIMEOUT_SECONDS', '30')),
        'request_delay': float(os.environ.get('REQUEST_DELAY_SECONDS', '0.1')),
    }


def _preload_statistics(result: Optional[PreloadResult]) -> Dict[str, Any]:
    if result is None:
        return {'preloaded': False}
    return {
        'preloaded': True,
        'cancelled': result.cancelled,
        'hebrew_dates_fetched': result.hebrew_dates_fetched,
        'hebrew_dates_skipped': result.hebrew_dates_skipped,
        'hebrew_dates_failed': result.hebrew_dates_failed,
        'months_fetched': result.months_fetched,
        'months_failed': result.months_failed,
        'sabbath_records_stored': result.sabbath_records_stored,
        'errors': result.errors,
    }


def _bad_request(message: str) -> Dict[str, Any]:
    logging.getLogger(__name__).warning(f"Rejected event: {message}")
    return {
        'statusCode': 400,
        'body': json.dumps({'message': message})
    }


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for the calendar cache.

    Args:
        event: EventBridge or direct-invoke payload. ``action`` selects
            "activate" (default), "refresh" (clear then preload) or
            "refresh_month" (with ``year`` and ``month``)
        context: Lambda context object

    Returns:
        Response dict with statusCode and summary statistics
    """
    config = load_config()
    setup_logging(config['log_level'])
    logger = logging.getLogger(__name__)

    start_time = time.time()
    action = None

    try:
        event = event or {}
        if not isinstance(event, dict):
            return _bad_request(f"Event payload must be an object, got {type(event).__name__}")
        action = event.get('action', 'activate')

        logger.info(
            f"Lambda execution started",
            extra={
                'action': action,
                'table_name': config['table_name'],
                'days_ahead': config['days_ahead']
            }
        )

        if action not in ('activate', 'refresh', 'refresh_month'):
            return _bad_request(f"Unknown action '{action}'")

        if action == 'refresh_month':
            try:
                year, month = int(event['year']), int(event['month'])
            except (KeyError, TypeError, ValueError):
                return _bad_request("refresh_month requires integer 'year' and 'month'")
            if not 1 <= month <= 12:
                return _bad_request(f"Month {month} is out of range")

        calendar_cache = build_calendar_cache(config)

        if action == 'refresh_month':
            fetched = calendar_cache.refresh_month(year, month)
            statistics = {
                'year': year,
                'month': month,
                'fetched': fetched.ok,
                'sabbath_records': len(fetched.value) if fetched.ok else 0,
            }
            if not fetched.ok:
                statistics['error'] = fetched.error.value
        elif action == 'refresh':
            calendar_cache.clear_all()
            statistics = _preload_statistics(calendar_cache.activate())
        else:
            statistics = _preload_statistics(calendar_cache.activate())

        duration = time.time() - start_time
        statistics['duration_seconds'] = round(duration, 2)

        logger.info(
            f"Lambda execution completed successfully",
            extra={'action': action, 'duration_seconds': round(duration, 2)}
        )

        return {
            'statusCode': 200,
            'body': json.dumps({
                'message': f"{action} completed successfully",
                'statistics': statistics
            })
        }

    except Exception as e:
        duration = time.time() - start_time

        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )

        return {
            'statusCode': 500,
            'body': json.dumps({
                'message': f"{action or 'request'} failed",
                'error': str(e),
                'error_type': type(e).__name__,
                'duration_seconds': round(duration, 2)
            })
        }
