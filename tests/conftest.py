"""Shared fixtures for calendar cache tests."""
import os
from datetime import datetime, timezone

import boto3
import pytest
from moto import mock_aws

from storage.dynamodb_cache import DynamoDBCalendarCache

TABLE_NAME = 'test-hebrew-calendar-cache'

# 2024-11-01 10:00 in Chicago
NOW = datetime(2024, 11, 1, 15, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def aws_credentials():
    """Fake AWS credentials so boto3 never reaches a real account."""
    env_vars = {
        'AWS_ACCESS_KEY_ID': 'testing',
        'AWS_SECRET_ACCESS_KEY': 'testing',
        'AWS_SECURITY_TOKEN': 'testing',
        'AWS_SESSION_TOKEN': 'testing',
        'AWS_DEFAULT_REGION': 'us-east-1',
    }
    original = {name: os.environ.get(name) for name in env_vars}
    os.environ.update(env_vars)
    yield
    for name, value in original.items():
        if value is None:
            os.environ.pop(name, None)
        else:
            os.environ[name] = value


@pytest.fixture
def clock():
    """Mutable clock: set clock.now to move time."""
    class Clock:
        now = NOW

        def __call__(self):
            return self.now

    return Clock()


@pytest.fixture
def dynamodb_table():
    """Create a mock DynamoDB table for testing."""
    with mock_aws():
        dynamodb = boto3.resource('dynamodb', region_name='us-east-1')

        table = dynamodb.create_table(
            TableName=TABLE_NAME,
            KeySchema=[
                {'AttributeName': 'cache_namespace', 'KeyType': 'HASH'},
                {'AttributeName': 'date_key', 'KeyType': 'RANGE'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'cache_namespace', 'AttributeType': 'S'},
                {'AttributeName': 'date_key', 'AttributeType': 'S'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )

        yield table


@pytest.fixture
def store(dynamodb_table, clock):
    """DynamoDBCalendarCache backed by the mock table."""
    return DynamoDBCalendarCache(TABLE_NAME, region_name='us-east-1', clock=clock)
