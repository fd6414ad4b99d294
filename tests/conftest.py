"""Shared fixtures: fake AWS credentials, a mocked cache table, a fake sheet source."""
from datetime import datetime
from zoneinfo import ZoneInfo

import boto3
import pytest
from moto import mock_aws

from config.layout import (
    SECTION_FLYING,
    SECTION_GROUND,
    SECTION_NOT_AVAILABLE,
    SECTION_SUPERVISION,
    SheetLayout,
    range_shape,
)
from config.settings import MAX_CACHE_TTL_SECONDS, Settings
from processor.errors import DataSourceError
from storage.dynamodb_cache import DynamoDBCache

TABLE_NAME = 'test-schedule-cache'
TZ = ZoneInfo('America/Los_Angeles')


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Keep boto3 away from real credentials."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def settings():
    return Settings(
        spreadsheet_id='test-sheet',
        table_name=TABLE_NAME,
        aws_region='us-east-1'
    )


@pytest.fixture
def cache_table():
    """Create a mock DynamoDB cache table."""
    with mock_aws():
        dynamodb = boto3.resource('dynamodb', region_name='us-east-1')
        table = dynamodb.create_table(
            TableName=TABLE_NAME,
            KeySchema=[{'AttributeName': 'cache_key', 'KeyType': 'HASH'}],
            AttributeDefinitions=[{'AttributeName': 'cache_key', 'AttributeType': 'S'}],
            BillingMode='PAY_PER_REQUEST'
        )
        yield table


@pytest.fixture
def cache(cache_table, settings):
    return DynamoDBCache(
        table_name=TABLE_NAME,
        max_entry_bytes=settings.cache_max_entry_bytes,
        max_total_bytes=settings.cache_max_total_bytes,
        max_ttl_seconds=MAX_CACHE_TTL_SECONDS,
        region_name='us-east-1'
    )


def local_time(year, month, day, hour=10, minute=0):
    return datetime(year, month, day, hour, minute, tzinfo=TZ)


def build_grid(range_str, rows):
    """A range-shaped grid of blanks with `rows` written from the top-left."""
    n_rows, n_cols = range_shape(range_str)
    grid = [[''] * n_cols for _ in range(n_rows)]
    for i, row in enumerate(rows):
        for j, cell in enumerate(row):
            grid[i][j] = cell
    return grid


def make_sheet(supervision=(), flying=(), ground=(), not_available=(),
               roster=None, layout=None):
    """
    Describe one whiteboard tab as rows per A1 range.

    `roster` maps a category name to the names listed in its column.
    """
    layout = layout or SheetLayout()
    sections = layout.sections
    sheet = {
        sections[SECTION_SUPERVISION]: list(supervision),
        sections[SECTION_FLYING]: list(flying),
        sections[SECTION_GROUND]: list(ground),
        sections[SECTION_NOT_AVAILABLE]: list(not_available),
    }
    by_category = {r.category: r.range for r in layout.roster}
    for category, names in (roster or {}).items():
        sheet[by_category[category]] = [[name] for name in names]
    return sheet


class FakeSheetsClient:
    """In-memory stand-in for GoogleSheetsClient."""

    def __init__(self, sheets, failing=()):
        self.sheets = sheets
        self.failing = set(failing)
        self.fetched = []

    def sheet_exists(self, sheet_name):
        return sheet_name in self.sheets

    def get_ranges(self, sheet_name, ranges):
        if sheet_name in self.failing:
            raise DataSourceError(f"Cannot read '{sheet_name}' (HTTP 503)")
        self.fetched.append(sheet_name)
        sheet = self.sheets[sheet_name]
        return {r: build_grid(r, sheet.get(r, [])) for r in ranges}


FLYING_ROW = [
    "T-38", "07:30", "09:30", "11:30", "12:15", "CSO PERF",
    "Harms, J *", "Duede", "", "", "", "", "", "", "",
    "FALSE", "TRUE", "FALSE",
]


@pytest.fixture
def whiteboard():
    """Three tabs over four days with a Wednesday gap."""
    roster = {
        'FTC Alpha': ['FTC-A', 'Harms, J *', 'Duede'],
        'STC Bravo': ['STC-B', 'Nguyen, T', 'TRUE', '42'],
        'Staff IP': ['Staff IP', 'Smith, K'],
    }
    return {
        'Mon 5 Jan': make_sheet(
            supervision=[
                ['SOF', 'Smith, K', '0700', '1200'],
                ['AUTH', 'Harms, J *', '', ''],
            ],
            flying=[FLYING_ROW],
            ground=[
                ['Safety Brief', '1300', '1400', 'ALL'],
                ['Staff Mtg', '1500', '1600', 'STAFF ONLY'],
            ],
            not_available=[['Leave', '0700', '1700', 'Duede']],
            roster=roster
        ),
        'Tuesday, 6 Jan': make_sheet(
            ground=[['Sim Review', '9:00 AM', '10:00 AM', 'Nguyen, T']],
            roster=roster
        ),
        'Thu 8 Jan': make_sheet(roster=roster),
    }
