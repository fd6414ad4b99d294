"""Tests for the cache-backed read server."""
from dataclasses import replace
from unittest.mock import Mock

import pytest

from api.read_server import ReadServer
from config.settings import POLICY_REALTIME
from processor.batch_materializer import BatchMaterializer
from processor.errors import DataSourceError
from processor.models import BatchRunResult
from storage.dynamodb_cache import schedule_key

from conftest import FakeSheetsClient, local_time


@pytest.fixture
def populated(settings, cache, whiteboard):
    """Cache filled by one batch run over the whiteboard fixture."""
    materializer = BatchMaterializer(
        settings, FakeSheetsClient(whiteboard), cache,
        clock=lambda: local_time(2026, 1, 3, 10, 0)
    )
    materializer.run_batch()
    return cache


@pytest.fixture
def materializer():
    return Mock(spec=BatchMaterializer)


class TestGetSchedule:

    def test_hit_groups_events_by_window_day(self, settings, populated, materializer):
        server = ReadServer(settings, populated, materializer)

        body = server.handle({'name': 'Nguyen, T', 'days': '7'})

        assert body['error'] is False
        assert body['person'] == 'Nguyen, T'
        assert body['category'] == 'STC Bravo'
        assert [d['date'] for d in body['events']] == ['2026-01-05', '2026-01-06', '2026-01-08']
        assert [d['dayName'] for d in body['events']] == ['Monday', 'Tuesday', 'Thursday']
        # Safety brief + 3 academics, sim review + 3 academics, 3 academics
        assert [len(d['events']) for d in body['events']] == [4, 4, 3]
        assert body['totalEvents'] == 11
        assert body['batchMetadata']['status'] == 'success'
        assert body['cacheUpdated'] == body['batchMetadata']['lastRun']
        assert body['isRefreshing'] is False
        materializer.materialize_person.assert_not_called()

    def test_days_limits_window(self, settings, populated, materializer):
        server = ReadServer(settings, populated, materializer)

        body = server.handle({'name': 'Nguyen, T', 'days': '1'})

        assert [d['date'] for d in body['events']] == ['2026-01-05']
        assert body['totalEvents'] == 4

    def test_empty_days_are_still_listed(self, settings, populated, materializer):
        server = ReadServer(settings, populated, materializer)

        body = server.handle({'name': 'Smith, K'})

        assert [len(d['events']) for d in body['events']] == [3, 0, 0]

    def test_default_name(self, settings, populated, materializer):
        server = ReadServer(replace(settings, default_search_name='Duede'), populated, materializer)

        body = server.handle(None)

        assert body['error'] is False
        assert body['searchName'] == 'Duede'

    def test_missing_name_without_default(self, settings, cache, materializer):
        body = ReadServer(settings, cache, materializer).handle({})

        assert body['errorType'] == 'INVALID_REQUEST'

    @pytest.mark.parametrize('days', ['0', '8', 'seven', '-2'])
    def test_invalid_days(self, settings, cache, materializer, days):
        body = ReadServer(settings, cache, materializer).handle({'name': 'Duede', 'days': days})

        assert body['error'] is True
        assert body['errorType'] == 'INVALID_REQUEST'

    def test_refreshing_while_locked(self, settings, populated, materializer):
        populated.acquire_lock('batch-run', 300)
        server = ReadServer(settings, populated, materializer)

        body = server.handle({'name': 'Duede'})

        assert body['errorType'] == 'REFRESHING'
        assert body['isRefreshing'] is True


class TestCacheMiss:

    def test_error_policy_does_not_touch_source(self, settings, populated, materializer):
        server = ReadServer(settings, populated, materializer)

        body = server.handle({'name': 'Zzyzx'})

        assert body['error'] is True
        assert body['errorType'] == 'CACHE_MISS'
        assert body['searchName'] == 'Zzyzx'
        materializer.materialize_person.assert_not_called()

    def test_name_match_ignores_case(self, settings, populated, materializer):
        body = ReadServer(settings, populated, materializer).handle({'name': 'duede'})

        assert body['error'] is False
        assert body['person'] == 'Duede'
        assert body['searchName'] == 'duede'

    def test_expired_cache_is_not_reported_as_unknown_name(self, settings, cache, materializer):
        body = ReadServer(settings, cache, materializer).handle({'name': 'Duede'})

        assert body['error'] is True
        assert body['errorType'] == 'DATA_UNAVAILABLE'
        assert body['searchName'] == 'Duede'

    def test_roster_person_without_schedule(self, settings, populated, materializer):
        populated.delete_many([schedule_key('Duede')])

        body = ReadServer(settings, populated, materializer).handle({'name': 'Duede'})

        assert body['errorType'] == 'DATA_UNAVAILABLE'
        materializer.materialize_person.assert_not_called()

    def test_realtime_policy_computes_schedule(self, settings, cache, materializer):
        realtime = replace(settings, cache_miss_policy=POLICY_REALTIME)
        materializer.materialize_person.return_value = {
            'person': 'Moss',
            'category': '',
            'roleType': 'student',
            'events': [{'date': '2026-01-05', 'time': '13:00', 'section': 'GroundEvents'}],
            'days': ['2026-01-05'],
            'windowDates': ['2026-01-05', '2026-01-06'],
            'lastUpdated': '2026-01-03T10:00:00-08:00',
        }
        server = ReadServer(realtime, cache, materializer)

        body = server.handle({'name': 'Moss'})

        materializer.materialize_person.assert_called_once_with('Moss')
        assert body['error'] is False
        assert body['totalEvents'] == 1
        assert body['cacheUpdated'] == '2026-01-03T10:00:00-08:00'

    def test_realtime_failure(self, settings, cache, materializer):
        realtime = replace(settings, cache_miss_policy=POLICY_REALTIME)
        materializer.materialize_person.side_effect = DataSourceError('HTTP 503')
        server = ReadServer(realtime, cache, materializer)

        body = server.handle({'name': 'Moss'})

        assert body['errorType'] == 'REALTIME_FAILED'
        assert body['searchName'] == 'Moss'

    def test_realtime_unknown_name_is_cache_miss(self, settings, cache, whiteboard):
        realtime = replace(settings, cache_miss_policy=POLICY_REALTIME)
        materializer = BatchMaterializer(
            realtime, FakeSheetsClient(whiteboard), cache,
            clock=lambda: local_time(2026, 1, 3, 10, 0)
        )
        server = ReadServer(realtime, cache, materializer)

        body = server.handle({'name': 'Zzyzx'})

        assert body['errorType'] == 'CACHE_MISS'
        assert body['searchName'] == 'Zzyzx'
        assert cache.get_all_schedules() == {}
        assert server.handle({'name': 'Zzyzx'})['errorType'] == 'CACHE_MISS'


class TestForceRefresh:

    def test_runs_materializer(self, settings, cache, materializer):
        materializer.force_run.return_value = BatchRunResult(status='success')
        server = ReadServer(settings, cache, materializer)

        body = server.handle({'forceRefresh': 'true'})

        materializer.force_run.assert_called_once_with()
        assert body['error'] is False
        assert body['forceRefresh'] is True
        assert body['status'] == 'success'

    def test_failure_is_typed(self, settings, cache, materializer):
        materializer.force_run.side_effect = DataSourceError('spreadsheet unreachable')
        server = ReadServer(settings, cache, materializer)

        body = server.handle({'forceRefresh': 'TRUE'})

        assert body['errorType'] == 'REFRESH_FAILED'


class TestViewCache:

    def test_all(self, settings, populated, materializer):
        body = ReadServer(settings, populated, materializer).handle({'viewCache': 'all'})

        assert body['error'] is False
        assert body['peopleCount'] == 4
        assert body['metadata']['peopleProcessed'] == 4
        assert body['isRefreshing'] is False

    def test_person(self, settings, populated, materializer):
        server = ReadServer(settings, populated, materializer)

        body = server.handle({'viewCache': 'person', 'name': 'Duede'})

        assert body['schedule'] == populated.get(schedule_key('Duede'))

    def test_person_miss(self, settings, populated, materializer):
        server = ReadServer(settings, populated, materializer)

        body = server.handle({'viewCache': 'person', 'name': 'Zzyzx'})

        assert body['errorType'] == 'CACHE_MISS'

    def test_bulk_sorted_by_name(self, settings, populated, materializer):
        body = ReadServer(settings, populated, materializer).handle({'viewCache': 'bulk'})

        assert [s['person'] for s in body['schedules']] == [
            'Duede', 'Harms, J *', 'Nguyen, T', 'Smith, K'
        ]
        assert body['categories'] == ['FTC Alpha', 'STC Bravo', 'Staff IP']
        assert body['peopleCount'] == 4

    def test_bulk_filtered_by_category(self, settings, populated, materializer):
        server = ReadServer(settings, populated, materializer)

        body = server.handle({'viewCache': 'bulk', 'categories': 'STC Bravo, Staff IP'})

        assert [s['person'] for s in body['schedules']] == ['Nguyen, T', 'Smith, K']
        assert body['peopleCount'] == 2
        assert body['categories'] == ['FTC Alpha', 'STC Bravo', 'Staff IP']

    def test_unknown_mode(self, settings, cache, materializer):
        body = ReadServer(settings, cache, materializer).handle({'viewCache': 'everything'})

        assert body['errorType'] == 'INVALID_REQUEST'
