"""Unit tests for the DynamoDB cache."""
import time

import pytest

from config.settings import MAX_CACHE_TTL_SECONDS
from processor.errors import CacheEntryTooLargeError
from storage.dynamodb_cache import LOCK_KEY, DynamoDBCache, schedule_key

from conftest import TABLE_NAME


@pytest.fixture
def small_cache(cache_table):
    """Cache with tiny limits to exercise the size bounds."""
    return DynamoDBCache(
        table_name=TABLE_NAME,
        max_entry_bytes=200,
        max_total_bytes=500,
        max_ttl_seconds=MAX_CACHE_TTL_SECONDS,
        region_name='us-east-1'
    )


def schedule(name, padding=0):
    return {'person': name, 'events': [], 'notes': 'x' * padding}


def test_get_missing_key_is_none(cache):
    assert cache.get(schedule_key('Zzyzx')) is None


def test_put_then_get(cache):
    size = cache.put(schedule_key('Duede'), schedule('Duede'), 3600)

    assert size > 0
    assert cache.get(schedule_key('Duede')) == schedule('Duede')


def test_ttl_is_capped(cache, cache_table):
    cache.put(schedule_key('Duede'), schedule('Duede'), 10 * MAX_CACHE_TTL_SECONDS)

    item = cache_table.get_item(Key={'cache_key': schedule_key('Duede')})['Item']
    assert int(item['ttl']) <= int(time.time()) + MAX_CACHE_TTL_SECONDS


def test_expired_entry_is_a_miss(cache, cache_table):
    cache_table.put_item(Item={
        'cache_key': schedule_key('Duede'),
        'payload': '{"person": "Duede"}',
        'size_bytes': 19,
        'updated_at': int(time.time()) - 100,
        'ttl': int(time.time()) - 1
    })

    assert cache.get(schedule_key('Duede')) is None
    assert cache.get_all_schedules() == {}


def test_put_rejects_oversized_entry(small_cache):
    with pytest.raises(CacheEntryTooLargeError):
        small_cache.put(schedule_key('Duede'), schedule('Duede', padding=500), 3600)


def test_put_many_enforces_limits_per_entry(small_cache):
    entries = {
        schedule_key('Big'): schedule('Big', padding=500),
        schedule_key('Duede'): schedule('Duede', padding=100),
        schedule_key('Harms'): schedule('Harms', padding=100),
        schedule_key('Moss'): schedule('Moss', padding=100),
        schedule_key('Nguyen'): schedule('Nguyen', padding=100),
    }

    result = small_cache.put_many(entries, 3600)

    # Each ~150 byte entry fits; the aggregate 500 byte limit admits three
    assert result.written == [schedule_key(n) for n in ('Duede', 'Harms', 'Moss')]
    assert len(result.errors) == 2
    assert result.errors[0].startswith(schedule_key('Big'))
    assert result.errors[1].startswith(schedule_key('Nguyen'))
    assert result.size_bytes <= 500
    assert small_cache.get(schedule_key('Nguyen')) is None
    assert small_cache.get(schedule_key('Moss')) is not None


def test_put_many_more_than_one_batch(cache):
    entries = {schedule_key(f'Person {i}'): schedule(f'Person {i}') for i in range(30)}

    result = cache.put_many(entries, 3600)

    assert len(result.written) == 30
    assert result.errors == []
    assert len(cache.get_all_schedules()) == 30


def test_put_many_empty(cache):
    result = cache.put_many({}, 3600)
    assert result.written == []
    assert result.size_bytes == 0


def test_delete_many(cache):
    for name in ('Duede', 'Harms', 'Moss'):
        cache.put(schedule_key(name), schedule(name), 3600)

    deleted = cache.delete_many([schedule_key('Duede'), schedule_key('Moss')])

    assert deleted == 2
    assert cache.get(schedule_key('Duede')) is None
    assert cache.get(schedule_key('Harms')) is not None


def test_get_all_schedules_only_returns_schedule_keys(cache):
    cache.put(schedule_key('Harms, J *'), schedule('Harms, J *'), 3600)
    cache.put('batch:metadata', {'lastRun': 'now'}, 3600)
    cache.acquire_lock('owner-1', 60)

    schedules = cache.get_all_schedules()

    assert list(schedules) == ['Harms, J *']


class TestRunLock:

    def test_second_acquire_fails_until_released(self, cache):
        assert cache.acquire_lock('owner-1', 300) is True
        assert cache.is_locked() is True
        assert cache.acquire_lock('owner-2', 300) is False

        cache.release_lock('owner-1')

        assert cache.is_locked() is False
        assert cache.acquire_lock('owner-2', 300) is True

    def test_expired_lock_can_be_taken_over(self, cache, cache_table):
        cache_table.put_item(Item={
            'cache_key': LOCK_KEY,
            'owner': 'crashed-run',
            'acquired_at': int(time.time()) - 1000,
            'ttl': int(time.time()) - 10
        })

        assert cache.is_locked() is False
        assert cache.acquire_lock('owner-2', 300) is True

    def test_release_by_non_owner_keeps_lock(self, cache):
        cache.acquire_lock('owner-1', 300)

        cache.release_lock('someone-else')

        assert cache.is_locked() is True
