import threading

import pytest

from careinsight.services.record_cache import RecordCache
from careinsight.services.record_store import RecordStoreError
from careinsight.utils import categories as cat
from conftest import FakeRecordStore, make_record


@pytest.fixture
def store():
    records = [make_record(cat.MEAL, f'2025-06-{day:02d} 08:00') for day in range(1, 11)]
    return FakeRecordStore(records)


def test_first_get_is_a_miss(store, clock):
    cache = RecordCache(store, ttl_seconds=300, clock=clock)

    result = cache.get()

    assert result.from_cache is False
    assert result.cache_age_seconds is None
    assert len(result.records) == 10
    assert store.fetch_calls == 1


def test_get_within_ttl_is_a_hit(store, clock):
    cache = RecordCache(store, ttl_seconds=300, clock=clock)
    cache.get()

    clock.advance(120)
    result = cache.get()

    assert result.from_cache is True
    assert result.cache_age_seconds == 120
    assert store.fetch_calls == 1


def test_entry_expires_at_ttl(store, clock):
    cache = RecordCache(store, ttl_seconds=300, clock=clock)
    cache.get()

    clock.advance(300)
    result = cache.get()

    assert result.from_cache is False
    assert store.fetch_calls == 2


def test_request_limit_returns_prefix(store, clock):
    cache = RecordCache(store, clock=clock)
    full = cache.get().records

    limited = cache.get(request_limit=3)

    assert limited.records == full[:3]
    assert limited.from_cache is True


def test_store_is_asked_for_max_batch_size(clock):
    store = FakeRecordStore([make_record(cat.MEAL, f'2025-06-{day:02d} 08:00') for day in range(1, 11)])
    cache = RecordCache(store, max_batch_size=4, clock=clock)

    assert len(cache.get().records) == 4


def test_invalidate_forces_next_miss(store, clock):
    cache = RecordCache(store, clock=clock)
    cache.get()

    cache.invalidate()
    result = cache.get()

    assert result.from_cache is False
    assert store.fetch_calls == 2


def test_force_refresh_skips_fresh_entry(store, clock):
    cache = RecordCache(store, clock=clock)
    cache.get()

    assert cache.get(force_refresh=True).from_cache is False
    assert store.fetch_calls == 2


def test_store_failure_propagates_and_keeps_cache_empty(store, clock):
    store.fail_with = RecordStoreError('unavailable')
    cache = RecordCache(store, clock=clock)

    with pytest.raises(RecordStoreError):
        cache.get()

    assert cache.stats()['is_cached'] is False


def test_stats_report_age_and_remaining_ttl(store, clock):
    cache = RecordCache(store, ttl_seconds=300, clock=clock)
    assert cache.stats() == {'is_cached': False, 'cache_age': None, 'record_count': None, 'ttl_remaining': None}

    cache.get()
    clock.advance(100)

    assert cache.stats() == {'is_cached': True, 'cache_age': 100, 'record_count': 10, 'ttl_remaining': 200}


def test_concurrent_misses_fetch_once(store, clock):
    cache = RecordCache(store, clock=clock)
    results = []

    def worker():
        results.append(cache.get())

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert store.fetch_calls == 1
    assert sum(1 for r in results if not r.from_cache) == 1


class SlowRecordStore(FakeRecordStore):
    """Advances the clock while fetching, like a slow backend."""

    def __init__(self, records, clock, fetch_seconds):
        super().__init__(records)
        self.clock = clock
        self.fetch_seconds = fetch_seconds

    def fetch_records(self, max_count):
        self.clock.advance(self.fetch_seconds)
        return super().fetch_records(max_count)


def test_cache_age_starts_after_slow_refill(clock):
    store = SlowRecordStore([make_record(cat.MEAL, '2025-06-01 08:00')], clock, fetch_seconds=100)
    cache = RecordCache(store, ttl_seconds=300, clock=clock)
    cache.get()

    assert cache.stats()['cache_age'] == 0

    clock.advance(250)
    result = cache.get()

    assert result.from_cache is True
    assert result.cache_age_seconds == 250
    assert store.fetch_calls == 1
