from datetime import date

from careinsight.services.record_cache import RecordCache
from careinsight.services.summarizer import HierarchicalSummarizer
from careinsight.services.sync_hooks import handle_sync_completed
from careinsight.utils import categories as cat
from conftest import FakeRecordStore, FakeTextGenerator, make_record


def test_sync_invalidates_cache_and_generates_daily(clock, summary_store):
    store = FakeRecordStore([make_record(cat.MEAL, '2025-06-03 12:00', {'主食の摂取量は何割ですか？': '8'})])
    cache = RecordCache(store, clock=clock)
    cache.get()
    summarizer = HierarchicalSummarizer(store, summary_store, FakeTextGenerator())

    report = handle_sync_completed(cache, summarizer, date(2025, 6, 3))

    assert cache.stats()['is_cached'] is False
    assert report.succeeded
    assert summary_store.get('2025-06-03') is not None
