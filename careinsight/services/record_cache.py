"""
Process-local TTL cache of the full record set.

Each process keeps its own copy; staleness up to the TTL across processes
is accepted. Within a process one lock guards the whole
check-age / refetch / replace sequence, so concurrent misses wait for a
single fetch instead of issuing duplicates.
"""

import threading
import time
from typing import Any, Callable, Dict, Optional

from ..models.core import CachedRecordSet, CacheResult
from ..utils.logging_config import get_logger
from .record_store import RecordStore

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 5 * 60
DEFAULT_MAX_BATCH_SIZE = 2000


class RecordCache:
    """TTL-bound cache in front of a RecordStore."""

    def __init__(self,
                 store: RecordStore,
                 ttl_seconds: float = DEFAULT_TTL_SECONDS,
                 max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
                 clock: Callable[[], float] = time.monotonic):
        """
        Args:
            store: Adapter used on a miss
            ttl_seconds: Maximum age at which the cached set is served
            max_batch_size: Number of records requested from the store on refill
            clock: Monotonic seconds source, injectable for tests
        """
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.max_batch_size = max_batch_size
        self.clock = clock
        self._cached: Optional[CachedRecordSet] = None
        self._lock = threading.Lock()

    def get(self, request_limit: Optional[int] = None, force_refresh: bool = False) -> CacheResult:
        """
        Serve records from cache, refilling from the store when stale.

        Args:
            request_limit: Maximum number of records to return (all when None)
            force_refresh: Skip the freshness check and refetch

        Returns:
            CacheResult whose records are a prefix of the cached set

        Raises:
            RecordStoreError (or whatever the store raises) when a refill fails
        """
        with self._lock:
            now = self.clock()
            cached = self._cached

            if not force_refresh and cached is not None and cached.is_fresh(now):
                cache_age = int(round(cached.age(now)))
                logger.info(f'Record cache HIT (age: {cache_age}s, records: {len(cached.records)})')
                return CacheResult(records=self._slice(cached, request_limit),
                                   from_cache=True,
                                   cache_age_seconds=cache_age)

            logger.info('Record cache MISS - fetching from record store')
            fetch_start = time.monotonic()
            records = self.store.fetch_records(self.max_batch_size)
            fetch_ms = int((time.monotonic() - fetch_start) * 1000)

            # Age is measured from the end of the refill
            cached = CachedRecordSet(records=list(records), cached_at=self.clock(), ttl_seconds=self.ttl_seconds)
            self._cached = cached
            logger.info(f'Record cache updated (records: {len(cached.records)}, fetch: {fetch_ms}ms)')

            return CacheResult(records=self._slice(cached, request_limit), from_cache=False)

    def invalidate(self) -> None:
        """Drop the cached set; the next get() is a guaranteed miss."""
        with self._lock:
            if self._cached is not None:
                logger.info('Record cache invalidated')
            self._cached = None

    def stats(self) -> Dict[str, Any]:
        """Cache age, size and remaining TTL in whole seconds."""
        with self._lock:
            cached = self._cached
            if cached is None:
                return {'is_cached': False, 'cache_age': None, 'record_count': None, 'ttl_remaining': None}
            age = cached.age(self.clock())
            return {
                'is_cached': True,
                'cache_age': int(round(age)),
                'record_count': len(cached.records),
                'ttl_remaining': int(round(max(0.0, self.ttl_seconds - age))),
            }

    @staticmethod
    def _slice(cached: CachedRecordSet, request_limit: Optional[int]):
        if request_limit is None or request_limit >= len(cached.records):
            return list(cached.records)
        return cached.records[:max(0, request_limit)]
