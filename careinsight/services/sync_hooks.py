"""
Side effects of a completed ingestion sync.
"""

from datetime import date
from typing import Optional

from ..utils.logging_config import get_logger
from .record_cache import RecordCache
from .summarizer import HierarchicalSummarizer, PostSyncReport

logger = get_logger(__name__)


def handle_sync_completed(cache: RecordCache,
                          summarizer: HierarchicalSummarizer,
                          today: Optional[date] = None) -> PostSyncReport:
    """Drop the cached record set, then regenerate the summaries that are due.

    The two steps fail independently: a cache problem is logged and summary
    generation still runs.
    """
    try:
        cache.invalidate()
    except Exception as e:
        logger.warning(f'Record cache invalidation failed after sync: {e}')

    report = summarizer.run_post_sync(today)
    if not report.succeeded:
        logger.warning(f'Post-sync summaries finished with failures: {sorted(report.failures)}')
    return report
