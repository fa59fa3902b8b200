"""
Summary Store: keyed persistence for generated period summaries.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Dict, List, Optional

from ..models.core import Summary
from ..utils.config import OpenSearchConfig
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import SUMMARY_INDEX, OpenSearchClient, OpenSearchError

logger = get_logger(__name__)

DEFAULT_LIST_LIMIT = 50


class SummaryStoreError(Exception):
    """Custom exception for summary store errors."""
    pass


class SummaryStore(ABC):
    """One summary per period key; ``put`` always replaces the whole document."""

    @abstractmethod
    def get(self, period_key: str) -> Optional[Summary]:
        """Return the stored summary for ``period_key`` or None."""

    @abstractmethod
    def put(self, period_key: str, summary: Summary) -> None:
        """Create or fully replace the summary for ``period_key``."""

    @abstractmethod
    def list(self,
             summary_type: Optional[str] = None,
             from_date: Optional[date] = None,
             to_date: Optional[date] = None,
             limit: int = DEFAULT_LIST_LIMIT) -> List[Summary]:
        """Summaries ordered by ``period_start`` descending.

        ``from_date`` bounds ``period_start`` from below and ``to_date``
        bounds ``period_end`` from above.
        """


class OpenSearchSummaryStore(SummaryStore):
    """Summary store backed by the OpenSearch summary index (document id = period key)."""

    def __init__(self, config: OpenSearchConfig, client: Optional[OpenSearchClient] = None):
        self.client = client or OpenSearchClient(config)
        try:
            self.client.create_index_if_not_exists(index_type=SUMMARY_INDEX)
        except OpenSearchError as e:
            logger.warning(f'Failed to create summary index: {e}')

    def get(self, period_key: str) -> Optional[Summary]:
        try:
            doc = self.client.get_document(period_key, index_type=SUMMARY_INDEX)
        except OpenSearchError as e:
            raise SummaryStoreError(f'Summary lookup failed for {period_key}: {e}')
        if doc is None:
            return None
        return Summary.from_document(doc)

    def put(self, period_key: str, summary: Summary) -> None:
        try:
            if not self.client.put_document(period_key, summary.to_document(), index_type=SUMMARY_INDEX):
                raise SummaryStoreError(f'Summary {period_key} was not stored')
        except OpenSearchError as e:
            raise SummaryStoreError(f'Summary write failed for {period_key}: {e}')
        logger.debug(f'Stored summary {period_key}')

    def list(self,
             summary_type: Optional[str] = None,
             from_date: Optional[date] = None,
             to_date: Optional[date] = None,
             limit: int = DEFAULT_LIST_LIMIT) -> List[Summary]:
        filters: List[Dict[str, Any]] = []
        if summary_type:
            filters.append({'term': {'type': summary_type}})
        if from_date:
            filters.append({'range': {'period_start': {'gte': from_date.isoformat()}}})
        if to_date:
            filters.append({'range': {'period_end': {'lte': to_date.isoformat()}}})

        body = {
            'size': limit,
            'query': {
                'bool': {
                    'filter': filters
                }
            },
            'sort': [{
                'period_start': {
                    'order': 'desc'
                }
            }]
        }

        try:
            docs = self.client.search(body, index_type=SUMMARY_INDEX)
        except OpenSearchError as e:
            raise SummaryStoreError(f'Summary listing failed: {e}')
        return [Summary.from_document(doc) for doc in docs]
