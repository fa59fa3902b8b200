"""
Record Store Adapter: read access to the canonical care-record store.
"""

from abc import ABC, abstractmethod
from datetime import date, timezone
from typing import Any, Dict, List, Optional

from ..models.core import Record
from ..utils.categories import category_for_sheet
from ..utils.config import OpenSearchConfig
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import RECORD_INDEX, OpenSearchClient, OpenSearchError
from ..utils.timestamp_utils import day_boundary, fixed_offset, parse_timestamp, today_in

logger = get_logger(__name__)


class RecordStoreError(Exception):
    """Custom exception for record store errors."""
    pass


class RecordStore(ABC):
    """Read interface over the synced care records."""

    tz: timezone = fixed_offset()

    @abstractmethod
    def fetch_records(self, max_count: int) -> List[Record]:
        """Return up to ``max_count`` records, newest first."""

    @abstractmethod
    def fetch_records_in_range(self, start: date, end: date, limit: int) -> List[Record]:
        """Return records whose timestamp lies in ``[start 00:00:00, end 23:59:59]``."""

    def today(self) -> date:
        """Current date in the store's fixed offset."""
        return today_in(self.tz)


def record_from_document(doc: Dict[str, Any], tz: Optional[timezone] = None) -> Optional[Record]:
    """Convert a stored record document into a Record.

    Returns None when the sheet name is not one of the known categories.
    """
    category = category_for_sheet(doc.get('sheet_name') or doc.get('category'))
    if category is None:
        return None

    raw_timestamp = str(doc.get('timestamp') or '')
    timestamp = parse_timestamp(doc.get('timestamp_at'), tz) or parse_timestamp(raw_timestamp, tz)
    fields = {str(k): '' if v is None else str(v) for k, v in (doc.get('data') or {}).items()}

    return Record(timestamp=timestamp,
                  category=category,
                  fields=fields,
                  raw_timestamp=raw_timestamp,
                  record_id=str(doc.get('id') or ''))


class OpenSearchRecordStore(RecordStore):
    """Record store backed by the OpenSearch record index."""

    def __init__(self, config: OpenSearchConfig, tz: Optional[timezone] = None,
                 client: Optional[OpenSearchClient] = None):
        self.client = client or OpenSearchClient(config)
        self.tz = tz or fixed_offset()

    def _to_records(self, docs: List[Dict[str, Any]]) -> List[Record]:
        records = []
        skipped = 0
        for doc in docs:
            record = record_from_document(doc, self.tz)
            if record is None:
                skipped += 1
                continue
            records.append(record)
        if skipped:
            logger.debug(f'Skipped {skipped} documents with unknown sheet names')
        return records

    def fetch_records(self, max_count: int) -> List[Record]:
        body = {
            'size': max_count,
            'query': {
                'match_all': {}
            },
            'sort': [{
                'timestamp': {
                    'order': 'desc'
                }
            }]
        }
        try:
            docs = self.client.search(body, index_type=RECORD_INDEX)
        except OpenSearchError as e:
            logger.error(f'Failed to fetch records: {e}')
            raise RecordStoreError(f'Record fetch failed: {e}')
        return self._to_records(docs)

    def fetch_records_in_range(self, start: date, end: date, limit: int) -> List[Record]:
        start_at = day_boundary(start, tz=self.tz)
        end_at = day_boundary(end, end_of_day=True, tz=self.tz)

        structured = {
            'size': limit,
            'query': {
                'range': {
                    'timestamp_at': {
                        'gte': start_at.isoformat(),
                        'lte': end_at.isoformat()
                    }
                }
            },
            'sort': [{
                'timestamp_at': {
                    'order': 'desc'
                }
            }]
        }

        try:
            docs = self.client.search(structured, index_type=RECORD_INDEX)
            if not docs:
                # Older rows were synced without timestamp_at; compare the text instead
                logger.info(f'No records with timestamp_at for {start} - {end}, falling back to string range')
                docs = self.client.search(self._string_range_query(start, end, limit), index_type=RECORD_INDEX)
        except OpenSearchError as e:
            logger.error(f'Failed to fetch records for {start} - {end}: {e}')
            raise RecordStoreError(f'Record range fetch failed: {e}')

        return self._to_records(docs)

    @staticmethod
    def _string_range_query(start: date, end: date, limit: int) -> Dict[str, Any]:
        dashed = {'gte': start.isoformat(), 'lte': f'{end.isoformat()}T23:59:59'}
        slashed = {'gte': start.strftime('%Y/%m/%d'), 'lte': f"{end.strftime('%Y/%m/%d')} 23:59:59"}
        return {
            'size': limit,
            'query': {
                'bool': {
                    'should': [{
                        'range': {
                            'timestamp': dashed
                        }
                    }, {
                        'range': {
                            'timestamp': slashed
                        }
                    }],
                    'minimum_should_match': 1
                }
            },
            'sort': [{
                'timestamp': {
                    'order': 'desc'
                }
            }]
        }
