"""Shared fakes and builders for the care-record tests."""

from datetime import date, datetime
from typing import Dict, List, Optional

import pytest

from careinsight.models.core import Record, Summary
from careinsight.services.record_store import RecordStore
from careinsight.services.summary_store import SummaryStore
from careinsight.utils.base_llm import TextGenerator
from careinsight.utils.timestamp_utils import fixed_offset

JST = fixed_offset(9)


def make_record(category: str, when: str, fields: Optional[Dict[str, str]] = None, record_id: str = '') -> Record:
    """Build a record from a ``YYYY-MM-DD HH:MM`` local timestamp."""
    timestamp = datetime.strptime(when, '%Y-%m-%d %H:%M').replace(tzinfo=JST)
    return Record(timestamp=timestamp,
                  category=category,
                  fields=dict(fields or {}),
                  raw_timestamp=timestamp.strftime('%Y/%m/%d %H:%M:%S'),
                  record_id=record_id or f'{category}-{when}')


class FakeRecordStore(RecordStore):
    """In-memory record store that counts its calls."""

    def __init__(self, records: Optional[List[Record]] = None, today: Optional[date] = None):
        self.records = list(records or [])
        self.fetch_calls = 0
        self.range_calls = []
        self.fail_with: Optional[Exception] = None
        self._today = today

    def fetch_records(self, max_count: int) -> List[Record]:
        self.fetch_calls += 1
        if self.fail_with:
            raise self.fail_with
        return self.records[:max_count]

    def fetch_records_in_range(self, start: date, end: date, limit: int) -> List[Record]:
        self.range_calls.append((start, end, limit))
        if self.fail_with:
            raise self.fail_with
        selected = [r for r in self.records if r.record_date is not None and start <= r.record_date <= end]
        return selected[:limit]

    def today(self) -> date:
        return self._today or super().today()


class InMemorySummaryStore(SummaryStore):

    def __init__(self):
        self.summaries: Dict[str, Summary] = {}
        self.put_calls = 0

    def get(self, period_key: str) -> Optional[Summary]:
        return self.summaries.get(period_key)

    def put(self, period_key: str, summary: Summary) -> None:
        self.put_calls += 1
        self.summaries[period_key] = summary

    def list(self, summary_type=None, from_date=None, to_date=None, limit=50) -> List[Summary]:
        found = [s for s in self.summaries.values()
                 if (summary_type is None or s.type == summary_type)
                 and (from_date is None or s.period_start >= from_date)
                 and (to_date is None or s.period_end <= to_date)]
        found.sort(key=lambda s: s.period_start, reverse=True)
        return found[:limit]


class FakeTextGenerator(TextGenerator):
    """Returns canned responses in order and records every prompt."""

    model_id = 'fake-model'

    def __init__(self, responses: Optional[List[str]] = None, fail_with: Optional[Exception] = None):
        self.responses = list(responses or [])
        self.fail_with = fail_with
        self.prompts: List[str] = []
        self.system_prompts: List[Optional[str]] = []

    def generate(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        self.prompts.append(prompt)
        self.system_prompts.append(system_prompt)
        if self.fail_with:
            raise self.fail_with
        if self.responses:
            return self.responses.pop(0)
        return '{"summary": "記録は安定しています。", "keyInsights": ["特記事項なし"]}'


class ManualClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def summary_store():
    return InMemorySummaryStore()
