from datetime import date

import pytest

from careinsight.models.core import DAILY, MONTHLY, WEEKLY, InvalidRequestError
from careinsight.services.summarizer import (NO_DATA_TEXT, HierarchicalSummarizer, InvalidPeriodKeyError,
                                             ParsedSummary, RawFallback, SummaryGenerationError,
                                             parse_summary_response, resolve_period)
from careinsight.utils import categories as cat
from conftest import FakeRecordStore, FakeTextGenerator, make_record

FENCED_RESPONSE = '''以下が要約です。
```json
{"summary": "頓服服用後に排便あり。血圧がやや高め。", "keyInsights": ["頓服の効果あり", "血圧145"]}
```'''


def day_records(day: str):
    return [
        make_record(cat.MEDICATION, f'{day} 21:00', {cat.FIELD_AS_NEEDED_DOSE: '21:00'}),
        make_record(cat.EXCRETION, f'{day} 22:00', {cat.FIELD_BOWEL_MOVEMENT: 'あり'}),
        make_record(cat.VITALS, f'{day} 09:00', {cat.FIELD_SYSTOLIC_BP: '145'}),
    ]


class FailOnceGenerator(FakeTextGenerator):

    def generate(self, prompt, system_prompt=None):
        if not self.prompts:
            self.prompts.append(prompt)
            raise RuntimeError('model timeout')
        return super().generate(prompt, system_prompt)


@pytest.fixture
def record_store():
    return FakeRecordStore(day_records('2025-06-01'))


@pytest.fixture
def llm():
    return FakeTextGenerator([FENCED_RESPONSE])


@pytest.fixture
def summarizer(record_store, summary_store, llm):
    return HierarchicalSummarizer(record_store, summary_store, llm)


class TestResolvePeriod:

    def test_iso_week_one_starts_in_previous_year(self):
        period = resolve_period(WEEKLY, '2025-W01')
        assert (period.start, period.end) == (date(2024, 12, 30), date(2025, 1, 5))

    def test_month_ranges(self):
        assert resolve_period(MONTHLY, '2024-02').end == date(2024, 2, 29)
        assert resolve_period(MONTHLY, '2025-02').end == date(2025, 2, 28)

    def test_daily(self):
        period = resolve_period(DAILY, '2025-06-01')
        assert period.start == period.end == date(2025, 6, 1)

    @pytest.mark.parametrize('summary_type, key', [
        (DAILY, '2025-02-30'),
        (DAILY, '2025/06/01'),
        (WEEKLY, '2025-W54'),
        (WEEKLY, '2025-06'),
        (MONTHLY, '2025-13'),
        ('yearly', '2025'),
    ])
    def test_invalid_keys(self, summary_type, key):
        with pytest.raises(InvalidPeriodKeyError) as excinfo:
            resolve_period(summary_type, key)
        assert excinfo.value.code == 'INVALID_PERIOD_KEY'


class TestParseSummaryResponse:

    def test_fenced_json_with_prose(self):
        parsed = parse_summary_response(FENCED_RESPONSE)
        assert isinstance(parsed, ParsedSummary)
        assert parsed.key_insights == ['頓服の効果あり', '血圧145']

    def test_plain_text_falls_back(self):
        parsed = parse_summary_response('本日は穏やかに過ごされました。')
        assert isinstance(parsed, RawFallback)
        assert parsed.raw_text == '本日は穏やかに過ごされました。'

    def test_malformed_json_falls_back(self):
        assert isinstance(parse_summary_response('{"summary": "途中で'), RawFallback)
        assert isinstance(parse_summary_response('{"summary": }'), RawFallback)

    def test_missing_summary_falls_back(self):
        assert isinstance(parse_summary_response('{"keyInsights": ["a"]}'), RawFallback)

    def test_non_list_insights_are_dropped(self):
        parsed = parse_summary_response('{"summary": "要約", "keyInsights": "一つだけ"}')
        assert parsed == ParsedSummary(summary_text='要約', key_insights=[])

    def test_none_response(self):
        assert isinstance(parse_summary_response(None), RawFallback)


class TestGenerate:

    def test_daily_summary_is_generated_and_stored(self, summarizer, summary_store, llm):
        result = summarizer.generate(DAILY, '2025-06-01')

        assert result.generated is True
        summary = result.summary
        assert summary.summary_text == '頓服服用後に排便あり。血圧がやや高め。'
        assert summary.key_insights == ['頓服の効果あり', '血圧145']
        assert summary.source_record_count == 3
        assert {c.category: c.count for c in summary.category_counts} == {
            cat.MEDICATION: 1,
            cat.EXCRETION: 1,
            cat.VITALS: 1,
        }
        assert [c.pattern for c in summary.correlations] == ['バイタル異常']
        assert summary.related_dates == [date(2025, 6, 1)]
        assert summary.generated_by == 'fake-model'
        assert summary_store.get('2025-06-01') is summary

    def test_prompt_carries_counts_correlations_and_length(self, summarizer, llm):
        summarizer.generate(DAILY, '2025-06-01')

        prompt = llm.prompts[0]
        assert '- 内服: 1件' in prompt
        assert 'バイタル異常' in prompt
        assert '100文字以内' in prompt

    def test_existing_summary_is_returned_without_regeneration(self, summarizer, summary_store, llm):
        first = summarizer.generate(DAILY, '2025-06-01')
        second = summarizer.generate(DAILY, '2025-06-01')

        assert second.generated is False
        assert second.summary is first.summary
        assert len(llm.prompts) == 1
        assert summary_store.put_calls == 1

    def test_force_regenerate_replaces_summary(self, summarizer, summary_store, llm):
        summarizer.generate(DAILY, '2025-06-01')
        llm.responses.append('{"summary": "再生成", "keyInsights": []}')

        result = summarizer.generate(DAILY, '2025-06-01', force_regenerate=True)

        assert result.generated is True
        assert summary_store.get('2025-06-01').summary_text == '再生成'
        assert summary_store.put_calls == 2

    def test_invalid_key_is_rejected_before_fetch(self, summarizer, record_store, llm):
        with pytest.raises(InvalidPeriodKeyError):
            summarizer.generate(WEEKLY, '2025-06-01')

        assert record_store.range_calls == []
        assert llm.prompts == []

    def test_period_without_records(self, summarizer, summary_store, llm):
        result = summarizer.generate(DAILY, '2025-06-02')

        assert result.generated is False
        assert result.summary.summary_text == NO_DATA_TEXT
        assert result.summary.source_record_count == 0
        assert result.message == 'No records found for period: 2025-06-02 - 2025-06-02'
        assert summary_store.get('2025-06-02') is None
        assert llm.prompts == []

    def test_weekly_fetch_covers_iso_week(self, summary_store):
        store = FakeRecordStore(day_records('2024-12-30') + day_records('2025-01-05') + day_records('2025-01-06'))
        summarizer = HierarchicalSummarizer(store, summary_store, FakeTextGenerator(), max_records=500)

        result = summarizer.generate(WEEKLY, '2025-W01')

        assert store.range_calls == [(date(2024, 12, 30), date(2025, 1, 5), 500)]
        assert result.summary.source_record_count == 6
        assert result.summary.related_dates == [date(2024, 12, 30), date(2025, 1, 5)]
        assert '頓服→排便' in [c.pattern for c in result.summary.correlations]

    def test_unstructured_response_is_used_verbatim(self, record_store, summary_store):
        summarizer = HierarchicalSummarizer(record_store, summary_store, FakeTextGenerator(['穏やかな一日でした。']))

        summary = summarizer.generate(DAILY, '2025-06-01').summary

        assert summary.summary_text == '穏やかな一日でした。'
        assert summary.key_insights == []

    def test_generation_failure_stores_nothing(self, record_store, summary_store):
        summarizer = HierarchicalSummarizer(record_store, summary_store,
                                            FakeTextGenerator(fail_with=RuntimeError('timeout')))

        with pytest.raises(SummaryGenerationError):
            summarizer.generate(DAILY, '2025-06-01')

        assert summary_store.summaries == {}

    def test_record_store_failure_is_wrapped(self, record_store, summarizer):
        record_store.fail_with = ConnectionError('down')

        with pytest.raises(SummaryGenerationError):
            summarizer.generate(DAILY, '2025-06-01')


class TestListSummaries:

    def test_newest_first_with_type_filter(self, record_store, summary_store):
        record_store.records = day_records('2025-06-01') + day_records('2025-06-02')
        summarizer = HierarchicalSummarizer(record_store, summary_store, FakeTextGenerator())
        summarizer.generate(DAILY, '2025-06-01')
        summarizer.generate(DAILY, '2025-06-02')
        summarizer.generate(MONTHLY, '2025-06')

        dailies = summarizer.list_summaries(summary_type=DAILY)

        assert [s.id for s in dailies] == ['2025-06-02', '2025-06-01']
        assert len(summarizer.list_summaries()) == 3

    def test_invalid_type(self, summarizer):
        with pytest.raises(InvalidRequestError):
            summarizer.list_summaries(summary_type='yearly')


class TestPostSync:

    def test_weekday_mid_month_runs_daily_only(self, summary_store):
        store = FakeRecordStore(day_records('2025-06-03'))
        summarizer = HierarchicalSummarizer(store, summary_store, FakeTextGenerator())

        report = summarizer.run_post_sync(date(2025, 6, 3))

        assert list(report.results) == ['2025-06-03']
        assert report.succeeded

    def test_sunday_at_month_end_runs_all_three(self, summary_store):
        store = FakeRecordStore(day_records('2025-08-31'), today=date(2025, 8, 31))
        summarizer = HierarchicalSummarizer(store, summary_store, FakeTextGenerator())

        report = summarizer.run_post_sync()

        assert list(report.results) == ['2025-08-31', '2025-W35', '2025-08']
        assert all(r.generated for r in report.results.values())

    def test_failure_does_not_block_other_periods(self, summary_store):
        store = FakeRecordStore(day_records('2025-08-31'))
        summarizer = HierarchicalSummarizer(store, summary_store, FailOnceGenerator())

        report = summarizer.run_post_sync(date(2025, 8, 31))

        assert not report.succeeded
        assert list(report.failures) == ['2025-08-31']
        assert list(report.results) == ['2025-W35', '2025-08']
        assert summary_store.get('2025-08') is not None

    def test_daily_is_regenerated_even_when_stored(self, summary_store):
        store = FakeRecordStore(day_records('2025-06-03'))
        llm = FakeTextGenerator()
        summarizer = HierarchicalSummarizer(store, summary_store, llm)
        summarizer.generate(DAILY, '2025-06-03')

        summarizer.run_post_sync(date(2025, 6, 3))

        assert len(llm.prompts) == 2
