"""
Hierarchical (daily / weekly / monthly) summary generation.

A period key moves from "not generated" to "generated" once; asking again
returns the stored summary unless regeneration is forced, in which case the
stored summary is replaced wholesale.
"""

import calendar
import re
import time
from dataclasses import dataclass, field
from datetime import date, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple, Union

from ..models.core import (DAILY, MONTHLY, SUMMARY_TYPES, WEEKLY, CategoryCount, CorrelationQuery,
                           CorrelationResult, ErrorCodes, GenerationResult, InvalidRequestError, Record,
                           Summary, SummaryPeriod, ThresholdRule)
from ..utils.base_llm import TextGenerator
from ..utils.categories import display_name
from ..utils.json_utils import clean_json_response, find_json_object, loads_or_none
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import fixed_offset, iso_week_key, month_key, now_in
from .correlation import DEFAULT_CORRELATION_QUERIES, DEFAULT_THRESHOLD_RULES, CorrelationDetector, scan_thresholds
from .record_store import RecordStore
from .summary_store import DEFAULT_LIST_LIMIT, SummaryStore

logger = get_logger(__name__)

DEFAULT_MAX_RECORDS = 2000

PERIOD_KEY_PATTERNS = {
    DAILY: re.compile(r'^(\d{4})-(\d{2})-(\d{2})$'),
    WEEKLY: re.compile(r'^(\d{4})-W(\d{2})$'),
    MONTHLY: re.compile(r'^(\d{4})-(\d{2})$'),
}

EXPECTED_FORMATS = {DAILY: 'YYYY-MM-DD', WEEKLY: 'YYYY-Www', MONTHLY: 'YYYY-MM'}

TYPE_LABELS = {DAILY: '日次', WEEKLY: '週次', MONTHLY: '月次'}

# Requested summary length in characters; an instruction, not enforced
TARGET_LENGTHS = {DAILY: 100, WEEKLY: 200, MONTHLY: 300}

NO_DATA_TEXT = '対象期間の記録がありません。'


class SummaryGenerationError(Exception):
    """Custom exception for summary generation errors."""
    pass


class InvalidPeriodKeyError(InvalidRequestError):
    """Period type or key does not describe a real period."""

    def __init__(self, message: str):
        super().__init__(message, code=ErrorCodes.INVALID_PERIOD_KEY)


def resolve_period(summary_type: str, period_key: str) -> SummaryPeriod:
    """
    Compute the calendar range of a period key.

    Args:
        summary_type: daily, weekly or monthly
        period_key: ``YYYY-MM-DD``, ISO ``YYYY-Www`` or ``YYYY-MM``

    Returns:
        SummaryPeriod with inclusive start and end dates

    Raises:
        InvalidPeriodKeyError: Unknown type, malformed key or impossible date
    """
    if summary_type not in SUMMARY_TYPES:
        raise InvalidPeriodKeyError(f'type must be daily, weekly, or monthly (got {summary_type!r})')

    match = PERIOD_KEY_PATTERNS[summary_type].match(period_key or '')
    if not match:
        raise InvalidPeriodKeyError(f'Invalid period key for {summary_type}: {period_key!r}. '
                                    f'Expected: {EXPECTED_FORMATS[summary_type]}')

    try:
        if summary_type == DAILY:
            day = date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
            return SummaryPeriod(type=summary_type, key=period_key, start=day, end=day)

        if summary_type == WEEKLY:
            # ISO-8601: week 1 contains January 4th, weeks start on Monday
            monday = date.fromisocalendar(int(match.group(1)), int(match.group(2)), 1)
            return SummaryPeriod(type=summary_type, key=period_key, start=monday, end=monday + timedelta(days=6))

        year, month = int(match.group(1)), int(match.group(2))
        last_day = calendar.monthrange(year, month)[1]
        return SummaryPeriod(type=summary_type, key=period_key, start=date(year, month, 1), end=date(year, month, last_day))

    except (ValueError, calendar.IllegalMonthError) as e:
        raise InvalidPeriodKeyError(f'Invalid period key for {summary_type}: {period_key!r} ({e})')


@dataclass
class ParsedSummary:
    """Structured summary extracted from the generation response."""
    summary_text: str
    key_insights: List[str]


@dataclass
class RawFallback:
    """Response could not be read as structured output; used verbatim."""
    raw_text: str
    reason: str


def parse_summary_response(response_text: Optional[str]) -> Union[ParsedSummary, RawFallback]:
    """Read ``{"summary": ..., "keyInsights": [...]}`` out of a free-form response.

    Never raises. Anything that is not a JSON object with a non-empty
    ``summary`` string comes back as RawFallback.
    """
    text = (response_text or '').strip()
    candidate = find_json_object(clean_json_response(text))
    if candidate is None:
        return RawFallback(raw_text=text, reason='no JSON object in response')

    parsed = loads_or_none(candidate)
    if not isinstance(parsed, dict):
        return RawFallback(raw_text=text, reason='response JSON is not an object')

    summary = parsed.get('summary')
    if not isinstance(summary, str) or not summary.strip():
        return RawFallback(raw_text=text, reason='response JSON has no summary')

    insights = parsed.get('keyInsights')
    key_insights = []
    if isinstance(insights, list):
        key_insights = [str(i).strip() for i in insights if isinstance(i, (str, int, float)) and str(i).strip()]

    return ParsedSummary(summary_text=summary.strip(), key_insights=key_insights)


def group_by_category(records: Sequence[Record]) -> Dict[str, List[Record]]:
    """Group records by category, keeping first-seen category order."""
    grouped: Dict[str, List[Record]] = {}
    for record in records:
        grouped.setdefault(record.category, []).append(record)
    return grouped


def build_summary_prompt(period: SummaryPeriod,
                         by_category: Dict[str, List[Record]],
                         correlations: Sequence[CorrelationResult]) -> str:
    """Build the bounded generation prompt for one period."""
    category_lines = '\n'.join(f'- {display_name(c)}: {len(recs)}件' for c, recs in by_category.items())
    if correlations:
        correlation_text = '\n'.join(f'- {c.pattern}: {c.observation}' for c in correlations)
    else:
        correlation_text = '特になし'

    return f"""あなたは介護記録の分析専門家です。以下のケア記録データを分析し、{TYPE_LABELS[period.type]}要約を作成してください。

## 対象期間
{period.start.isoformat()} ～ {period.end.isoformat()}

## シート別レコード数
{category_lines}

## 検出された相関パターン
{correlation_text}

## 要約作成ルール
1. 日本語で簡潔に（{TARGET_LENGTHS[period.type]}文字以内）
2. 重要な傾向・変化を優先
3. 相関パターンがあれば言及
4. 具体的な日付や数値を含める

## 出力形式
以下のJSON形式で出力してください:
{{
  "summary": "要約テキスト",
  "keyInsights": ["洞察1", "洞察2", "洞察3"]
}}"""


@dataclass
class PostSyncReport:
    """Per-period outcome of the post-sync generation run."""
    results: Dict[str, GenerationResult] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return not self.failures


class HierarchicalSummarizer:
    """Generates, persists and lists daily/weekly/monthly summaries."""

    def __init__(self,
                 record_store: RecordStore,
                 summary_store: SummaryStore,
                 llm: TextGenerator,
                 detector: Optional[CorrelationDetector] = None,
                 correlation_queries: Sequence[CorrelationQuery] = DEFAULT_CORRELATION_QUERIES,
                 threshold_rules: Sequence[ThresholdRule] = DEFAULT_THRESHOLD_RULES,
                 max_records: int = DEFAULT_MAX_RECORDS,
                 tz: Optional[timezone] = None):
        self.record_store = record_store
        self.summary_store = summary_store
        self.llm = llm
        self.detector = detector or CorrelationDetector()
        self.correlation_queries = tuple(correlation_queries)
        self.threshold_rules = tuple(threshold_rules)
        self.max_records = max_records
        self.tz = tz or fixed_offset()

    def generate(self, summary_type: str, period_key: str, force_regenerate: bool = False) -> GenerationResult:
        """
        Generate (or return the existing) summary for one period.

        Args:
            summary_type: daily, weekly or monthly
            period_key: Period key matching the type's format
            force_regenerate: Replace an existing summary

        Returns:
            GenerationResult; ``generated`` is False for an existing summary
            and for a period without records (nothing is stored then)

        Raises:
            InvalidPeriodKeyError: Before any store access, for bad input
            SummaryGenerationError: Record store, generation or summary store failure
        """
        started = time.monotonic()
        period = resolve_period(summary_type, period_key)

        try:
            existing = self.summary_store.get(period.key)
        except Exception as e:
            logger.error(f'Summary lookup failed for {period.key}: {e}')
            raise SummaryGenerationError(f'Summary lookup failed: {e}') from e

        if existing is not None and not force_regenerate:
            logger.debug(f'Summary {period.key} already exists, returning stored copy')
            return GenerationResult(summary=existing, generated=False, processing_time_ms=self._elapsed_ms(started))

        try:
            records = self.record_store.fetch_records_in_range(period.start, period.end, self.max_records)
        except Exception as e:
            logger.error(f'Record fetch failed for {period.key}: {e}')
            raise SummaryGenerationError(f'Record fetch failed: {e}') from e

        if not records:
            message = f'No records found for period: {period.start} - {period.end}'
            logger.info(message)
            return GenerationResult(summary=self._empty_summary(period),
                                    generated=False,
                                    processing_time_ms=self._elapsed_ms(started),
                                    message=message)

        by_category = group_by_category(records)
        correlations, related_dates = self.scan_correlations(records)
        prompt = build_summary_prompt(period, by_category, correlations)

        try:
            response_text = self.llm.generate(prompt)
        except Exception as e:
            logger.error(f'Text generation failed for {period.key}: {e}')
            raise SummaryGenerationError(f'Text generation failed: {e}') from e

        parsed = parse_summary_response(response_text)
        if isinstance(parsed, RawFallback):
            logger.warning(f'Summary JSON parse failed for {period.key} ({parsed.reason}), using raw text')
            summary_text, key_insights = parsed.raw_text, []
        else:
            summary_text, key_insights = parsed.summary_text, parsed.key_insights

        summary = Summary(id=period.key,
                          type=period.type,
                          period_start=period.start,
                          period_end=period.end,
                          summary_text=summary_text,
                          key_insights=key_insights,
                          category_counts=[CategoryCount(category=c, count=len(r)) for c, r in by_category.items()],
                          correlations=correlations or None,
                          related_dates=related_dates,
                          source_record_count=len(records),
                          generated_at=now_in(self.tz),
                          generated_by=getattr(self.llm, 'model_id', 'unknown'))

        try:
            self.summary_store.put(period.key, summary)
        except Exception as e:
            logger.error(f'Summary write failed for {period.key}: {e}')
            raise SummaryGenerationError(f'Summary write failed: {e}') from e

        elapsed = self._elapsed_ms(started)
        logger.info(f'Summary generated (type: {period.type}, key: {period.key}, '
                    f'records: {len(records)}, time: {elapsed}ms)')
        return GenerationResult(summary=summary, generated=True, processing_time_ms=elapsed)

    def scan_correlations(self, records: Sequence[Record]) -> Tuple[List[CorrelationResult], List[date]]:
        """Run every configured pair and threshold scan over a period's records.

        Returns:
            (surfaced correlation results, sorted distinct trigger dates)
        """
        correlations: List[CorrelationResult] = []
        related: List[date] = []

        for query in self.correlation_queries:
            detection = self.detector.detect(query, records)
            if detection.correlation_result is not None:
                correlations.append(detection.correlation_result)
            for day in detection.trigger_dates:
                if day not in related:
                    related.append(day)

        threshold_result = scan_thresholds(records, self.threshold_rules)
        if threshold_result is not None:
            correlations.append(threshold_result)

        return correlations, sorted(related)

    def list_summaries(self,
                       summary_type: Optional[str] = None,
                       from_date: Optional[date] = None,
                       to_date: Optional[date] = None,
                       limit: int = DEFAULT_LIST_LIMIT) -> List[Summary]:
        """List stored summaries, newest period first."""
        if summary_type is not None and summary_type not in SUMMARY_TYPES:
            raise InvalidRequestError('type must be daily, weekly, or monthly')
        if limit <= 0:
            raise InvalidRequestError('limit must be positive')
        return self.summary_store.list(summary_type=summary_type, from_date=from_date, to_date=to_date, limit=limit)

    def run_post_sync(self, today: Optional[date] = None) -> PostSyncReport:
        """
        Regenerate the summaries due after an ingestion sync.

        Daily is always regenerated; weekly when ``today`` is Sunday (the last
        ISO weekday); monthly when tomorrow starts a new month. Each period is
        an isolated unit of work: a failure is logged and recorded in the
        report, and the remaining periods still run.
        """
        today = today or self.record_store.today()
        jobs = [(DAILY, today.isoformat())]
        if today.isoweekday() == 7:
            jobs.append((WEEKLY, iso_week_key(today)))
        if (today + timedelta(days=1)).month != today.month:
            jobs.append((MONTHLY, month_key(today)))

        report = PostSyncReport()
        for summary_type, period_key in jobs:
            try:
                result = self.generate(summary_type, period_key, force_regenerate=True)
            except Exception as e:
                logger.warning(f'{summary_type.capitalize()} summary generation failed for {period_key}: {e}')
                report.failures[period_key] = str(e)
                continue
            report.results[period_key] = result
            logger.info(f'{summary_type.capitalize()} summary done for {period_key} (generated: {result.generated})')

        return report

    def _empty_summary(self, period: SummaryPeriod) -> Summary:
        return Summary(id=period.key,
                       type=period.type,
                       period_start=period.start,
                       period_end=period.end,
                       summary_text=NO_DATA_TEXT,
                       key_insights=[],
                       category_counts=[],
                       correlations=None,
                       related_dates=[],
                       source_record_count=0,
                       generated_at=now_in(self.tz),
                       generated_by='')

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)
