"""
Lag-window correlation detection between two record categories.

For each trigger event (e.g. an as-needed laxative dose) the detector looks
for a positive effect record (e.g. a bowel movement) on the same day and on
each following day inside the lag window. Results are heuristic decision
support, not statistics.
"""

import re
import unicodedata
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from ..models.core import (HIGH, LOW, MEDIUM, OUTCOME_DELAYED, OUTCOME_EFFECT, OUTCOME_NONE, CorrelationOutcome,
                           CorrelationQuery, CorrelationResult, DetectionResult, Record, ThresholdRule)
from ..utils import categories as cat
from ..utils.logging_config import get_logger
from ..utils.term_variants import contains_any, variants_for

logger = get_logger(__name__)

DEFAULT_HIGH_THRESHOLD = 0.8
DEFAULT_MEDIUM_THRESHOLD = 0.5
DEFAULT_MIN_TRIGGER_EVENTS = 2

# Offsets up to this many days count as a direct effect; later ones are "delayed"
DIRECT_EFFECT_MAX_OFFSET = 1

DEFAULT_CORRELATION_QUERIES: Tuple[CorrelationQuery, ...] = (
    CorrelationQuery(pattern='頓服→排便',
                     trigger_category=cat.MEDICATION,
                     trigger_field=cat.FIELD_AS_NEEDED_DOSE,
                     effect_category=cat.EXCRETION,
                     effect_field=cat.FIELD_BOWEL_MOVEMENT,
                     effect_positive_marker='あり',
                     lag_window_days=1,
                     trigger_label='頓服服用',
                     effect_label='排便'),
    CorrelationQuery(pattern='マグミット→排便',
                     trigger_category=cat.MEDICATION,
                     trigger_term_variants=variants_for('マグミット'),
                     effect_category=cat.EXCRETION,
                     effect_field=cat.FIELD_BOWEL_MOVEMENT,
                     effect_positive_marker='あり',
                     lag_window_days=2,
                     trigger_label='マグミット服用',
                     effect_label='排便'),
)

VITAL_ABNORMALITY_PATTERN = 'バイタル異常'

DEFAULT_THRESHOLD_RULES: Tuple[ThresholdRule, ...] = (
    ThresholdRule(label='高血圧', field_names=(cat.FIELD_SYSTOLIC_BP, '血圧（収縮期）', '血圧'), threshold=140),
    ThresholdRule(label='発熱', field_names=(cat.FIELD_BODY_TEMPERATURE, '体温'), threshold=37.5),
)

_LEADING_NUMBER = re.compile(r'^\s*([-+]?(?:\d+(?:\.\d*)?|\.\d+))')


def parse_leading_number(value: Optional[str]) -> Optional[float]:
    """Parse the leading number of a free-text value ("138/80" -> 138.0)."""
    if not value:
        return None
    match = _LEADING_NUMBER.match(unicodedata.normalize('NFKC', value))
    if not match:
        return None
    return float(match.group(1))


class CorrelationDetector:
    """Classifies trigger events by whether an effect followed within the lag window."""

    def __init__(self,
                 high_threshold: float = DEFAULT_HIGH_THRESHOLD,
                 medium_threshold: float = DEFAULT_MEDIUM_THRESHOLD,
                 min_trigger_events: int = DEFAULT_MIN_TRIGGER_EVENTS):
        self.high_threshold = high_threshold
        self.medium_threshold = medium_threshold
        self.min_trigger_events = min_trigger_events

    def confidence_for(self, rate: float) -> str:
        if rate >= self.high_threshold:
            return HIGH
        if rate >= self.medium_threshold:
            return MEDIUM
        return LOW

    @staticmethod
    def is_trigger(query: CorrelationQuery, record: Record) -> bool:
        """A trigger carries a value in ``trigger_field`` or mentions a trigger term."""
        if record.category != query.trigger_category:
            return False
        if query.trigger_field and record.has_value(query.trigger_field):
            return True
        if query.trigger_term_variants:
            return contains_any(record.serialized(), query.trigger_term_variants)
        return False

    @staticmethod
    def is_positive_effect(query: CorrelationQuery, record: Record) -> bool:
        if record.category != query.effect_category:
            return False
        return contains_any(record.field(query.effect_field), [query.effect_positive_marker])

    def detect(self, query: CorrelationQuery, records: Sequence[Record]) -> DetectionResult:
        """
        Classify every trigger event and aggregate the effect rate.

        Args:
            query: Trigger/effect pair and lag window
            records: Records covering the trigger dates plus the lag window

        Returns:
            DetectionResult; ``correlation_result`` is None when there are
            fewer than ``min_trigger_events`` triggers
        """
        effects_by_date: Dict[date, List[Record]] = {}
        triggers: List[Record] = []
        undated = 0

        for record in records:
            if self.is_positive_effect(query, record) and record.record_date is not None:
                effects_by_date.setdefault(record.record_date, []).append(record)
            if self.is_trigger(query, record):
                if record.record_date is None:
                    undated += 1
                    continue
                triggers.append(record)

        if undated:
            logger.debug(f'{query.pattern}: skipped {undated} triggers without a parsable date')

        outcomes = [self._classify(query, trigger, effects_by_date) for trigger in triggers]
        total = len(outcomes)
        if total == 0:
            return DetectionResult(outcomes=[], aggregate_rate=0.0)

        effect_count = sum(1 for o in outcomes if o.outcome == OUTCOME_EFFECT)
        delayed_count = sum(1 for o in outcomes if o.outcome == OUTCOME_DELAYED)
        matched = effect_count + (delayed_count if query.lag_window_days > DIRECT_EFFECT_MAX_OFFSET else 0)

        # Nearest whole percent, halves rounded up
        percent = (matched * 200 + total) // (2 * total)
        result = DetectionResult(outcomes=outcomes, aggregate_rate=percent / 100)

        if total < self.min_trigger_events:
            logger.debug(f'{query.pattern}: {total} trigger(s), below minimum of {self.min_trigger_events}')
            return result

        observation = f'{query.trigger_label or query.pattern}後に{query.effect_label}あり: {matched}/{total}回 ({percent}%)'
        if delayed_count:
            observation += f' うち{DIRECT_EFFECT_MAX_OFFSET + 1}日後以降: {delayed_count}回'

        result.correlation_result = CorrelationResult(pattern=query.pattern,
                                                      observation=observation,
                                                      confidence=self.confidence_for(matched / total))
        return result

    def _classify(self, query: CorrelationQuery, trigger: Record,
                  effects_by_date: Dict[date, List[Record]]) -> CorrelationOutcome:
        trigger_date = trigger.record_date
        positive_offsets = []
        effect_timestamps = []

        for offset in range(query.lag_window_days + 1):
            day_effects = effects_by_date.get(trigger_date + timedelta(days=offset), [])
            if day_effects:
                positive_offsets.append(offset)
                effect_timestamps.extend(r.raw_timestamp or r.timestamp.isoformat() for r in day_effects)

        if any(offset <= DIRECT_EFFECT_MAX_OFFSET for offset in positive_offsets):
            outcome = OUTCOME_EFFECT
        elif positive_offsets:
            outcome = OUTCOME_DELAYED
        else:
            outcome = OUTCOME_NONE

        administration_time = trigger.field(query.trigger_field) if query.trigger_field else ''
        return CorrelationOutcome(trigger_date=trigger_date,
                                  outcome=outcome,
                                  administration_time=administration_time,
                                  effect_timestamps=effect_timestamps)


def scan_thresholds(records: Sequence[Record],
                    rules: Sequence[ThresholdRule] = DEFAULT_THRESHOLD_RULES,
                    category: str = cat.VITALS,
                    pattern: str = VITAL_ABNORMALITY_PATTERN,
                    min_violations: int = 1,
                    high_count: int = 3,
                    max_listed: int = 5) -> Optional[CorrelationResult]:
    """
    Count numeric threshold breaches within one category.

    This is the single-category form of correlation: no effect lookup, just
    the number of violations, tiered ``>= high_count`` -> high, else medium.

    Returns:
        CorrelationResult, or None below ``min_violations``
    """
    abnormals: List[str] = []
    for record in records:
        if record.category != category:
            continue
        for rule in rules:
            value = next((record.field(name) for name in rule.field_names if record.field(name)), '')
            number = parse_leading_number(value)
            if number is not None and number >= rule.threshold:
                abnormals.append(f'{rule.label}({number:g})')

    if not abnormals or len(abnormals) < min_violations:
        return None

    listed = ', '.join(abnormals[:max_listed])
    if len(abnormals) > max_listed:
        listed += '...'

    return CorrelationResult(pattern=pattern,
                             observation=f'期間中の異常値: {listed}',
                             confidence=HIGH if len(abnormals) >= high_count else MEDIUM)
