"""
Core data models for the care-record insight engine.
"""

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from ..utils.categories import display_name
from ..utils.term_variants import normalize_text

# Summary period types
DAILY = 'daily'
WEEKLY = 'weekly'
MONTHLY = 'monthly'
SUMMARY_TYPES = (DAILY, WEEKLY, MONTHLY)

# Per-trigger correlation outcomes
OUTCOME_EFFECT = 'effect'
OUTCOME_DELAYED = 'delayed'
OUTCOME_NONE = 'none'

# Confidence tiers
HIGH = 'high'
MEDIUM = 'medium'
LOW = 'low'


class ErrorCodes:
    """Error codes surfaced to callers of the MCP interface."""
    INVALID_REQUEST = 'INVALID_REQUEST'
    MISSING_REQUIRED_FIELD = 'MISSING_REQUIRED_FIELD'
    INVALID_PERIOD_KEY = 'INVALID_PERIOD_KEY'
    INTERNAL_ERROR = 'INTERNAL_ERROR'


class InvalidRequestError(ValueError):
    """Caller input rejected before any store or generation call."""

    def __init__(self, message: str, code: str = ErrorCodes.INVALID_REQUEST):
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class Record:
    """A single care-activity row from one category sheet.

    ``timestamp`` is None when the textual timestamp could not be parsed;
    such records are kept and ``raw_timestamp`` still carries the text.
    """
    timestamp: Optional[datetime]
    category: str
    fields: Dict[str, str]
    raw_timestamp: str = ''
    record_id: str = ''

    @property
    def record_date(self) -> Optional[date]:
        """Calendar date of the record, time discarded."""
        if self.timestamp is None:
            return None
        return self.timestamp.date()

    def field(self, name: str) -> str:
        """Stripped value of a field, empty string when absent."""
        return str(self.fields.get(name) or '').strip()

    def has_value(self, name: str) -> bool:
        """True when the field records something (not blank, not '-')."""
        value = self.field(name)
        return bool(value) and value != '-'

    def serialized(self) -> str:
        """Normalised lowercase text of the whole record for substring matching."""
        parts = [self.raw_timestamp, display_name(self.category)]
        for key, value in self.fields.items():
            parts.append(f'{key}:{value}')
        return normalize_text(' '.join(parts))


@dataclass
class CachedRecordSet:
    """Full record set held by the record cache; replaced wholesale, never patched."""
    records: List[Record]
    cached_at: float
    ttl_seconds: float

    def age(self, now: float) -> float:
        return now - self.cached_at

    def is_fresh(self, now: float) -> bool:
        return self.age(now) < self.ttl_seconds


@dataclass
class CacheResult:
    """Records served by the cache and where they came from."""
    records: List[Record]
    from_cache: bool
    cache_age_seconds: Optional[int] = None


@dataclass
class RetrievalContext:
    """What the asking user is currently looking at."""
    category: Optional[str] = None
    year: Optional[int] = None
    month: Optional[int] = None


@dataclass
class SourceCount:
    """Number of cited records per category."""
    category: str
    record_count: int


@dataclass
class CorrelationQuery:
    """A trigger/effect category pair to test for a lagged relationship."""
    pattern: str  # Narrative name, e.g. "頓服→排便"
    trigger_category: str
    effect_category: str
    effect_field: str  # Field whose value says whether the effect happened
    effect_positive_marker: str  # Substring of effect_field meaning "it happened"
    trigger_term_variants: Tuple[str, ...] = ()
    trigger_field: Optional[str] = None  # Field whose non-empty value marks a trigger
    lag_window_days: int = 1
    trigger_label: str = ''
    effect_label: str = ''


@dataclass
class CorrelationOutcome:
    """What followed one trigger event."""
    trigger_date: date
    outcome: str  # effect | delayed | none
    administration_time: str = ''
    effect_timestamps: List[str] = field(default_factory=list)


@dataclass
class CorrelationResult:
    """A narrative observation surfaced in summaries."""
    pattern: str
    observation: str
    confidence: str  # high | medium | low

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


@dataclass
class DetectionResult:
    """Per-event outcomes plus the aggregate for one correlation query."""
    outcomes: List[CorrelationOutcome]
    aggregate_rate: float
    correlation_result: Optional[CorrelationResult] = None

    @property
    def rate_percent(self) -> int:
        return int(round(self.aggregate_rate * 100))

    @property
    def trigger_dates(self) -> List[date]:
        """Distinct trigger dates in first-seen order."""
        seen: List[date] = []
        for outcome in self.outcomes:
            if outcome.trigger_date not in seen:
                seen.append(outcome.trigger_date)
        return seen


@dataclass
class ThresholdRule:
    """A single-category numeric breach, e.g. systolic blood pressure >= 140."""
    label: str
    field_names: Tuple[str, ...]
    threshold: float


@dataclass
class SummaryPeriod:
    """Resolved calendar range for a period key."""
    type: str
    key: str
    start: date
    end: date


@dataclass
class CategoryCount:
    category: str
    count: int


@dataclass
class Summary:
    """Generated summary for one period key; replaced wholesale on regeneration."""
    id: str
    type: str
    period_start: date
    period_end: date
    summary_text: str
    key_insights: List[str]
    category_counts: List[CategoryCount]
    correlations: Optional[List[CorrelationResult]]
    related_dates: List[date]
    source_record_count: int
    generated_at: datetime
    generated_by: str

    def to_document(self) -> Dict[str, Any]:
        """Serialize for the summary store."""
        return {
            'id': self.id,
            'type': self.type,
            'period_start': self.period_start.isoformat(),
            'period_end': self.period_end.isoformat(),
            'summary_text': self.summary_text,
            'key_insights': list(self.key_insights),
            'category_counts': [asdict(c) for c in self.category_counts],
            'correlations': [c.to_dict() for c in self.correlations] if self.correlations else None,
            'related_dates': [d.isoformat() for d in self.related_dates],
            'source_record_count': self.source_record_count,
            'generated_at': self.generated_at.isoformat(),
            'generated_by': self.generated_by,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> 'Summary':
        """Rebuild a Summary from a stored document."""
        correlations = doc.get('correlations')
        return cls(id=doc['id'],
                   type=doc['type'],
                   period_start=date.fromisoformat(doc['period_start']),
                   period_end=date.fromisoformat(doc['period_end']),
                   summary_text=doc.get('summary_text', ''),
                   key_insights=list(doc.get('key_insights') or []),
                   category_counts=[CategoryCount(**c) for c in doc.get('category_counts') or []],
                   correlations=[CorrelationResult(**c) for c in correlations] if correlations else None,
                   related_dates=[date.fromisoformat(d) for d in doc.get('related_dates') or []],
                   source_record_count=int(doc.get('source_record_count', 0)),
                   generated_at=datetime.fromisoformat(doc['generated_at']),
                   generated_by=doc.get('generated_by', ''))


@dataclass
class GenerationResult:
    """Outcome of a summary generation request."""
    summary: Summary
    generated: bool
    processing_time_ms: int
    message: Optional[str] = None
