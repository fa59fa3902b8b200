"""
Category inference and keyword relevance scoring for record Q&A.

The matchers are pure functions over the rule tables below; all matching
happens on normalised text (see ``utils.term_variants``) so kana-width and
hiragana spellings of a term behave the same.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Pattern, Sequence, Set, Tuple

from ..models.core import Record, RetrievalContext, SourceCount
from ..utils import categories as cat
from ..utils.categories import DISPLAY_NAMES, FIELD_AS_NEEDED_DOSE, category_for_sheet
from ..utils.logging_config import get_logger
from ..utils.term_variants import canonical_term, contains_any, normalize_text, variants_for
from .record_cache import RecordCache

logger = get_logger(__name__)

DEFAULT_MAX_RESULTS = 100
DEFAULT_STRONG_SIGNAL_BONUS = 10
DEFAULT_FETCH_LIMIT = 2000


@dataclass(frozen=True)
class CategoryRule:
    """Query pattern -> categories whose records can answer it."""
    pattern: str
    categories: Tuple[str, ...]


@dataclass(frozen=True)
class StrongSignalRule:
    """A field whose non-empty value is decisive evidence for a keyword."""
    keyword: str
    field: str
    bonus: Optional[int] = None  # None uses the retriever's configured bonus


CATEGORY_RULES: Tuple[CategoryRule, ...] = (
    CategoryRule('頓服', (cat.MEDICATION, cat.EXCRETION)),
    CategoryRule('マグミット|酸化マグネシウム|酸化mg|下剤', (cat.MEDICATION, cat.EXCRETION)),
    CategoryRule('排泄|排便|排尿|トイレ', (cat.EXCRETION,)),
    CategoryRule('食事|主食|副食|摂取率', (cat.MEAL,)),
    CategoryRule('水分|飲|お茶|コーヒー', (cat.HYDRATION,)),
    CategoryRule('バイタル|血圧|体温|脈拍|spo2', (cat.VITALS,)),
    CategoryRule('薬|服薬|内服|投与', (cat.MEDICATION,)),
    CategoryRule('体重|kg', (cat.WEIGHT,)),
    CategoryRule('血糖|インスリン', (cat.BLOOD_SUGAR,)),
    CategoryRule('往診|医師|ドクター', (cat.PHYSICIAN_VISIT,)),
    CategoryRule('口腔|歯磨き', (cat.ORAL_CARE,)),
    CategoryRule('特記|申し送り|メモ', (cat.NOTE,)),
    CategoryRule('カンファレンス|会議', (cat.CONFERENCE,)),
)

# Overlaps CATEGORY_RULES but keeps the literal matched words
KEYWORD_PATTERNS: Tuple[str, ...] = (
    '頓服',
    'マグミット|酸化マグネシウム|酸化mg|下剤',
    '排泄|排便|排尿|トイレ',
    '食事|主食|副食|摂取',
    '水分|飲|お茶|コーヒー',
    'バイタル|血圧|体温|脈拍|spo2',
    '薬|服薬|内服|投与',
    '体重|kg',
    '血糖|インスリン',
    '往診|医師|ドクター',
    '口腔|歯磨き',
    '特記|申し送り|メモ',
    'カンファレンス|会議',
)

STRONG_SIGNAL_RULES: Tuple[StrongSignalRule, ...] = (
    StrongSignalRule(keyword='頓服', field=FIELD_AS_NEEDED_DOSE),
)


def _compile(pattern: str) -> Pattern[str]:
    """Compile a ``a|b|c`` term list, adding every known spelling of each term."""
    terms = set()
    for term in pattern.split('|'):
        terms.update(normalize_text(v) for v in variants_for(term))
    # Longest first so findall keeps the whole spelling
    return re.compile('|'.join(re.escape(t) for t in sorted(terms, key=lambda t: (-len(t), t))))


_COMPILED_CATEGORY_RULES = [(_compile(rule.pattern), rule.categories) for rule in CATEGORY_RULES]
_COMPILED_KEYWORD_PATTERNS = [_compile(p) for p in KEYWORD_PATTERNS]


def infer_categories(query_text: str, rules: Optional[Sequence[CategoryRule]] = None) -> List[str]:
    """Union of categories whose rule pattern matches the query, in rule order."""
    compiled = _COMPILED_CATEGORY_RULES if rules is None else [(_compile(r.pattern), r.categories) for r in rules]
    text = normalize_text(query_text)
    inferred: List[str] = []
    for pattern, rule_categories in compiled:
        if pattern.search(text):
            for category in rule_categories:
                if category not in inferred:
                    inferred.append(category)
    return inferred


def extract_keywords(query_text: str, patterns: Optional[Sequence[str]] = None) -> List[str]:
    """Distinct canonical keywords present in the query, in any known spelling.

    Each pattern match is reported by its canonical term; every category
    display name that appears verbatim in the query is added as well.
    """
    compiled = _COMPILED_KEYWORD_PATTERNS if patterns is None else [_compile(p) for p in patterns]
    text = normalize_text(query_text)
    keywords: List[str] = []

    for pattern in compiled:
        for match in pattern.findall(text):
            keyword = normalize_text(canonical_term(match))
            if keyword and keyword not in keywords:
                keywords.append(keyword)

    for name in DISPLAY_NAMES.values():
        needle = normalize_text(name)
        if needle in text and needle not in keywords:
            keywords.append(needle)

    return keywords


def score_record(record: Record,
                 keywords: Iterable[str],
                 strong_signal_bonus: int = DEFAULT_STRONG_SIGNAL_BONUS,
                 strong_signals: Sequence[StrongSignalRule] = STRONG_SIGNAL_RULES) -> int:
    """One point per keyword (or spelling variant) present, plus strong-signal bonuses."""
    keyword_set: Set[str] = set(keywords)
    haystack = record.serialized()
    score = 0
    for keyword in keyword_set:
        if contains_any(haystack, variants_for(keyword)):
            score += 1

    for rule in strong_signals:
        if normalize_text(rule.keyword) in keyword_set and record.has_value(rule.field):
            score += strong_signal_bonus if rule.bonus is None else rule.bonus

    return score


def _matches_period(record: Record, year: Optional[int], month: Optional[int]) -> bool:
    if year is None:
        return True
    if record.timestamp is None:
        # Unparsable timestamps are kept
        return True
    if record.timestamp.year != year:
        return False
    return month is None or record.timestamp.month == month


def retrieve(query_text: str,
             records: Sequence[Record],
             context: Optional[RetrievalContext] = None,
             max_results: int = DEFAULT_MAX_RESULTS,
             strong_signal_bonus: int = DEFAULT_STRONG_SIGNAL_BONUS) -> List[Record]:
    """
    Select the records most relevant to a natural-language question.

    Args:
        query_text: The user's question
        records: Candidate records (typically the cached full set)
        context: Category/year/month the user is currently viewing
        max_results: Upper bound on returned records
        strong_signal_bonus: Score added by a matching strong-signal rule

    Returns:
        At most ``max_results`` records in relevance order. Never raises;
        falls back to the filtered set unscored when nothing matches.
    """
    context = context or RetrievalContext()
    filtered = list(records)

    inferred = infer_categories(query_text)
    if inferred:
        filtered = [r for r in filtered if r.category in inferred]
    elif context.category:
        wanted = category_for_sheet(context.category) or context.category
        filtered = [r for r in filtered if r.category == wanted]

    if context.year is not None:
        filtered = [r for r in filtered if _matches_period(r, context.year, context.month)]

    keywords = extract_keywords(query_text)
    if not keywords:
        return filtered[:max_results]

    scored = [(score_record(r, keywords, strong_signal_bonus), r) for r in filtered]
    scored.sort(key=lambda pair: pair[0], reverse=True)

    relevant = [r for score, r in scored if score > 0]
    if relevant:
        return relevant[:max_results]
    return filtered[:max_results]


def aggregate_sources(records: Iterable[Record]) -> List[SourceCount]:
    """Distinct categories among cited records, most-cited first."""
    counts = {}
    for record in records:
        counts[record.category] = counts.get(record.category, 0) + 1
    sources = [SourceCount(category=c, record_count=n) for c, n in counts.items()]
    sources.sort(key=lambda s: s.record_count, reverse=True)
    return sources


@dataclass
class RetrievalResult:
    """Relevant records plus citation and cache metadata."""
    records: List[Record]
    sources: List[SourceCount]
    inferred_categories: List[str] = field(default_factory=list)
    from_cache: bool = False
    cache_age_seconds: Optional[int] = None


class RecordRetrievalService:
    """Retrieval entry point: cached record set -> relevance filter."""

    def __init__(self,
                 cache: RecordCache,
                 max_results: int = DEFAULT_MAX_RESULTS,
                 strong_signal_bonus: int = DEFAULT_STRONG_SIGNAL_BONUS,
                 fetch_limit: int = DEFAULT_FETCH_LIMIT):
        self.cache = cache
        self.max_results = max_results
        self.strong_signal_bonus = strong_signal_bonus
        self.fetch_limit = fetch_limit

    def search(self, query_text: str, context: Optional[RetrievalContext] = None) -> RetrievalResult:
        """Retrieve records relevant to ``query_text``; store failures propagate."""
        cached = self.cache.get(self.fetch_limit)
        records = retrieve(query_text,
                           cached.records,
                           context,
                           max_results=self.max_results,
                           strong_signal_bonus=self.strong_signal_bonus)
        inferred = infer_categories(query_text)

        logger.info(f'Retrieved {len(records)}/{len(cached.records)} records '
                    f'(inferred: {inferred}, from_cache: {cached.from_cache})')

        return RetrievalResult(records=records,
                               sources=aggregate_sources(records),
                               inferred_categories=inferred,
                               from_cache=cached.from_cache,
                               cache_age_seconds=cached.cache_age_seconds)
