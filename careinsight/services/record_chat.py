"""
Record chat: answers questions about care records from retrieved records.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from ..models.core import InvalidRequestError, Record, RetrievalContext, SourceCount
from ..utils import categories as cat
from ..utils.base_llm import TextGenerator
from ..utils.categories import category_for_sheet, display_name
from ..utils.json_utils import clean_json_response, find_json_array, loads_or_none
from ..utils.logging_config import get_logger
from .relevance import RecordRetrievalService

logger = get_logger(__name__)

MAX_RECORDS_PER_CATEGORY = 10
MAX_HISTORY_TURNS = 10
MAX_SUGGESTED_QUESTIONS = 3

# Sheet template left in the notes column when staff wrote nothing
EMPTY_NOTE_TEMPLATE = '【ケアに関すること】\n\n【ACPiece】\n'

CHAT_SYSTEM_PROMPT = f"""あなたは介護施設のケア記録アシスタントです。
利用者様のケア記録データに基づいて、家族やスタッフからの質問に丁寧に回答します。

【回答のルール】
1. 必ず提供されたデータに基づいて回答してください
2. データにない情報については「記録がありません」と正直に伝えてください
3. 医療的なアドバイスは避け、事実の報告に留めてください
4. 専門用語は分かりやすく説明してください
5. 回答は200文字以内で簡潔にまとめてください

【データの種類】
{chr(10).join('- ' + name for name in cat.DISPLAY_NAMES.values())}"""


@dataclass
class ChatTurn:
    role: str  # user | assistant
    content: str


@dataclass
class ChatAnswer:
    """Generated answer plus the records it was grounded on."""
    message: str
    sources: List[SourceCount]
    suggested_questions: List[str] = field(default_factory=list)
    from_cache: bool = False
    record_count: int = 0


def _note(record: Record, width: int = 30) -> str:
    note = record.fields.get(cat.FIELD_NOTES) or ''
    if not note.strip() or note == EMPTY_NOTE_TEMPLATE:
        return ''
    return note[:width]


def _format_meal(record: Record) -> str:
    line = (f"{record.field('食事はいつのことですか？')} "
            f"主食{record.field('主食の摂取量は何割ですか？')}割 副食{record.field('副食の摂取量は何割ですか？')}割")
    snack = record.field('間食は何を食べましたか？')
    if snack:
        line += f' 間食:{snack}'
    note = _note(record)
    return f'{line} ({note})' if note else line


def _format_hydration(record: Record) -> str:
    line = f"{record.field('水分量はいくらでしたか？')}cc"
    note = _note(record)
    return f'{line} ({note})' if note else line


def _format_excretion(record: Record) -> str:
    parts = []
    if record.field(cat.FIELD_BOWEL_MOVEMENT):
        parts.append(record.field(cat.FIELD_BOWEL_MOVEMENT))
    if record.field(cat.FIELD_URINATION):
        volume = record.field(cat.FIELD_URINE_VOLUME)
        parts.append(record.field(cat.FIELD_URINATION) + (f'({volume}cc)' if volume else ''))
    note = _note(record)
    if note:
        parts.append(note)
    return ', '.join(parts)


def _format_vitals(record: Record) -> str:
    parts = []
    high, low = record.field(cat.FIELD_SYSTOLIC_BP), record.field(cat.FIELD_DIASTOLIC_BP)
    if high and low:
        parts.append(f'BP{high}/{low}')
    if record.field(cat.FIELD_BODY_TEMPERATURE):
        parts.append(f'KT{record.field(cat.FIELD_BODY_TEMPERATURE)}℃')
    if record.field(cat.FIELD_PULSE):
        parts.append(f'P{record.field(cat.FIELD_PULSE)}')
    if record.field(cat.FIELD_SPO2):
        parts.append(f'SpO2{record.field(cat.FIELD_SPO2)}%')
    return ' '.join(parts)


def _format_medication(record: Record) -> str:
    line = record.field(cat.FIELD_MEDICATION_TIME)
    if record.field(cat.FIELD_AS_NEEDED_DOSE):
        line += f' 頓服:{record.field(cat.FIELD_AS_NEEDED_DOSE)}'
    note = _note(record)
    return f'{line} ({note})' if note else line


def _format_note(record: Record) -> str:
    return _note(record, width=50)


def _format_weight(record: Record) -> str:
    weight = record.field('何キロでしたか？')
    line = f'{weight}kg' if weight else ''
    note = _note(record)
    return f'{line} ({note})' if note else line


def _format_oral_care(record: Record) -> str:
    line = record.field('口腔ケアはいつのことですか？')
    note = _note(record)
    return f'{line} ({note})' if note else line


def _format_blood_sugar(record: Record) -> str:
    parts = []
    for label, name, unit in (('測定:', '測定時間は？', ''), ('血糖値:', '血糖値は？', ''),
                              ('インスリン:', 'インスリン投与単位は？', '単位'), ('投与時間:', 'インスリン投与時間は？', '')):
        if record.field(name):
            parts.append(f'{label}{record.field(name)}{unit}')
    note = _note(record, width=20)
    if note:
        parts.append(note)
    return ' '.join(parts)


def _format_generic(record: Record) -> str:
    parts = []
    for key, value in list(record.fields.items())[:3]:
        if value:
            parts.append(f'{key}: {str(value)[:20]}')
    return ', '.join(parts)


RECORD_FORMATTERS: Dict[str, Callable[[Record], str]] = {
    cat.MEAL: _format_meal,
    cat.HYDRATION: _format_hydration,
    cat.EXCRETION: _format_excretion,
    cat.VITALS: _format_vitals,
    cat.MEDICATION: _format_medication,
    cat.NOTE: _format_note,
    cat.WEIGHT: _format_weight,
    cat.ORAL_CARE: _format_oral_care,
    cat.BLOOD_SUGAR: _format_blood_sugar,
}


def format_record(record: Record) -> str:
    """One prompt line for a record, formatted by category."""
    when = record.raw_timestamp or (record.timestamp.isoformat() if record.timestamp else '日付不明')
    formatter = RECORD_FORMATTERS.get(record.category, _format_generic)
    return f'  {when}: {formatter(record)}'


def format_records(records: Sequence[Record], focus_category: Optional[str] = None) -> str:
    """Group records by category for the prompt.

    The focused category is listed in full; otherwise each category shows
    at most ``MAX_RECORDS_PER_CATEGORY`` records and a remainder count.
    """
    if not records:
        return '該当する記録がありません。'

    grouped: Dict[str, List[Record]] = {}
    for record in records:
        grouped.setdefault(record.category, []).append(record)

    lines: List[str] = []
    if focus_category and focus_category in grouped:
        focused = grouped[focus_category]
        lines.append(f'【{display_name(focus_category)}】{len(focused)}件')
        lines.extend(format_record(r) for r in focused)
        return '\n'.join(lines)

    for category, category_records in grouped.items():
        lines.append(f'【{display_name(category)}】{len(category_records)}件')
        lines.extend(format_record(r) for r in category_records[:MAX_RECORDS_PER_CATEGORY])
        if len(category_records) > MAX_RECORDS_PER_CATEGORY:
            lines.append(f'...他{len(category_records) - MAX_RECORDS_PER_CATEGORY}件')
        lines.append('')
    return '\n'.join(lines)


def build_chat_prompt(message: str,
                      records: Sequence[Record],
                      context: Optional[RetrievalContext] = None,
                      history: Optional[Sequence[ChatTurn]] = None) -> str:
    """User prompt: viewing context, formatted records, recent turns, question."""
    context = context or RetrievalContext()
    focus = category_for_sheet(context.category)

    context_text = ''
    if context.year:
        context_text += f'{context.year}年'
        if context.month:
            context_text += f'{context.month}月'
    if focus:
        context_text += f'の「{display_name(focus)}」'
    if context_text:
        context_text = f'【表示中の記録】{context_text}のデータ\n\n'

    history_text = ''
    if history:
        history_text = '\n【これまでの会話】\n'
        for turn in list(history)[-MAX_HISTORY_TURNS:]:
            role = 'ユーザー' if turn.role == 'user' else 'アシスタント'
            history_text += f'{role}: {turn.content}\n'

    return (f'{context_text}【ケア記録データ】\n'
            f'{format_records(records, focus)}\n'
            f'{history_text}\n'
            f'【ユーザーの質問】\n{message}\n\n'
            f'上記のデータに基づいて回答してください。')


def build_follow_up_prompt(message: str, answer: str, records: Sequence[Record]) -> str:
    categories = []
    for record in records:
        if record.category not in categories:
            categories.append(record.category)
    return (f'ユーザーの質問: {message}\n'
            f'あなたの回答: {answer}\n\n'
            f"利用可能なデータ種別: {'、'.join(display_name(c) for c in categories)}\n\n"
            f'上記の会話に基づいて、ユーザーが次に興味を持ちそうな質問を{MAX_SUGGESTED_QUESTIONS}つ提案してください。\n'
            f'JSONの配列形式で出力してください。\n'
            f'例: ["質問1", "質問2", "質問3"]')


def parse_follow_ups(response_text: Optional[str]) -> List[str]:
    """Suggested questions from a JSON array response; empty when unreadable."""
    parsed = loads_or_none(find_json_array(clean_json_response(response_text or '')) or '')
    if not isinstance(parsed, list):
        return []
    questions = [str(q).strip() for q in parsed if isinstance(q, str) and q.strip()]
    return questions[:MAX_SUGGESTED_QUESTIONS]


class RecordChatError(Exception):
    """Custom exception for record chat errors."""
    pass


class RecordChatService:
    """Answers a question using cached records, relevance retrieval and one generation call."""

    def __init__(self, retrieval: RecordRetrievalService, llm: TextGenerator, suggest_follow_ups: bool = True):
        self.retrieval = retrieval
        self.llm = llm
        self.suggest_follow_ups = suggest_follow_ups

    def answer(self,
               message: str,
               context: Optional[RetrievalContext] = None,
               history: Optional[Sequence[ChatTurn]] = None) -> ChatAnswer:
        """
        Answer a question about the care records.

        Args:
            message: The user's question
            context: Category/year/month currently on screen
            history: Earlier turns of this conversation

        Returns:
            ChatAnswer with cited sources and up to three follow-up questions

        Raises:
            InvalidRequestError: Empty message
            RecordChatError: Record fetch or answer generation failed
        """
        if not message or not message.strip():
            raise InvalidRequestError('message is required')

        try:
            retrieved = self.retrieval.search(message, context)
        except Exception as e:
            logger.error(f'Record retrieval failed: {e}')
            raise RecordChatError(f'Record retrieval failed: {e}') from e

        prompt = build_chat_prompt(message, retrieved.records, context, history)
        try:
            reply = self.llm.generate(prompt, system_prompt=CHAT_SYSTEM_PROMPT).strip()
        except Exception as e:
            logger.error(f'Answer generation failed: {e}')
            raise RecordChatError(f'Answer generation failed: {e}') from e

        suggestions: List[str] = []
        if self.suggest_follow_ups:
            try:
                suggestions = parse_follow_ups(self.llm.generate(build_follow_up_prompt(message, reply, retrieved.records)))
            except Exception as e:
                logger.warning(f'Follow-up question generation failed: {e}')

        logger.info(f'Answered record question ({len(retrieved.records)} records, '
                    f'{len(suggestions)} follow-ups, from_cache: {retrieved.from_cache})')

        return ChatAnswer(message=reply,
                          sources=retrieved.sources,
                          suggested_questions=suggestions,
                          from_cache=retrieved.from_cache,
                          record_count=len(retrieved.records))
