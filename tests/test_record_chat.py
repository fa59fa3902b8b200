import pytest

from careinsight.models.core import InvalidRequestError, RetrievalContext
from careinsight.services.record_cache import RecordCache
from careinsight.services.record_chat import (CHAT_SYSTEM_PROMPT, MAX_RECORDS_PER_CATEGORY, ChatTurn, RecordChatError,
                                              RecordChatService, build_chat_prompt, format_record, format_records,
                                              parse_follow_ups)
from careinsight.services.record_store import RecordStoreError
from careinsight.services.relevance import RecordRetrievalService
from careinsight.utils import categories as cat
from conftest import FakeRecordStore, FakeTextGenerator, make_record


@pytest.fixture
def store():
    return FakeRecordStore([
        make_record(cat.MEDICATION, '2025-06-01 21:00', {cat.FIELD_MEDICATION_TIME: '夕食後', cat.FIELD_AS_NEEDED_DOSE: '21:00'}),
        make_record(cat.EXCRETION, '2025-06-02 07:00', {cat.FIELD_BOWEL_MOVEMENT: 'あり'}),
        make_record(cat.VITALS, '2025-06-01 09:00', {
            cat.FIELD_SYSTOLIC_BP: '132',
            cat.FIELD_DIASTOLIC_BP: '80',
            cat.FIELD_BODY_TEMPERATURE: '36.5',
        }),
    ])


def make_service(store, llm, clock):
    return RecordChatService(RecordRetrievalService(RecordCache(store, clock=clock)), llm)


def test_answer_with_sources_and_follow_ups(store, clock):
    llm = FakeTextGenerator(['6月1日21時に頓服を服用され、翌朝排便がありました。',
                             '```json\n["翌週の排便状況は？", "頓服の頻度は？", "食事量は？", "四つ目"]\n```'])
    service = make_service(store, llm, clock)

    answer = service.answer('頓服を飲んだ後の排便は？')

    assert answer.message.startswith('6月1日21時')
    assert answer.suggested_questions == ['翌週の排便状況は？', '頓服の頻度は？', '食事量は？']
    assert {s.category for s in answer.sources} == {cat.MEDICATION, cat.EXCRETION}
    assert llm.system_prompts[0] == CHAT_SYSTEM_PROMPT
    assert '頓服:21:00' in llm.prompts[0]


def test_unreadable_follow_ups_are_ignored(store, clock):
    llm = FakeTextGenerator(['回答です。', '質問はありません'])
    answer = make_service(store, llm, clock).answer('バイタルは？')

    assert answer.message == '回答です。'
    assert answer.suggested_questions == []


def test_empty_message_is_rejected(store, clock):
    llm = FakeTextGenerator()
    with pytest.raises(InvalidRequestError):
        make_service(store, llm, clock).answer('   ')
    assert store.fetch_calls == 0


def test_store_failure_raises_chat_error(store, clock):
    store.fail_with = RecordStoreError('unavailable')
    with pytest.raises(RecordChatError):
        make_service(store, FakeTextGenerator(), clock).answer('排便は？')


def test_format_vitals_line(store):
    assert format_record(store.records[2]) == '  2025/06/01 09:00:00: BP132/80 KT36.5℃'


def test_format_records_caps_each_category():
    records = [make_record(cat.EXCRETION, f'2025-06-{day:02d} 07:00', {cat.FIELD_BOWEL_MOVEMENT: 'あり'})
               for day in range(1, 14)]

    text = format_records(records)

    assert text.startswith('【排便・排尿】13件')
    assert f'...他{13 - MAX_RECORDS_PER_CATEGORY}件' in text


def test_empty_note_template_is_hidden():
    record = make_record(cat.HYDRATION, '2025-06-01 10:00', {
        '水分量はいくらでしたか？': '200',
        cat.FIELD_NOTES: '【ケアに関すること】\n\n【ACPiece】\n',
    })
    assert format_record(record) == '  2025/06/01 10:00:00: 200cc'


def test_prompt_includes_context_and_recent_history(store):
    history = [ChatTurn(role='user' if i % 2 == 0 else 'assistant', content=f'turn{i}') for i in range(12)]

    prompt = build_chat_prompt('体温は？', store.records, RetrievalContext(category='バイタル', year=2025, month=6),
                               history)

    assert '【表示中の記録】2025年6月の「バイタル」のデータ' in prompt
    assert 'turn0' not in prompt
    assert 'turn2' in prompt
    assert 'アシスタント: turn11' in prompt


def test_parse_follow_ups_rejects_objects():
    assert parse_follow_ups('{"q": "x"}') == []
    assert parse_follow_ups(None) == []
