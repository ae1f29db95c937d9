"""Tests for applying plan operations through the document store."""

from __future__ import annotations

import asyncio

from session_repair.schemas.operations.plan import (
    ClearError,
    DeleteMessage,
    DeletePart,
    RepairPlan,
    TouchSession,
    TruncateSession,
)
from session_repair.services.executor import PlanExecutor, scrub_message_references
from session_repair.storage.documents import DocumentStore
from tests.conftest import SESSION_ID, StoreBuilder, build_signature_session


def test_scrub_message_references() -> None:
    session = {
        'id': SESSION_ID,
        'messageOrder': ['msg_0001', 'msg_0002', 'msg_0003'],
        'messages': [{'id': 'msg_0001'}, {'id': 'msg_0003', 'role': 'assistant'}],
        'conversation': {'history': [{'messageID': 'msg_0001'}, {'messageID': 'msg_0002'}], 'mode': 'build'},
        'share': {'url': 'https://example.invalid/s/1'},
    }

    scrubbed = scrub_message_references(session, ['msg_0002', 'msg_0003'])

    assert scrubbed['messageOrder'] == ['msg_0001']
    assert scrubbed['messages'] == [{'id': 'msg_0001'}]
    assert scrubbed['conversation'] == {'history': [{'messageID': 'msg_0001'}], 'mode': 'build'}
    assert scrubbed['share'] == session['share']
    assert session['messageOrder'] == ['msg_0001', 'msg_0002', 'msg_0003']


def test_scrub_message_map_and_camel_case_history() -> None:
    session = {
        'id': SESSION_ID,
        'messages': {'msg_0001': {'role': 'user'}, 'msg_0002': {}, 'msg_0003': {'role': 'assistant'}},
        'conversation': {
            'history': [{'messageId': 'msg_0001'}, {'messageId': 'msg_0002'}, 'msg_0003', 42],
        },
    }

    scrubbed = scrub_message_references(session, ['msg_0002', 'msg_0003'])

    assert scrubbed['messages'] == {'msg_0001': {'role': 'user'}}
    assert scrubbed['conversation']['history'] == [{'messageId': 'msg_0001'}, 42]
    assert list(session['messages']) == ['msg_0001', 'msg_0002', 'msg_0003']


def test_truncation_scrubs_a_message_map_on_disk(builder: StoreBuilder) -> None:
    build_signature_session(builder)
    builder.session(
        messages={'msg_0001': {}, 'msg_0002': {}, 'msg_0003': {}},
        conversation={'history': [{'messageId': 'msg_0001'}, {'messageId': 'msg_0002'}]},
    )
    store = DocumentStore(builder.root)
    plan = RepairPlan(
        session_id=SESSION_ID,
        strategy='truncate',
        operations=[
            DeleteMessage(message_id='msg_0003'),
            TruncateSession(session_id=SESSION_ID, index=2, removed_message_ids=['msg_0003']),
        ],
        records_fixed=1,
    )

    asyncio.run(PlanExecutor(store).apply(plan))

    session = builder.read('storage/session/prj_0001/ses_0001.json')
    assert session['messages'] == {'msg_0001': {}, 'msg_0002': {}}
    assert session['conversation']['history'] == [{'messageId': 'msg_0001'}, {'messageId': 'msg_0002'}]


def test_apply_counts_only_real_changes(signature_session: StoreBuilder) -> None:
    store = DocumentStore(signature_session.root)
    plan = RepairPlan(
        session_id=SESSION_ID,
        strategy='remove-parts',
        operations=[
            DeletePart(message_id='msg_0002', part_id='prt_0002'),
            DeletePart(message_id='msg_0002', part_id='prt_0002'),
            ClearError(message_id='msg_0003'),
            ClearError(message_id='msg_0001'),  # never had an error
            TouchSession(session_id=SESSION_ID),
        ],
        records_fixed=1,
    )

    stats = asyncio.run(PlanExecutor(store).apply(plan))

    assert (stats.parts_deleted, stats.messages_deleted, stats.errors_cleared) == (1, 0, 1)


def test_reapplying_a_truncation_is_safe(signature_session: StoreBuilder) -> None:
    store = DocumentStore(signature_session.root)
    plan = RepairPlan(
        session_id=SESSION_ID,
        strategy='truncate',
        operations=[
            DeletePart(message_id='msg_0002', part_id='prt_0002'),
            DeletePart(message_id='msg_0002', part_id='prt_0003'),
            DeleteMessage(message_id='msg_0002'),
            DeleteMessage(message_id='msg_0003'),
            TruncateSession(session_id=SESSION_ID, index=1, removed_message_ids=['msg_0002', 'msg_0003']),
        ],
        records_fixed=1,
    )
    executor = PlanExecutor(store)

    first = asyncio.run(executor.apply(plan))
    second = asyncio.run(executor.apply(plan))

    assert (first.parts_deleted, first.messages_deleted) == (2, 2)
    assert (second.parts_deleted, second.messages_deleted) == (0, 0)
    assert [m.id for m in store.list_messages(SESSION_ID)] == ['msg_0001']
    assert not signature_session.exists('storage/part/msg_0002')
