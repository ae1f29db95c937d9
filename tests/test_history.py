"""Tests for request-history reconstruction (error index -> stored message/part)."""

from __future__ import annotations

from session_repair.schemas.documents import MessageDocument, PartDocument
from session_repair.schemas.operations.scan import HistoryPolicy
from session_repair.services.history import content_parts, map_request_reference, request_history


def _message(message_id: str, role: str, error: bool = False) -> MessageDocument:
    data: dict[str, object] = {'id': message_id, 'sessionID': 'ses_0001', 'role': role}
    if error:
        data['error'] = {'name': 'APIError', 'data': {'message': 'Invalid `signature` in `thinking` block'}}
    return MessageDocument.model_validate(data)


def _part(message_id: str, part_id: str, type: str) -> PartDocument:
    return PartDocument.model_validate({'id': part_id, 'messageID': message_id, 'type': type})


# 0 user, 1 system, 2 assistant (step-start, reasoning, text), 3 assistant (failed), 4 user, 5 assistant (failing turn)
MESSAGES = [
    _message('msg_0', 'user'),
    _message('msg_1', 'system'),
    _message('msg_2', 'assistant'),
    _message('msg_3', 'assistant', error=True),
    _message('msg_4', 'user'),
    _message('msg_5', 'assistant', error=True),
]
PARTS = {
    'msg_0': [_part('msg_0', 'prt_00', 'text')],
    'msg_1': [_part('msg_1', 'prt_10', 'text')],
    'msg_2': [
        _part('msg_2', 'prt_20', 'step-start'),
        _part('msg_2', 'prt_21', 'reasoning'),
        _part('msg_2', 'prt_22', 'text'),
        _part('msg_2', 'prt_23', 'step-finish'),
    ],
    'msg_4': [_part('msg_4', 'prt_40', 'text')],
}


def test_content_parts_skip_bookkeeping_types() -> None:
    parts = content_parts(PARTS['msg_2'], HistoryPolicy())
    assert [p.id for p in parts] == ['prt_21', 'prt_22']


def test_request_history_skips_system_and_failed_turns() -> None:
    assert request_history(MESSAGES, PARTS, 5, HistoryPolicy()) == [0, 2, 4]


def test_request_history_excludes_the_failing_message_itself() -> None:
    assert request_history(MESSAGES, PARTS, 2, HistoryPolicy()) == [0]


def test_request_history_follows_policy() -> None:
    policy = HistoryPolicy(skip_system_messages=False, skip_errored_assistant=False)
    assert request_history(MESSAGES, PARTS, 5, policy) == [0, 1, 2, 3, 4]

    # msg_3 has no parts at all
    policy = HistoryPolicy(skip_errored_assistant=False, skip_empty_messages=True)
    assert request_history(MESSAGES, PARTS, 5, policy) == [0, 2, 4]


def test_map_resolves_message_and_content_part() -> None:
    position, part = map_request_reference(MESSAGES, PARTS, 5, 1, 0, HistoryPolicy())
    assert position == 2
    assert part is not None and part.id == 'prt_21'


def test_map_counts_system_messages_when_policy_keeps_them() -> None:
    position, part = map_request_reference(MESSAGES, PARTS, 5, 1, 0, HistoryPolicy(skip_system_messages=False))
    assert position == 1
    assert part is not None and part.id == 'prt_10'


def test_map_content_index_out_of_range_resolves_message_only() -> None:
    assert map_request_reference(MESSAGES, PARTS, 5, 1, 2, HistoryPolicy()) == (2, None)


def test_map_request_index_out_of_range_resolves_nothing() -> None:
    assert map_request_reference(MESSAGES, PARTS, 5, 3, 0, HistoryPolicy()) == (None, None)
    assert map_request_reference(MESSAGES, PARTS, 5, -1, 0, HistoryPolicy()) == (None, None)
