"""Tests for the validation verifier."""

from __future__ import annotations

from session_repair.services.scanner import IntegrityScanner
from session_repair.services.verifier import ValidationVerifier
from session_repair.storage.documents import DocumentStore
from tests.conftest import CLAUDE, SESSION_ID, StoreBuilder


def _verifier(builder: StoreBuilder) -> ValidationVerifier:
    store = DocumentStore(builder.root)
    return ValidationVerifier(store, IntegrityScanner(store))


def _clean_session(builder: StoreBuilder) -> None:
    builder.session()
    builder.message('msg_0001', 'user')
    builder.part('msg_0001', 'prt_0001', 'text', text='hi')
    builder.message('msg_0002', 'assistant', model=CLAUDE)
    builder.part('msg_0002', 'prt_0002', 'reasoning')
    builder.part('msg_0002', 'prt_0003', 'text', text='hello')


def test_clean_session_verifies(builder: StoreBuilder) -> None:
    _clean_session(builder)

    result = _verifier(builder).verify(SESSION_ID)

    assert result.ok
    assert list(result.problems) == []
    assert result.remaining_records == 0


def test_remaining_corruption_fails(signature_session: StoreBuilder) -> None:
    result = _verifier(signature_session).verify(SESSION_ID)

    assert not result.ok
    assert result.remaining_records == 1
    assert 'definite corruption remains at index 1: part prt_0002' in result.problems


def test_known_good_records_are_accepted(signature_session: StoreBuilder) -> None:
    result = _verifier(signature_session).verify(SESSION_ID, known_good_before=2)
    assert result.ok


def test_part_pointing_at_another_message_fails(builder: StoreBuilder) -> None:
    _clean_session(builder)
    builder.part('msg_0002', 'prt_0004', 'text', text='stray', messageID='msg_9999')

    result = _verifier(builder).verify(SESSION_ID)

    assert not result.ok
    assert 'part prt_0004 references missing message msg_9999' in result.problems


def test_message_of_another_session_fails(builder: StoreBuilder) -> None:
    _clean_session(builder)
    builder.message('msg_0003', 'user')
    path = builder.root / 'storage/message/ses_0001/msg_0003.json'
    path.write_text(path.read_text().replace('"ses_0001"', '"ses_other"'))

    result = _verifier(builder).verify(SESSION_ID)

    assert 'message msg_0003 belongs to session ses_other' in result.problems


def test_leftover_parts_of_removed_message_fail(builder: StoreBuilder) -> None:
    _clean_session(builder)
    builder.part('msg_0009', 'prt_0009', 'text', text='orphan')

    result = _verifier(builder).verify(SESSION_ID, removed_message_ids=['msg_0009'])

    assert not result.ok
    assert '1 parts of removed message msg_0009 remain' in result.problems


def test_out_of_order_message_ids_fail(builder: StoreBuilder) -> None:
    _clean_session(builder)
    # File name sorts last but the document claims an earlier id
    path = builder.message('msg_0003', 'user')
    path.write_text(path.read_text().replace('"msg_0003"', '"msg_0000"'))

    result = _verifier(builder).verify(SESSION_ID)

    assert 'message order broken at msg_0002 -> msg_0000' in result.problems


def test_verifier_never_writes(signature_session: StoreBuilder) -> None:
    before = signature_session.snapshot()
    _verifier(signature_session).verify(SESSION_ID)
    assert signature_session.snapshot() == before
