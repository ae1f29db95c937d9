"""Tests for the backup snapshot repository."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from pathlib import Path

import pytest

from session_repair.exceptions import BackupFailedError, BackupNotFoundError, SessionLockedError
from session_repair.services.repair import SessionRepairService
from session_repair.storage.backups import BackupRepository
from session_repair.storage.documents import DocumentStore
from tests.conftest import SESSION_ID, StoreBuilder


def _repository(builder: StoreBuilder) -> tuple[DocumentStore, BackupRepository]:
    store = DocumentStore(builder.root)
    return store, BackupRepository(builder.root / 'repair-backups', store)


def test_snapshot_layout(signature_session: StoreBuilder) -> None:
    store, backups = _repository(signature_session)
    targets = [
        ('session', SESSION_ID, store.find_session_path(SESSION_ID)),
        ('message', 'msg_0003', store.document_path('message', 'msg_0003', SESSION_ID)),
        ('part', 'prt_0002', store.document_path('part', 'prt_0002', 'msg_0002')),
    ]

    manifest = backups.create_snapshot(SESSION_ID, targets, 'remove-parts')

    snapshot_dir = backups.snapshot_dir(manifest.backupID)
    assert manifest.backupID.endswith(f'_session_{SESSION_ID}')
    assert manifest.backupID[:8].isdigit() and manifest.backupID[8] == 'T'
    assert sorted(p.relative_to(snapshot_dir).as_posix() for p in snapshot_dir.rglob('*.json')) == [
        'manifest.json',
        'messages/msg_0003.json',
        'parts/prt_0002.json',
        'session.json',
    ]
    assert (snapshot_dir / 'parts/prt_0002.json').read_bytes() == (
        signature_session.root / 'storage/part/msg_0002/prt_0002.json'
    ).read_bytes()


def test_absent_documents_are_removed_on_restore(signature_session: StoreBuilder) -> None:
    store, backups = _repository(signature_session)
    new_part = store.document_path('part', 'prt_0099', 'msg_0002')
    manifest = backups.create_snapshot(SESSION_ID, [('part', 'prt_0099', new_part)])
    assert manifest.documents[0].existed is False

    signature_session.part('msg_0002', 'prt_0099', 'text', text='created after the snapshot')
    backups.restore(manifest)

    assert not new_part.exists()


def test_restore_is_repeatable(signature_session: StoreBuilder) -> None:
    store, backups = _repository(signature_session)
    path = store.document_path('message', 'msg_0003', SESSION_ID)
    original = path.read_bytes()
    manifest = backups.create_snapshot(SESSION_ID, [('message', 'msg_0003', path)])

    path.unlink()
    backups.restore(manifest)
    backups.restore(manifest)

    assert path.read_bytes() == original


def test_incomplete_snapshot_is_not_listed(signature_session: StoreBuilder) -> None:
    _, backups = _repository(signature_session)
    (backups.backup_dir / f'20260101T000000.000000Z_session_{SESSION_ID}').mkdir(parents=True)

    assert backups.list_backups(SESSION_ID) == []
    with pytest.raises(BackupNotFoundError):
        backups.load_manifest(f'20260101T000000.000000Z_session_{SESSION_ID}')


class _FrozenClock:
    @staticmethod
    def now(tz=None):
        return datetime(2026, 10, 18, 10, 15, tzinfo=UTC)


def test_colliding_snapshot_keeps_the_existing_one(
    signature_session: StoreBuilder, monkeypatch: pytest.MonkeyPatch
) -> None:
    store, backups = _repository(signature_session)
    monkeypatch.setattr('session_repair.storage.backups.datetime', _FrozenClock)
    path = store.document_path('message', 'msg_0003', SESSION_ID)
    existing = backups.create_snapshot(SESSION_ID, [('message', 'msg_0003', path)])

    with pytest.raises(BackupFailedError):
        backups.create_snapshot(SESSION_ID, [('message', 'msg_0003', path)])

    assert backups.load_manifest(existing.backupID) == existing
    assert (backups.snapshot_dir(existing.backupID) / 'messages/msg_0003.json').is_file()


def test_backup_ids_cannot_escape_backup_dir(signature_session: StoreBuilder) -> None:
    _, backups = _repository(signature_session)
    with pytest.raises(BackupNotFoundError):
        backups.load_manifest('../storage')


def test_list_backups_oldest_first(signature_session: StoreBuilder, service: SessionRepairService) -> None:
    first = asyncio.run(service.repair(SESSION_ID, 'remove-parts'))
    assert first.backup_id is not None
    asyncio.run(service.restore(first.backup_id))
    second = asyncio.run(service.repair(SESSION_ID, 'truncate'))

    infos = asyncio.run(service.list_backups(SESSION_ID))

    assert [info.backup_id for info in infos] == [first.backup_id, second.backup_id]
    assert [info.strategy for info in infos] == ['remove-parts', 'truncate']
    assert (infos[0].document_count, infos[0].message_count, infos[0].part_count) == (3, 1, 1)
    assert (infos[1].document_count, infos[1].message_count, infos[1].part_count) == (5, 2, 2)
    assert asyncio.run(service.list_backups('ses_other')) == []


def test_prune_deletes_whole_snapshot(signature_session: StoreBuilder, service: SessionRepairService) -> None:
    result = asyncio.run(service.repair(SESSION_ID))
    assert result.backup_id is not None
    repaired = signature_session.snapshot()

    asyncio.run(service.prune_backup(result.backup_id))

    assert not (service.backups.backup_dir / result.backup_id).exists()
    assert signature_session.snapshot() == repaired
    with pytest.raises(BackupNotFoundError):
        asyncio.run(service.prune_backup(result.backup_id))


def test_prune_refused_while_session_locked(signature_session: StoreBuilder, service: SessionRepairService) -> None:
    result = asyncio.run(service.repair(SESSION_ID))
    assert result.backup_id is not None

    with service.locks.hold(SESSION_ID):
        with pytest.raises(SessionLockedError):
            asyncio.run(service.prune_backup(result.backup_id))
        with pytest.raises(SessionLockedError):
            asyncio.run(service.restore(result.backup_id))

    assert Path(service.backups.backup_dir / result.backup_id).is_dir()
