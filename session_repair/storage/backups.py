"""
Backup snapshot repository.

Layout:

    repair-backups/{timestamp}_session_{sessionID}/
        session.json
        messages/{messageID}.json
        parts/{partID}.json
        manifest.json

The timestamp is ISO 8601 basic format in UTC (20261018T101500.123456Z),
which sorts chronologically and is a valid path component on every platform.

Snapshots are append-only: once manifest.json exists the directory is never
modified again, only read (restore) or deleted as a whole (prune). The
manifest is written last, so a directory without one is an incomplete
snapshot and is never listed or restored.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import TypeAlias

import pydantic

from session_repair.exceptions import BackupFailedError, BackupNotFoundError, StoreIOError
from session_repair.schemas.documents import DocumentKind
from session_repair.schemas.operations.backup import BackupDocument, BackupInfo, BackupManifest
from session_repair.storage.documents import DocumentStore, atomic_write_bytes

__all__ = [
    'BackupRepository',
    'SnapshotTarget',
]

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = 'manifest.json'

# (kind, id, absolute path in the store)
SnapshotTarget: TypeAlias = tuple[DocumentKind, str, Path]


class BackupRepository:
    """Creates, lists, restores and prunes backup snapshots."""

    def __init__(self, backup_dir: Path, store: DocumentStore) -> None:
        self.backup_dir = backup_dir
        self.store = store

    def snapshot_dir(self, backup_id: str) -> Path:
        if not backup_id or '/' in backup_id or '\\' in backup_id or backup_id in ('.', '..'):
            raise BackupNotFoundError(backup_id)
        return self.backup_dir / backup_id

    def create_snapshot(
        self,
        session_id: str,
        targets: Sequence[SnapshotTarget],
        strategy: str | None = None,
        known_good_before: str | None = None,
    ) -> BackupManifest:
        """
        Copy every target document into a new snapshot directory.

        Documents that do not exist yet are recorded with existed=False so a
        restore can remove them again.

        Raises:
            BackupFailedError: If anything could not be written. The partial
                snapshot directory is removed; the store has not been touched.
        """
        created_at = datetime.now(UTC)
        backup_id = f'{created_at.strftime("%Y%m%dT%H%M%S.%fZ")}_session_{session_id}'
        snapshot_dir = self.snapshot_dir(backup_id)
        created = False

        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            snapshot_dir.mkdir()
            created = True

            documents: list[BackupDocument] = []
            for kind, doc_id, path in targets:
                data = self.store.read_raw(path)
                if data is not None:
                    atomic_write_bytes(snapshot_dir / _snapshot_name(kind, doc_id), data)
                documents.append(
                    BackupDocument(
                        kind=kind,
                        id=doc_id,
                        originalPath=self.store.relative_path(path),
                        existed=data is not None,
                    )
                )

            manifest = BackupManifest(
                backupID=backup_id,
                sessionID=session_id,
                createdAt=created_at,
                documents=documents,
                strategy=strategy,
                knownGoodBefore=known_good_before,
            )
            # Manifest last: its presence marks the snapshot complete
            atomic_write_bytes(snapshot_dir / MANIFEST_FILENAME, manifest.model_dump_json(indent=2).encode('utf-8'))
        except (OSError, StoreIOError, ValueError) as e:
            if created:
                shutil.rmtree(snapshot_dir, ignore_errors=True)
            raise BackupFailedError(session_id, e) from e

        logger.info(f'Snapshot {backup_id}: {len(documents)} documents')
        return manifest

    def load_manifest(self, backup_id: str) -> BackupManifest:
        """
        Raises:
            BackupNotFoundError: If the snapshot or its manifest is missing
        """
        manifest_path = self.snapshot_dir(backup_id) / MANIFEST_FILENAME
        try:
            raw = manifest_path.read_bytes()
        except FileNotFoundError as e:
            raise BackupNotFoundError(backup_id) from e
        except OSError as e:
            raise StoreIOError('read', str(manifest_path), e) from e

        try:
            return BackupManifest.model_validate_json(raw)
        except pydantic.ValidationError as e:
            raise StoreIOError('parse', str(manifest_path), e) from e

    def restore(self, manifest: BackupManifest) -> list[str]:
        """
        Put every snapshotted document back at its original path, byte for byte.

        Documents recorded as absent before the repair are deleted. Safe to
        call repeatedly: each step is an atomic write or an idempotent delete.

        Returns:
            Relative paths that were restored or removed
        """
        snapshot_dir = self.snapshot_dir(manifest.backupID)
        restored: list[str] = []

        for document in manifest.documents:
            target = self.store.resolve_relative(document.originalPath)
            if document.existed:
                source = snapshot_dir / _snapshot_name(document.kind, document.id)
                try:
                    data = source.read_bytes()
                except OSError as e:
                    raise StoreIOError('read', str(source), e) from e
                self.store.write_raw(target, data)
            else:
                self.store.delete_path(target)
            restored.append(document.originalPath)

        logger.info(f'Restored {len(restored)} documents from {manifest.backupID}')
        return restored

    def list_backups(self, session_id: str) -> list[BackupInfo]:
        """Complete snapshots for a session, oldest first."""
        if not self.backup_dir.exists():
            return []

        infos: list[BackupInfo] = []
        for path in sorted(self.backup_dir.glob(f'*_session_{session_id}')):
            if not (path / MANIFEST_FILENAME).is_file():
                continue
            manifest = self.load_manifest(path.name)
            kinds = [d.kind for d in manifest.documents]
            infos.append(
                BackupInfo(
                    backup_id=manifest.backupID,
                    session_id=manifest.sessionID,
                    created_at=manifest.createdAt,
                    document_count=len(manifest.documents),
                    message_count=kinds.count('message'),
                    part_count=kinds.count('part'),
                    strategy=manifest.strategy,
                    path=str(path),
                )
            )

        infos.sort(key=lambda info: info.created_at)
        return infos

    def known_good_floor(self, session_id: str) -> str | None:
        """
        Latest known-good boundary recorded by any repair of the session.

        Messages with a smaller id held reasoning the provider had already
        accepted when the repair ran. The boundary outlives the error
        descriptor that established it, which a remove-parts repair clears.
        """
        if not self.backup_dir.exists():
            return None

        floors: list[str] = []
        for path in self.backup_dir.glob(f'*_session_{session_id}'):
            if not (path / MANIFEST_FILENAME).is_file():
                continue
            manifest = self.load_manifest(path.name)
            if manifest.knownGoodBefore is not None:
                floors.append(manifest.knownGoodBefore)
        return max(floors, default=None)

    def prune(self, backup_id: str) -> None:
        """Delete a whole snapshot."""
        snapshot_dir = self.snapshot_dir(backup_id)
        if not snapshot_dir.is_dir():
            raise BackupNotFoundError(backup_id)
        try:
            shutil.rmtree(snapshot_dir)
        except OSError as e:
            raise StoreIOError('delete', str(snapshot_dir), e) from e
        logger.info(f'Pruned backup {backup_id}')


def _snapshot_name(kind: DocumentKind, doc_id: str) -> str:
    match kind:
        case 'session':
            return 'session.json'
        case 'message':
            return f'messages/{doc_id}.json'
        case 'part':
            return f'parts/{doc_id}.json'
