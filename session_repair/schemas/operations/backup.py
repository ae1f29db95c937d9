"""
Backup snapshot schemas.

Manifest layout (manifest.json), using the on-disk key names:

    {backupID, sessionID, createdAt, documents: [{kind, id, originalPath}]}
"""

from __future__ import annotations

from collections.abc import Sequence

from session_repair.schemas.base import JsonDatetime, PathStr, StrictModel
from session_repair.schemas.documents import DocumentKind


class BackupDocument(StrictModel):
    """One snapshotted document and where it came from."""

    kind: DocumentKind
    id: str
    originalPath: PathStr  # Relative to the store's data directory
    existed: bool = True  # False = absent before repair; restore removes it


class BackupManifest(StrictModel):
    """manifest.json - written last, so its presence marks a complete snapshot."""

    backupID: str
    sessionID: str
    createdAt: JsonDatetime
    documents: Sequence[BackupDocument]
    strategy: str | None = None
    knownGoodBefore: str | None = None  # Message id; reasoning in earlier messages was accepted by the provider


class BackupInfo(StrictModel):
    """Listing entry for a session's backups."""

    backup_id: str
    session_id: str
    created_at: JsonDatetime
    document_count: int
    message_count: int
    part_count: int
    strategy: str | None
    path: PathStr
