"""Filesystem layer: document store, backup snapshots and session locks."""

from session_repair.storage.backups import BackupRepository
from session_repair.storage.documents import DocumentStore
from session_repair.storage.locks import SessionLockRegistry

__all__ = [
    'BackupRepository',
    'DocumentStore',
    'SessionLockRegistry',
]
