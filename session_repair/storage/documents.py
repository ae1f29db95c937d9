"""
Document store accessor - the three OpenCode document collections on disk.

Layout under the data directory:

    storage/session/{projectID}/{sessionID}.json
    storage/message/{sessionID}/{messageID}.json
    storage/part/{messageID}/{partID}.json

Every write is atomic: the document is written to a temporary file in the
target directory, fsynced, then renamed over the original, so a reader
never observes a partially written document. Deleting an absent document
succeeds, which makes re-applying a partially applied plan safe.

This module and storage/backups.py are the only places that touch the
filesystem. Nothing here recovers from failures: errors surface as
StoreIOError (or SessionNotFoundError for an unknown session id).
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any, TypeVar

import pydantic

from session_repair.exceptions import SessionNotFoundError, StoreIOError
from session_repair.schemas.documents import (
    DocumentKind,
    MessageDocument,
    PartDocument,
    SessionDocument,
)

__all__ = [
    'DocumentStore',
    'atomic_write_bytes',
]

logger = logging.getLogger(__name__)

M = TypeVar('M', bound=pydantic.BaseModel)

# Collection directory and the field holding the parent id, per document kind
_COLLECTIONS: dict[DocumentKind, tuple[str, str]] = {
    'session': ('session', 'projectID'),
    'message': ('message', 'sessionID'),
    'part': ('part', 'messageID'),
}


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """
    Write bytes to path via temp file + fsync + rename.

    Raises:
        StoreIOError: If any step fails (the temp file is removed)
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f'.{path.name}.', suffix='.tmp')
    except OSError as e:
        raise StoreIOError('write', str(path), e) from e

    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except OSError as e:
        tmp_path.unlink(missing_ok=True)
        raise StoreIOError('write', str(path), e) from e


def encode_document(content: Mapping[str, Any]) -> bytes:
    """Serialize a document the way the front-end application does (2-space JSON)."""
    return json.dumps(content, indent=2, ensure_ascii=False).encode('utf-8')


class DocumentStore:
    """Read/list/write/delete access to sessions, messages and parts."""

    def __init__(self, data_dir: Path) -> None:
        """
        Initialize document store.

        Args:
            data_dir: Directory containing storage/ (and repair-backups/)

        Raises:
            ValueError: If data_dir/storage doesn't exist (fail-fast)
        """
        self.data_dir = data_dir.resolve()
        self.storage_dir = self.data_dir / 'storage'

        if not self.storage_dir.is_dir():
            raise ValueError(f'Storage directory does not exist: {self.storage_dir}')

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def collection_dir(self, kind: DocumentKind) -> Path:
        return self.storage_dir / _COLLECTIONS[kind][0]

    def document_path(self, kind: DocumentKind, doc_id: str, parent_id: str | None = None) -> Path:
        """
        Absolute path of a document.

        Without parent_id the collection is searched for the id; a document
        that cannot be found yields a path whose parent directory is unknown,
        so callers that may create documents should always pass parent_id.
        """
        _check_id(doc_id)
        if parent_id is not None:
            _check_id(parent_id)
            return self.collection_dir(kind) / parent_id / f'{doc_id}.json'

        located = self._locate(kind, doc_id)
        if located is None:
            raise StoreIOError('locate', f'{kind}/{doc_id}', FileNotFoundError(doc_id))
        return located

    def relative_path(self, path: Path) -> str:
        """Path relative to the data directory, as recorded in backup manifests."""
        return path.relative_to(self.data_dir).as_posix()

    def resolve_relative(self, relative: str) -> Path:
        """Inverse of relative_path, refusing paths that escape the data directory."""
        path = (self.data_dir / relative).resolve()
        if not path.is_relative_to(self.data_dir):
            raise StoreIOError('resolve', relative, ValueError('path escapes data directory'))
        return path

    def _locate(self, kind: DocumentKind, doc_id: str) -> Path | None:
        collection = self.collection_dir(kind)
        if not collection.exists():
            return None
        for parent in collection.iterdir():
            candidate = parent / f'{doc_id}.json'
            if candidate.is_file():
                return candidate
        return None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read_json(self, path: Path) -> dict[str, Any]:
        """Load one document as a raw mapping."""
        try:
            data = json.loads(path.read_bytes())
        except (OSError, json.JSONDecodeError) as e:
            raise StoreIOError('read', str(path), e) from e
        if not isinstance(data, dict):
            raise StoreIOError('read', str(path), ValueError('document is not a JSON object'))
        return data

    def read_raw(self, path: Path) -> bytes | None:
        """Exact bytes of a document, or None if it does not exist."""
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreIOError('read', str(path), e) from e

    def read_session(self, session_id: str) -> SessionDocument:
        path = self.find_session_path(session_id)
        if path is None:
            raise SessionNotFoundError(session_id)
        return _validate(SessionDocument, self.read_json(path), path)

    def find_session_path(self, session_id: str) -> Path | None:
        _check_id(session_id)
        return self._locate('session', session_id)

    def read_message(self, session_id: str, message_id: str) -> MessageDocument:
        path = self.document_path('message', message_id, session_id)
        return _validate(MessageDocument, self.read_json(path), path)

    def read_part(self, message_id: str, part_id: str) -> PartDocument:
        path = self.document_path('part', part_id, message_id)
        return _validate(PartDocument, self.read_json(path), path)

    def list_messages(self, session_id: str) -> list[MessageDocument]:
        """All messages of a session in stored order (ascending message id)."""
        directory = self.collection_dir('message') / session_id
        return [_validate(MessageDocument, self.read_json(p), p) for p in _sorted_json_files(directory)]

    def list_parts(self, message_id: str) -> list[PartDocument]:
        """All parts of a message in stored order (ascending part id)."""
        directory = self.collection_dir('part') / message_id
        return [_validate(PartDocument, self.read_json(p), p) for p in _sorted_json_files(directory)]

    def iter_session_ids(self) -> Iterator[str]:
        """Ids of every session document across all projects, sorted."""
        directory = self.collection_dir('session')
        if not directory.exists():
            return
        paths = sorted(directory.glob('*/*.json'), key=lambda p: p.stem)
        for path in paths:
            if not path.name.startswith('.'):
                yield path.stem

    def iter_message_locations(self) -> Iterator[tuple[str, str]]:
        """(session id, message id) of every stored message, sorted by message id."""
        directory = self.collection_dir('message')
        if not directory.exists():
            return
        paths = sorted(directory.glob('*/*.json'), key=lambda p: p.stem)
        for path in paths:
            if not path.name.startswith('.'):
                yield path.parent.name, path.stem

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def write_document(self, kind: DocumentKind, doc_id: str, content: Mapping[str, Any]) -> Path:
        """
        Atomically replace (or create) a document.

        The parent directory comes from the document's own parent-id field
        (projectID, sessionID or messageID).
        """
        parent_field = _COLLECTIONS[kind][1]
        parent_id = content.get(parent_field)
        if content.get('id') != doc_id or not isinstance(parent_id, str):
            raise StoreIOError(
                'write', f'{kind}/{doc_id}', ValueError(f'document must carry id={doc_id!r} and {parent_field}')
            )
        path = self.document_path(kind, doc_id, parent_id)
        atomic_write_bytes(path, encode_document(content))
        logger.debug(f'Wrote {self.relative_path(path)}')
        return path

    def replace_document(self, path: Path, content: Mapping[str, Any]) -> None:
        """Atomically rewrite an existing document in place, wherever it lives."""
        if not path.is_relative_to(self.storage_dir):
            raise StoreIOError('write', str(path), ValueError('path is outside the store'))
        atomic_write_bytes(path, encode_document(content))
        logger.debug(f'Wrote {self.relative_path(path)}')

    def write_raw(self, path: Path, data: bytes) -> None:
        """Atomically put exact bytes back at a document path (used by restore)."""
        atomic_write_bytes(path, data)

    def delete_document(self, kind: DocumentKind, doc_id: str, parent_id: str | None = None) -> bool:
        """
        Delete a document. An absent document counts as success.

        Returns:
            True if a file was removed, False if it was already absent
        """
        if parent_id is None:
            _check_id(doc_id)
            path = self._locate(kind, doc_id)
            if path is None:
                return False
        else:
            path = self.document_path(kind, doc_id, parent_id)
        return self.delete_path(path)

    def delete_path(self, path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StoreIOError('delete', str(path), e) from e
        logger.debug(f'Deleted {path}')
        return True

    def remove_empty_dir(self, kind: DocumentKind, parent_id: str) -> None:
        """Remove a collection subdirectory if nothing is left in it."""
        _check_id(parent_id)
        directory = self.collection_dir(kind) / parent_id
        try:
            directory.rmdir()
        except FileNotFoundError:
            pass
        except OSError:
            # Not empty - leave it (temp files of concurrent writers, foreign files)
            logger.debug(f'Keeping non-empty directory {directory}')


def _check_id(doc_id: str) -> None:
    """Ids become path components - refuse anything that could traverse."""
    if not doc_id or '/' in doc_id or '\\' in doc_id or doc_id in ('.', '..'):
        raise StoreIOError('resolve', repr(doc_id), ValueError('invalid document id'))


def _sorted_json_files(directory: Path) -> list[Path]:
    if not directory.exists():
        return []
    try:
        return sorted(p for p in directory.iterdir() if p.suffix == '.json' and not p.name.startswith('.'))
    except OSError as e:
        raise StoreIOError('list', str(directory), e) from e


def _validate(model: type[M], data: dict[str, Any], path: Path) -> M:
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        raise StoreIOError('parse', str(path), e) from e
