"""
Plan executor - applies a RepairPlan's operations through the document store.

Each operation is one atomic write or one idempotent delete. Between
operations the executor yields to the event loop, which is where a pending
cancellation lands: never in the middle of a write. Rollback is not handled
here; the transaction manager wraps apply().
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import attrs

from session_repair.exceptions import SessionNotFoundError
from session_repair.protocols import LoggerProtocol, NullLogger
from session_repair.schemas.operations.plan import (
    ClearError,
    DeleteMessage,
    DeletePart,
    EditOperation,
    RepairPlan,
    TouchSession,
    TruncateSession,
)
from session_repair.storage.documents import DocumentStore

__all__ = [
    'ApplyStats',
    'PlanExecutor',
    'scrub_message_references',
]

# Session-level fields some front-end versions keep that list message ids
_MESSAGE_REFERENCE_FIELDS = ('messageOrder', 'messages')
# Keys under which a history or message entry object names its message
_ENTRY_ID_KEYS = ('id', 'messageID', 'messageId')


@attrs.define
class ApplyStats:
    """Counts of what an applied plan actually changed."""

    parts_deleted: int = 0
    messages_deleted: int = 0
    errors_cleared: int = 0


def now_ms() -> int:
    return int(datetime.now(UTC).timestamp() * 1000)


def scrub_message_references(session: dict[str, Any], removed: Sequence[str]) -> dict[str, Any]:
    """
    Copy of a raw session document without references to removed message ids.

    Covers messageOrder and messages, either as id lists or as maps keyed by
    message id, and conversation.history entries, which may be bare ids or
    objects carrying the id under any of _ENTRY_ID_KEYS.
    """
    removed_ids = set(removed)

    def keep(entry: Any) -> bool:
        if isinstance(entry, str):
            return entry not in removed_ids
        if isinstance(entry, dict):
            return not any(entry.get(key) in removed_ids for key in _ENTRY_ID_KEYS)
        return True

    scrubbed = dict(session)
    for field in _MESSAGE_REFERENCE_FIELDS:
        value = scrubbed.get(field)
        if isinstance(value, list):
            scrubbed[field] = [entry for entry in value if keep(entry)]
        elif isinstance(value, dict):
            scrubbed[field] = {key: entry for key, entry in value.items() if key not in removed_ids and keep(entry)}

    conversation = scrubbed.get('conversation')
    if isinstance(conversation, dict) and isinstance(conversation.get('history'), list):
        scrubbed['conversation'] = {
            **conversation,
            'history': [entry for entry in conversation['history'] if keep(entry)],
        }
    return scrubbed


class PlanExecutor:
    """Applies plan operations in order, one filesystem mutation at a time."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def apply(self, plan: RepairPlan, logger: LoggerProtocol | None = None) -> ApplyStats:
        """
        Apply every operation of the plan.

        Raises:
            StoreIOError: If a write or delete fails (caller rolls back)
            asyncio.CancelledError: At the checkpoint after the current operation
        """
        logger = logger or NullLogger()
        stats = ApplyStats()
        for operation in plan.operations:
            await logger.info(self._apply_one(plan.session_id, operation, stats))
            await asyncio.sleep(0)  # Cancellation checkpoint between atomic writes
        return stats

    def _apply_one(self, session_id: str, operation: EditOperation, stats: ApplyStats) -> str:
        match operation:
            case DeletePart(message_id=message_id, part_id=part_id):
                if self.store.delete_document('part', part_id, message_id):
                    stats.parts_deleted += 1
                return f'Deleted part {part_id} of message {message_id}'

            case DeleteMessage(message_id=message_id):
                if self.store.delete_document('message', message_id, session_id):
                    stats.messages_deleted += 1
                self.store.remove_empty_dir('part', message_id)
                return f'Deleted message {message_id}'

            case ClearError(message_id=message_id):
                path = self.store.document_path('message', message_id, session_id)
                content = self.store.read_json(path)
                if content.pop('error', None) is not None:
                    self.store.replace_document(path, content)
                    stats.errors_cleared += 1
                return f'Cleared error on message {message_id}'

            case TruncateSession(session_id=target, index=index, removed_message_ids=removed):
                path = self._session_path(target)
                content = scrub_message_references(self.store.read_json(path), removed)
                self.store.replace_document(path, _touched(content))
                return f'Truncated session {target} at message index {index}'

            case TouchSession(session_id=target):
                path = self._session_path(target)
                self.store.replace_document(path, _touched(self.store.read_json(path)))
                return f'Updated timestamp of session {target}'

        raise AssertionError(f'Unhandled operation: {operation!r}')

    def _session_path(self, session_id: str) -> Path:
        path = self.store.find_session_path(session_id)
        if path is None:
            raise SessionNotFoundError(session_id)
        return path


def _touched(session: dict[str, Any]) -> dict[str, Any]:
    time = session.get('time')
    time = dict(time) if isinstance(time, dict) else {}
    time['updated'] = now_ms()
    return {**session, 'time': time}
