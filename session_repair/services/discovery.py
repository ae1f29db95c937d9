"""
Session discovery service - finds sessions in the store.

Resolves session ids, session id prefixes and message ids to sessions, and
walks every session for symptom markers (messages whose stored error is a
signature rejection).
"""

from __future__ import annotations

from collections.abc import AsyncIterator

from session_repair.exceptions import AmbiguousSessionError, SessionNotFoundError, StoreIOError
from session_repair.protocols import LoggerProtocol
from session_repair.schemas.operations.scan import SymptomInfo
from session_repair.services.scanner import symptom_text
from session_repair.storage.documents import DocumentStore

__all__ = ['SessionDiscoveryService']


class SessionDiscoveryService:
    """Lookup and symptom discovery across all sessions of a store."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def resolve_session_id(self, session_id_or_prefix: str, logger: LoggerProtocol | None = None) -> str:
        """
        Resolve a session ID, session ID prefix, or message ID to a full session id.

        A message id (or unique message id prefix) resolves to the session
        that owns the message, so an id copied from an error report works too.

        Raises:
            SessionNotFoundError: If no session or message matches
            AmbiguousSessionError: If multiple sessions match
        """
        if session_id_or_prefix in ('', '.', '..') or '/' in session_id_or_prefix or '\\' in session_id_or_prefix:
            raise SessionNotFoundError(session_id_or_prefix)

        if self.store.find_session_path(session_id_or_prefix) is not None:
            return session_id_or_prefix

        if logger:
            await logger.info(f'No exact match, trying prefix: {session_id_or_prefix}')

        matches = [s for s in self.store.iter_session_ids() if s.startswith(session_id_or_prefix)]
        if not matches:
            matches = self._sessions_owning_message(session_id_or_prefix)
            if len(matches) == 1 and logger:
                await logger.info(f'Message {session_id_or_prefix} belongs to session {matches[0]}')
        if not matches:
            raise SessionNotFoundError(session_id_or_prefix)
        if len(matches) > 1:
            raise AmbiguousSessionError(session_id_or_prefix, matches)
        return matches[0]

    def _sessions_owning_message(self, message_id_or_prefix: str) -> list[str]:
        """Sessions holding the message; an exact message id wins over prefix matches."""
        locations = list(self.store.iter_message_locations())
        exact = {session_id for session_id, message_id in locations if message_id == message_id_or_prefix}
        if exact:
            return sorted(exact)
        return sorted(
            {session_id for session_id, message_id in locations if message_id.startswith(message_id_or_prefix)}
        )

    def session_title(self, session_id: str) -> str | None:
        return self.store.read_session(session_id).title

    async def iter_symptomatic_sessions(self, logger: LoggerProtocol | None = None) -> AsyncIterator[SymptomInfo]:
        """
        Yield every session holding at least one symptom marker, in session id order.

        A session whose documents cannot be read or parsed is reported
        through logger.warning and skipped; one broken session never hides
        the others.
        """
        for session_id in self.store.iter_session_ids():
            try:
                symptoms = [
                    (message, text)
                    for message in self.store.list_messages(session_id)
                    if (text := symptom_text(message)) is not None
                ]
                title = self.session_title(session_id) if symptoms else None
            except StoreIOError as e:
                if logger:
                    await logger.warning(f'Skipping session {session_id}: {e}')
                continue

            if not symptoms:
                continue

            first, first_text = symptoms[0]
            model = '/'.join(p for p in first.model_key if p) or None
            if logger:
                await logger.info(f'Session {session_id}: {len(symptoms)} symptom markers')

            yield SymptomInfo(
                session_id=session_id,
                title=title,
                symptom_message_ids=[message.id for message, _ in symptoms],
                error_message=first_text,
                model=model,
            )

    async def find_symptomatic_sessions(self, logger: LoggerProtocol | None = None) -> list[SymptomInfo]:
        return [info async for info in self.iter_symptomatic_sessions(logger)]
