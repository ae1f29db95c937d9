"""
In-memory session graph.

Arena-style maps keyed by id instead of an object graph with back-references:
deleting a message or part never leaves a dangling Python reference, and a
snapshot is just the set of ids a plan touches.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path

import attrs

from session_repair.schemas.documents import MessageDocument, PartDocument, SessionDocument
from session_repair.storage.documents import DocumentStore

__all__ = [
    'SessionGraph',
    'load_session_graph',
]


@attrs.define(frozen=True)
class SessionGraph:
    """
    Immutable view of one session's documents as loaded from the store.

    order holds message ids in stored order; a message's position in it is
    its message index. parts maps message id to that message's parts in
    stored order.
    """

    session: SessionDocument
    session_path: Path
    messages: Mapping[str, MessageDocument]
    order: Sequence[str]
    parts: Mapping[str, Sequence[PartDocument]]

    @property
    def session_id(self) -> str:
        return self.session.id

    @property
    def ordered_messages(self) -> list[MessageDocument]:
        return [self.messages[message_id] for message_id in self.order]

    def position(self, message_id: str) -> int:
        return self.order.index(message_id)

    def parts_of(self, message_id: str) -> Sequence[PartDocument]:
        return self.parts.get(message_id, ())

    @property
    def active_model(self) -> tuple[str | None, str | None] | None:
        """
        (providerID, modelID) of the most recent message that names one.

        Derived fresh from the documents on every call; None for a session
        where no message records its model.
        """
        for message_id in reversed(self.order):
            message = self.messages[message_id]
            if message.providerID is not None or message.modelID is not None:
                return message.model_key
        return None


def load_session_graph(store: DocumentStore, session_id: str) -> SessionGraph:
    """
    Load a session with all its messages and parts.

    Raises:
        SessionNotFoundError: If the session document does not exist
        StoreIOError: If any document cannot be read or parsed
    """
    session_path = store.find_session_path(session_id)
    session = store.read_session(session_id)
    assert session_path is not None  # read_session raised otherwise

    messages = store.list_messages(session_id)
    return SessionGraph(
        session=session,
        session_path=session_path,
        messages={m.id: m for m in messages},
        order=tuple(m.id for m in messages),
        parts={m.id: tuple(store.list_parts(m.id)) for m in messages},
    )
