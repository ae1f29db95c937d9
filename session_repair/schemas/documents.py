"""
Store document models: sessions, messages and parts.

Field names follow the on-disk JSON (camelCase ids such as sessionID and
modelID) so documents validate without aliasing.

Only the fields the repair engine reads are typed. Everything else is kept
as extra data; rewrites go through the raw JSON mapping so the owning
application's fields survive untouched.
"""

from __future__ import annotations

from typing import Any, Literal

from session_repair.schemas.base import PermissiveModel

DocumentKind = Literal['session', 'message', 'part']

# Part types that carry model-visible content and map to request content blocks.
# Bookkeeping parts (step-start, step-finish, snapshot, patch, ...) are not sent.
DEFAULT_CONTENT_PART_TYPES = frozenset({'text', 'reasoning', 'tool', 'tool-call', 'file'})


class DocumentTime(PermissiveModel):
    """Millisecond timestamps stored on every document."""

    created: int | float | None = None
    updated: int | float | None = None
    completed: int | float | None = None


class SessionDocument(PermissiveModel):
    """storage/session/{projectID}/{sessionID}.json"""

    id: str
    projectID: str | None = None
    directory: str | None = None
    title: str | None = None
    time: DocumentTime | None = None


class ErrorData(PermissiveModel):
    message: str | None = None


class ErrorDescriptor(PermissiveModel):
    """Top-level error stored on a message after a failed request."""

    name: str | None = None
    message: str | None = None
    data: ErrorData | None = None

    def text(self) -> str:
        """All human-readable error text, joined."""
        chunks = [self.name, self.message, self.data.message if self.data else None]
        return '\n'.join(c for c in chunks if c)


class MessageDocument(PermissiveModel):
    """storage/message/{sessionID}/{messageID}.json"""

    id: str
    sessionID: str
    role: Literal['user', 'assistant', 'system']
    modelID: str | None = None
    providerID: str | None = None
    error: ErrorDescriptor | None = None
    time: DocumentTime | None = None

    @property
    def model_key(self) -> tuple[str | None, str | None]:
        """(providerID, modelID) pair used to compare originating models."""
        return (self.providerID, self.modelID)


class PartDocument(PermissiveModel):
    """storage/part/{messageID}/{partID}.json"""

    id: str
    messageID: str
    sessionID: str | None = None
    type: str
    text: str | None = None
    metadata: dict[str, Any] | None = None

    @property
    def is_reasoning(self) -> bool:
        return self.type == 'reasoning'
