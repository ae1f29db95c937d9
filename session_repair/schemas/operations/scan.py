"""
Scan operation schemas.

Models for corruption findings produced by the integrity scanner.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Literal

from session_repair.schemas.base import StrictModel
from session_repair.schemas.documents import DEFAULT_CONTENT_PART_TYPES

Confidence = Literal['definite', 'inferred']


class HistoryPolicy(StrictModel):
    """Which stored messages and parts a request would have included.

    Error descriptors index into the request, not into storage. Which stored
    entries the front-end sends as history is not observable from the store,
    so these rules are configuration rather than fact.
    """

    skip_system_messages: bool = True
    skip_errored_assistant: bool = True  # Failed turns are not replayed as history
    skip_empty_messages: bool = False  # Messages with no content parts
    content_part_types: frozenset[str] = DEFAULT_CONTENT_PART_TYPES


class CorruptionRecord(StrictModel):
    """A document believed to cause signature validation failure.

    Derived from the store on every scan, never persisted.

    definite: a message's stored error descriptor matched the signature
        pattern and its content index resolved to this message.
    inferred: a reasoning part from a different model/provider than the
        session's active one, with no error descriptor confirming it.
    """

    session_id: str
    message_id: str  # Offending message (the one holding the bad reasoning part)
    part_id: str | None  # None = resolved at message granularity only
    message_index: int  # Storage-order position of the offending message
    content_index: int | None  # Position among the message's content parts
    confidence: Confidence

    # Symptom messages whose error descriptor points at this record (definite only)
    symptom_message_ids: Sequence[str] = ()

    @property
    def is_part_level(self) -> bool:
        return self.part_id is not None


class SymptomInfo(StrictModel):
    """A session carrying at least one symptom marker, as found by discovery."""

    session_id: str
    title: str | None
    symptom_message_ids: Sequence[str]
    error_message: str  # Text of the earliest symptom
    model: str | None  # providerID/modelID of the earliest symptom
