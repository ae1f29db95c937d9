"""
Integrity scanner - finds reasoning parts that make a session unreplayable.

Two kinds of evidence:

definite
    A message's stored error descriptor is a signature rejection
    (a symptom marker) and names `messages.<N>.content.<M>`. The reference
    is resolved through services/history.py to a stored message and part.
inferred
    A reasoning part from a different provider/model than the session's
    active one. Only reported when the session has no definite record, and
    never for messages before the known-good boundary an earlier repair
    recorded in its backup manifest.

Signatures are never checked here; validity is only ever inferred from a
provider's rejection recorded in the store.

Scanning is read-only and restartable: it re-reads the store every time
and keeps no state between calls.
"""

from __future__ import annotations

import re
from collections.abc import Iterator

from session_repair.schemas.documents import MessageDocument
from session_repair.schemas.operations.scan import CorruptionRecord, HistoryPolicy
from session_repair.services.graph import SessionGraph, load_session_graph
from session_repair.services.history import content_parts, map_request_reference
from session_repair.storage.backups import BackupRepository
from session_repair.storage.documents import DocumentStore

__all__ = [
    'IntegrityScanner',
    'is_signature_error',
    'parse_content_reference',
]

_SIGNATURE = re.compile(r'signature', re.IGNORECASE)
_REASONING_BLOCK = re.compile(r'thinking|reasoning', re.IGNORECASE)
_REJECTION = re.compile(
    r'invalid|not valid|rejected|mismatch|could not be verified|verification failed|failed to verify',
    re.IGNORECASE,
)
_CONTENT_REFERENCE = re.compile(r'messages\.(\d+)\.content\.(\d+)')


def is_signature_error(text: str) -> bool:
    """True if error text is a provider rejecting a reasoning block's signature."""
    return bool(_SIGNATURE.search(text) and _REASONING_BLOCK.search(text) and _REJECTION.search(text))


def parse_content_reference(text: str) -> tuple[int, int] | None:
    """Extract (N, M) from the first `messages.N.content.M` in error text."""
    match = _CONTENT_REFERENCE.search(text)
    if match is None:
        return None
    return int(match.group(1)), int(match.group(2))


def symptom_text(message: MessageDocument) -> str | None:
    """Error text of a symptom marker, or None if the message is not one."""
    if message.error is None:
        return None
    text = message.error.text()
    return text if is_signature_error(text) else None


class IntegrityScanner:
    """Evaluates a session's message/part graph against the corruption predicates."""

    def __init__(
        self,
        store: DocumentStore,
        policy: HistoryPolicy | None = None,
        backups: BackupRepository | None = None,
    ) -> None:
        self.store = store
        self.policy = policy or HistoryPolicy()
        self.backups = backups  # Source of known-good boundaries left by earlier repairs

    def load_graph(self, session_id: str) -> SessionGraph:
        return load_session_graph(self.store, session_id)

    def scan(self, session_id: str) -> list[CorruptionRecord]:
        """All corruption records for a session, earliest position first."""
        return list(self.iter_records(session_id))

    def iter_records(self, session_id: str) -> Iterator[CorruptionRecord]:
        """Lazy variant of scan(). Each call starts over from the current store."""
        return self.iter_graph_records(self.load_graph(session_id))

    def scan_graph(self, graph: SessionGraph) -> list[CorruptionRecord]:
        return list(self.iter_graph_records(graph))

    def iter_graph_records(self, graph: SessionGraph) -> Iterator[CorruptionRecord]:
        definite = self._definite_records(graph)
        if definite:
            yield from definite
        else:
            yield from self._inferred_records(graph)

    def _definite_records(self, graph: SessionGraph) -> list[CorruptionRecord]:
        messages = graph.ordered_messages
        # (message_id, part_id) -> (position, content index, symptom ids)
        found: dict[tuple[str, str | None], tuple[int, int | None, list[str]]] = {}

        for failing_position, message in enumerate(messages):
            text = symptom_text(message)
            if text is None:
                continue

            position: int | None = None
            part_id: str | None = None
            content_index: int | None = None

            reference = parse_content_reference(text)
            if reference is not None:
                request_index, ref_content_index = reference
                position, part = map_request_reference(
                    messages, graph.parts, failing_position, request_index, ref_content_index, self.policy
                )
                # Only a reasoning block can carry a signature; anything else means the index did not map cleanly
                if part is not None and part.is_reasoning:
                    part_id = part.id
                    content_index = ref_content_index

            if position is None:
                position = self._fallback_position(graph, failing_position)

            key = (messages[position].id, part_id)
            if key not in found:
                found[key] = (position, content_index, [])
            found[key][2].append(message.id)

        records = [
            CorruptionRecord(
                session_id=graph.session_id,
                message_id=message_id,
                part_id=part_id,
                message_index=position,
                content_index=content_index,
                confidence='definite',
                symptom_message_ids=tuple(symptoms),
            )
            for (message_id, part_id), (position, content_index, symptoms) in found.items()
        ]
        records.sort(key=_record_order)
        return records

    def _fallback_position(self, graph: SessionGraph, failing_position: int) -> int:
        """
        Where to pin a symptom whose reference does not resolve.

        The earliest assistant message before the symptom that holds a
        reasoning part, else the symptom message itself.
        """
        for position, message in enumerate(graph.ordered_messages[:failing_position]):
            if message.role == 'assistant' and any(p.is_reasoning for p in graph.parts_of(message.id)):
                return position
        return failing_position

    def _inferred_records(self, graph: SessionGraph) -> Iterator[CorruptionRecord]:
        active = graph.active_model
        if active is None:
            return

        floor = self.backups.known_good_floor(graph.session_id) if self.backups else None
        for position, message in enumerate(graph.ordered_messages):
            if floor is not None and message.id < floor:
                continue  # Accepted by the provider before an earlier repair
            if message.providerID is None and message.modelID is None:
                continue
            if message.model_key == active:
                continue
            for content_index, part in enumerate(content_parts(graph.parts_of(message.id), self.policy)):
                if part.is_reasoning:
                    yield CorruptionRecord(
                        session_id=graph.session_id,
                        message_id=message.id,
                        part_id=part.id,
                        message_index=position,
                        content_index=content_index,
                        confidence='inferred',
                    )


def _record_order(record: CorruptionRecord) -> tuple[int, int]:
    # Message-granularity records sort before part records of the same message
    return (record.message_index, -1 if record.content_index is None else record.content_index)
