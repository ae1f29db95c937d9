"""
Validation verifier - post-apply structural and corruption checks.

Only signals. A failed verification is turned into a rollback by the
transaction manager; nothing here edits the store.
"""

from __future__ import annotations

from collections.abc import Sequence
from itertools import pairwise

from session_repair.schemas.operations.repair import VerificationResult
from session_repair.services.scanner import IntegrityScanner
from session_repair.storage.documents import DocumentStore

__all__ = ['ValidationVerifier']


class ValidationVerifier:
    def __init__(self, store: DocumentStore, scanner: IntegrityScanner) -> None:
        self.store = store
        self.scanner = scanner

    def verify(
        self,
        session_id: str,
        removed_message_ids: Sequence[str] = (),
        known_good_before: int | None = None,
    ) -> VerificationResult:
        """
        Reload the session graph and check it.

        Args:
            session_id: Session to check
            removed_message_ids: Messages the plan deleted; none of their
                parts may survive
            known_good_before: Records positioned before this message index
                are accepted content (the provider took it) and do not fail
                verification

        Checks:
            1. every part's messageID names a message of the session
            2. every message's sessionID is the session
            3. no corruption record remains on rescan
            4. message ids are unique and strictly increasing in stored order
        """
        graph = self.scanner.load_graph(session_id)
        problems: list[str] = []

        for message_id, parts in graph.parts.items():
            for part in parts:
                if part.messageID != message_id or part.messageID not in graph.messages:
                    problems.append(f'part {part.id} references missing message {part.messageID}')

        for removed_id in removed_message_ids:
            if removed_id in graph.messages:
                problems.append(f'message {removed_id} was not removed')
            leftover = self.store.list_parts(removed_id)
            if leftover:
                problems.append(f'{len(leftover)} parts of removed message {removed_id} remain')

        for message in graph.ordered_messages:
            if message.sessionID != session_id:
                problems.append(f'message {message.id} belongs to session {message.sessionID}')

        for previous, current in pairwise(graph.order):
            if not previous < current:
                problems.append(f'message order broken at {previous} -> {current}')

        records = self.scanner.scan_graph(graph)
        if known_good_before is not None:
            records = [r for r in records if r.message_index >= known_good_before]
        for record in records:
            target = f'part {record.part_id}' if record.part_id else f'message {record.message_id}'
            problems.append(f'{record.confidence} corruption remains at index {record.message_index}: {target}')

        return VerificationResult(
            session_id=session_id,
            ok=not problems,
            problems=problems,
            remaining_records=len(records),
        )
