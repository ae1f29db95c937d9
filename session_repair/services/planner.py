"""
Repair planner - turns corruption records into an ordered edit plan.

Strategies:
- remove-parts: delete only the offending reasoning parts and clear the
  error descriptor of every symptom message that pointed at them. Needs
  every record resolved to a part.
- truncate: delete every message from the earliest offending position on,
  with all their parts, then scrub session-level references to them.
- auto: remove-parts, or truncate when any record is message-level only.

Content before the earliest definite record is known-good (the provider
accepted it) and is never removed. Operations are ordered child-before-
parent (parts, messages, session) so an interrupted apply never leaves a
part whose message is gone.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from session_repair.exceptions import NoCorruptionFoundError, UnrepairableError
from session_repair.schemas.operations.plan import (
    ClearError,
    ConcreteStrategy,
    DeleteMessage,
    DeletePart,
    EditOperation,
    RepairPlan,
    Strategy,
    TouchSession,
    TruncateSession,
)
from session_repair.schemas.operations.scan import CorruptionRecord
from session_repair.services.graph import SessionGraph

__all__ = ['RepairPlanner']

logger = logging.getLogger(__name__)


class RepairPlanner:
    """Computes a RepairPlan from scan results. Pure: reads only the graph it is given."""

    def plan(self, graph: SessionGraph, records: Sequence[CorruptionRecord], strategy: Strategy) -> RepairPlan:
        """
        Build the plan for one session.

        Raises:
            NoCorruptionFoundError: If records is empty
            UnrepairableError: If remove-parts was requested but a record has
                no specific part, or a record does not match the graph
        """
        session_id = graph.session_id
        if not records:
            raise NoCorruptionFoundError(session_id)

        records = self._known_bad(graph, records)

        concrete: ConcreteStrategy
        if strategy == 'auto':
            concrete = 'remove-parts' if all(r.is_part_level for r in records) else 'truncate'
            logger.info(f'auto strategy resolved to {concrete} for session {session_id}')
        else:
            concrete = strategy

        if concrete == 'remove-parts':
            operations = self._remove_parts(graph, records)
        else:
            operations = self._truncate(graph, records)

        definite = [r.message_index for r in records if r.confidence == 'definite']
        return RepairPlan(
            session_id=session_id,
            strategy=concrete,
            operations=operations,
            records_fixed=len(records),
            known_good_before=graph.order[min(definite)] if definite else None,
        )

    def _known_bad(self, graph: SessionGraph, records: Sequence[CorruptionRecord]) -> list[CorruptionRecord]:
        """Validate records against the graph, drop any before the earliest definite one, sort."""
        for record in records:
            if record.session_id != graph.session_id:
                raise UnrepairableError(graph.session_id, f'record belongs to session {record.session_id}')
            if record.message_id not in graph.messages:
                raise UnrepairableError(graph.session_id, f'message {record.message_id} is no longer in the session')
            if graph.position(record.message_id) != record.message_index:
                raise UnrepairableError(graph.session_id, f'message {record.message_id} moved since it was scanned')
            if record.part_id is not None and record.part_id not in {p.id for p in graph.parts_of(record.message_id)}:
                raise UnrepairableError(graph.session_id, f'part {record.part_id} is no longer in the session')

        ordered = sorted(records, key=lambda r: (r.message_index, -1 if r.content_index is None else r.content_index))
        definite = [r for r in ordered if r.confidence == 'definite']
        if not definite:
            return ordered

        floor = definite[0].message_index
        kept = [r for r in ordered if r.message_index >= floor]
        if len(kept) < len(ordered):
            logger.info(f'Ignoring {len(ordered) - len(kept)} records before known-good position {floor}')
        return kept

    def _remove_parts(self, graph: SessionGraph, records: Sequence[CorruptionRecord]) -> list[EditOperation]:
        unresolved = [r for r in records if r.part_id is None]
        if unresolved:
            first = unresolved[0]
            raise UnrepairableError(
                graph.session_id,
                f'message {first.message_id} (index {first.message_index}) could not be resolved to a specific part; '
                f'use the truncate strategy',
            )

        operations: list[EditOperation] = []
        seen_parts: set[str] = set()
        for record in records:
            assert record.part_id is not None
            if record.part_id not in seen_parts:
                seen_parts.add(record.part_id)
                operations.append(DeletePart(message_id=record.message_id, part_id=record.part_id))

        symptom_ids = {symptom for record in records for symptom in record.symptom_message_ids}
        for message_id in graph.order:
            if message_id in symptom_ids:
                operations.append(ClearError(message_id=message_id))

        operations.append(TouchSession(session_id=graph.session_id))
        return operations

    def _truncate(self, graph: SessionGraph, records: Sequence[CorruptionRecord]) -> list[EditOperation]:
        cut = records[0].message_index
        removed = list(graph.order[cut:])

        operations: list[EditOperation] = []
        for message_id in removed:
            for part in graph.parts_of(message_id):
                operations.append(DeletePart(message_id=message_id, part_id=part.id))
            operations.append(DeleteMessage(message_id=message_id))

        operations.append(TruncateSession(session_id=graph.session_id, index=cut, removed_message_ids=removed))
        return operations
