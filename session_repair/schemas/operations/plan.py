"""
Repair plan schemas.

A plan is an ordered list of edit operations, computed once per repair and
applied fully or not at all. Operations are ordered child-before-parent:
parts, then messages, then session-level touch-ups.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Annotated, Literal, TypeAlias

import pydantic

from session_repair.schemas.base import StrictModel

Strategy = Literal['remove-parts', 'truncate', 'auto']
ConcreteStrategy = Literal['remove-parts', 'truncate']

STRATEGIES: tuple[Strategy, ...] = ('auto', 'remove-parts', 'truncate')


class DeletePart(StrictModel):
    kind: Literal['delete-part'] = 'delete-part'
    message_id: str
    part_id: str


class DeleteMessage(StrictModel):
    kind: Literal['delete-message'] = 'delete-message'
    message_id: str


class ClearError(StrictModel):
    """Remove the error descriptor from a symptom message."""

    kind: Literal['clear-error'] = 'clear-error'
    message_id: str


class TruncateSession(StrictModel):
    """Scrub session-level references to messages removed at or after `index`."""

    kind: Literal['truncate-session-after-index'] = 'truncate-session-after-index'
    session_id: str
    index: int
    removed_message_ids: Sequence[str]


class TouchSession(StrictModel):
    """Bump the session's updated timestamp."""

    kind: Literal['touch-session'] = 'touch-session'
    session_id: str


EditOperation: TypeAlias = Annotated[
    DeletePart | DeleteMessage | ClearError | TruncateSession | TouchSession,
    pydantic.Field(discriminator='kind'),
]


class RepairPlan(StrictModel):
    """Ordered, all-or-nothing set of edits for one session."""

    session_id: str
    strategy: ConcreteStrategy
    operations: Sequence[EditOperation]
    records_fixed: int
    known_good_before: str | None = None  # First message not known to be accepted; earlier ones were

    @property
    def touched_message_ids(self) -> list[str]:
        """Messages edited or deleted by this plan, in plan order, without duplicates."""
        seen: dict[str, None] = {}
        for op in self.operations:
            if isinstance(op, (DeleteMessage, ClearError)):
                seen.setdefault(op.message_id, None)
        return list(seen)

    @property
    def touched_part_ids(self) -> list[tuple[str, str]]:
        """(message_id, part_id) pairs deleted by this plan."""
        return [(op.message_id, op.part_id) for op in self.operations if isinstance(op, DeletePart)]
