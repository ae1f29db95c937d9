"""
Request-history reconstruction.

A provider error such as

    messages.3.content.0: Invalid `signature` in `thinking` block

indexes into the request that failed, not into storage. That request held
the conversation history up to the failing turn, minus whatever the
front-end leaves out when it builds history (system bookkeeping entries,
turns that themselves failed). Which entries those are cannot be observed
from the store, so the rules live in HistoryPolicy and every mapping from
request index to storage position goes through the functions below.

Everything here is pure: no I/O, no state.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from session_repair.schemas.documents import MessageDocument, PartDocument
from session_repair.schemas.operations.scan import HistoryPolicy

__all__ = [
    'content_parts',
    'map_request_reference',
    'request_history',
]


def content_parts(parts: Sequence[PartDocument], policy: HistoryPolicy) -> list[PartDocument]:
    """Parts that become request content blocks, in order."""
    return [p for p in parts if p.type in policy.content_part_types]


def _included(message: MessageDocument, parts: Sequence[PartDocument], policy: HistoryPolicy) -> bool:
    if policy.skip_system_messages and message.role == 'system':
        return False
    if policy.skip_errored_assistant and message.role == 'assistant' and message.error is not None:
        return False
    if policy.skip_empty_messages and not content_parts(parts, policy):
        return False
    return True


def request_history(
    messages: Sequence[MessageDocument],
    parts: Mapping[str, Sequence[PartDocument]],
    failing_position: int,
    policy: HistoryPolicy,
) -> list[int]:
    """
    Storage positions of the messages the failing request carried, in request order.

    The request is the history strictly before the message that recorded the
    error (that message is the failed response, not part of its own request).
    """
    return [
        position
        for position, message in enumerate(messages[:failing_position])
        if _included(message, parts.get(message.id, ()), policy)
    ]


def map_request_reference(
    messages: Sequence[MessageDocument],
    parts: Mapping[str, Sequence[PartDocument]],
    failing_position: int,
    request_index: int,
    content_index: int,
    policy: HistoryPolicy,
) -> tuple[int | None, PartDocument | None]:
    """
    Resolve `messages.<request_index>.content.<content_index>` against storage.

    Returns:
        (storage position, part):
        - (position, part) when both indexes resolve
        - (position, None) when the message resolves but the content index is out of range
        - (None, None) when the request index is out of range
    """
    history = request_history(messages, parts, failing_position, policy)
    if not 0 <= request_index < len(history):
        return None, None

    position = history[request_index]
    blocks = content_parts(parts.get(messages[position].id, ()), policy)
    if not 0 <= content_index < len(blocks):
        return position, None
    return position, blocks[content_index]
