"""
Repair and verification result schemas.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from enum import IntEnum
from typing import Literal

from session_repair.schemas.base import StrictModel

RepairStatus = Literal['Repaired', 'NoCorruptionFound', 'Unrepairable', 'RolledBack', 'SessionLocked']


class ExitCode(IntEnum):
    """Process exit codes surfaced by the CLI, mirroring RepairResult.status."""

    SUCCESS = 0
    ERROR = 1
    NO_CORRUPTION_FOUND = 3
    CANCELLED = 130

    @classmethod
    def for_status(cls, status: RepairStatus) -> ExitCode:
        return {
            'Repaired': cls.SUCCESS,
            'NoCorruptionFound': cls.NO_CORRUPTION_FOUND,
            'Unrepairable': cls.ERROR,
            'RolledBack': cls.ERROR,
            'SessionLocked': cls.ERROR,
        }[status]


class VerificationResult(StrictModel):
    """Outcome of re-loading a session graph after a plan was applied."""

    session_id: str
    ok: bool
    problems: Sequence[str]
    remaining_records: int


class RepairResult(StrictModel):
    """Execution result."""

    session_id: str
    status: RepairStatus
    strategy: str | None  # Concrete strategy applied (auto resolves to one of the others)
    backup_id: str | None  # Retained snapshot, present whenever a backup was written
    records_fixed: int
    messages_deleted: int
    parts_deleted: int
    errors_cleared: int
    error_message: str | None  # Failure kind and cause for non-success statuses
    store_restored: bool  # True when a rollback restored the pre-repair state

    duration_ms: float
    finished_at: datetime

    @property
    def success(self) -> bool:
        return self.status in ('Repaired', 'NoCorruptionFound')
