"""
Operation schemas for service results.

This package contains Pydantic models for the findings, plans, snapshots and
results the repair services produce.
"""

from __future__ import annotations

from session_repair.schemas.operations.backup import BackupDocument, BackupInfo, BackupManifest
from session_repair.schemas.operations.plan import (
    STRATEGIES,
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
from session_repair.schemas.operations.repair import ExitCode, RepairResult, RepairStatus, VerificationResult
from session_repair.schemas.operations.scan import Confidence, CorruptionRecord, HistoryPolicy, SymptomInfo

__all__ = [
    # Backup
    'BackupDocument',
    'BackupInfo',
    'BackupManifest',
    # Plan
    'STRATEGIES',
    'ClearError',
    'ConcreteStrategy',
    'DeleteMessage',
    'DeletePart',
    'EditOperation',
    'RepairPlan',
    'Strategy',
    'TouchSession',
    'TruncateSession',
    # Repair
    'ExitCode',
    'RepairResult',
    'RepairStatus',
    'VerificationResult',
    # Scan
    'Confidence',
    'CorruptionRecord',
    'HistoryPolicy',
    'SymptomInfo',
]
