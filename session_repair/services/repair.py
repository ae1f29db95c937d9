"""
Session repair service - the operation surface consumed by the CLI.

Pipeline per repair, under the session lock:

    scan -> plan -> snapshot -> apply -> verify   (rollback on failure)

Every repair starts from a fresh scan of the current store; there is no
"repaired" flag to trust, so repairing a repaired session reports
NoCorruptionFound.

Terminal outcomes NoCorruptionFound, Unrepairable, RolledBack and
SessionLocked become RepairResult statuses. BackupFailedError, StoreIOError
outside the transaction, and unexpected exceptions propagate.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from session_repair.config.base import RepairSettings
from session_repair.exceptions import (
    NoCorruptionFoundError,
    RolledBackError,
    SessionLockedError,
    StoreIOError,
    UnrepairableError,
)
from session_repair.protocols import LoggerProtocol
from session_repair.schemas.operations.backup import BackupInfo
from session_repair.schemas.operations.plan import DeleteMessage, RepairPlan, Strategy
from session_repair.schemas.operations.repair import RepairResult, RepairStatus, VerificationResult
from session_repair.schemas.operations.scan import CorruptionRecord, HistoryPolicy, SymptomInfo
from session_repair.services.discovery import SessionDiscoveryService
from session_repair.services.executor import ApplyStats, PlanExecutor
from session_repair.services.graph import SessionGraph
from session_repair.services.planner import RepairPlanner
from session_repair.services.scanner import IntegrityScanner
from session_repair.services.transaction import TransactionManager
from session_repair.services.verifier import ValidationVerifier
from session_repair.storage.backups import BackupRepository
from session_repair.storage.documents import DocumentStore
from session_repair.storage.locks import SessionLockRegistry

__all__ = ['SessionRepairService']


class SessionRepairService:
    """
    Scan, repair, restore and manage backups for sessions of one store.

    All mutating operations (repair, restore, prune_backup) hold the
    per-session lock; a concurrent second attempt on the same session fails
    fast instead of waiting.
    """

    def __init__(
        self,
        data_dir: Path,
        *,
        policy: HistoryPolicy | None = None,
        backup_dir: Path | None = None,
        lock_dir: Path | None = None,
    ) -> None:
        """
        Initialize repair service.

        Args:
            data_dir: Directory containing storage/
            policy: Request-history rules for resolving error indexes
            backup_dir: Snapshot directory (default: data_dir/repair-backups)
            lock_dir: Lock file directory (default: data_dir/repair-locks)

        Raises:
            ValueError: If data_dir/storage doesn't exist
        """
        self.store = DocumentStore(data_dir)
        self.backups = BackupRepository(backup_dir or self.store.data_dir / 'repair-backups', self.store)
        self.scanner = IntegrityScanner(self.store, policy, self.backups)
        self.planner = RepairPlanner()
        self.executor = PlanExecutor(self.store)
        self.verifier = ValidationVerifier(self.store, self.scanner)
        self.transactions = TransactionManager(self.store, self.backups)
        self.locks = SessionLockRegistry(lock_dir or self.store.data_dir / 'repair-locks')
        self.discovery = SessionDiscoveryService(self.store)

    @classmethod
    def from_settings(cls, repair_settings: RepairSettings, data_dir: Path | None = None) -> SessionRepairService:
        """Build the service from settings; data_dir overrides DATA_DIR (and the backup/lock dirs under it)."""
        root = (data_dir or repair_settings.DATA_DIR).expanduser()
        return cls(
            root,
            policy=repair_settings.history_policy(),
            backup_dir=root / repair_settings.BACKUP_DIR_NAME,
            lock_dir=root / repair_settings.LOCK_DIR_NAME,
        )

    # ------------------------------------------------------------------
    # Read-only operations
    # ------------------------------------------------------------------

    async def resolve_session_id(self, session_id_or_prefix: str, logger: LoggerProtocol | None = None) -> str:
        return await self.discovery.resolve_session_id(session_id_or_prefix, logger)

    async def find_symptomatic_sessions(self, logger: LoggerProtocol | None = None) -> list[SymptomInfo]:
        return await self.discovery.find_symptomatic_sessions(logger)

    async def scan(self, session_id: str, logger: LoggerProtocol | None = None) -> list[CorruptionRecord]:
        """
        Corruption records for a session, earliest first. Never writes.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        with _attributed(session_id):
            records = self.scanner.scan(session_id)
        if logger:
            await logger.info(f'Scanned session {session_id}: {len(records)} corruption records')
        return records

    async def preview(
        self, session_id: str, strategy: Strategy = 'auto', logger: LoggerProtocol | None = None
    ) -> RepairPlan:
        """
        Dry run: the plan a repair would apply right now. No backup, no lock, no writes.

        Raises:
            NoCorruptionFoundError: If the session has nothing to repair
            UnrepairableError: If no safe plan exists for the strategy
        """
        with _attributed(session_id):
            graph = self.scanner.load_graph(session_id)
            plan = self.planner.plan(graph, self.scanner.scan_graph(graph), strategy)
        if logger:
            await logger.info(f'Planned {len(plan.operations)} operations ({plan.strategy})')
        return plan

    async def verify(self, session_id: str) -> VerificationResult:
        with _attributed(session_id):
            return self.verifier.verify(session_id)

    async def list_backups(self, session_id: str) -> list[BackupInfo]:
        """Complete backups of a session, oldest first."""
        return self.backups.list_backups(session_id)

    # ------------------------------------------------------------------
    # Mutating operations
    # ------------------------------------------------------------------

    async def repair(
        self, session_id: str, strategy: Strategy = 'auto', logger: LoggerProtocol | None = None
    ) -> RepairResult:
        """
        Repair one session.

        Returns:
            RepairResult with status Repaired, NoCorruptionFound, Unrepairable,
            RolledBack or SessionLocked

        Raises:
            SessionNotFoundError: If the session does not exist
            BackupFailedError: If the snapshot could not be written (store untouched)
            StoreIOError: If the store could not be read before mutation started
            asyncio.CancelledError: If cancelled (store untouched or restored)
        """
        start_time = datetime.now(UTC)
        try:
            with _attributed(session_id), self.locks.hold(session_id):
                return await self._repair_locked(session_id, strategy, start_time, logger)
        except SessionLockedError as e:
            if logger:
                await logger.warning(str(e))
            return _result(session_id, 'SessionLocked', start_time, error_message=str(e))

    async def _repair_locked(
        self,
        session_id: str,
        strategy: Strategy,
        start_time: datetime,
        logger: LoggerProtocol | None,
    ) -> RepairResult:
        await asyncio.sleep(0)  # Lock is held; cancellation here changes nothing
        graph = self.scanner.load_graph(session_id)
        records = self.scanner.scan_graph(graph)
        if logger:
            await logger.info(f'Found {len(records)} corruption records in session {session_id}')

        try:
            plan = self.planner.plan(graph, records, strategy)
        except NoCorruptionFoundError as e:
            if logger:
                await logger.info(str(e))
            return _result(session_id, 'NoCorruptionFound', start_time, error_message=None)
        except UnrepairableError as e:
            if logger:
                await logger.error(str(e))
            return _result(session_id, 'Unrepairable', start_time, error_message=f'Unrepairable: {e.reason}')

        await asyncio.sleep(0)
        try:
            return await self._transact(graph, plan, records, logger)
        except RolledBackError as e:
            if not (strategy == 'auto' and plan.strategy == 'remove-parts' and e.verification_failed):
                return _rolled_back(e, plan, start_time)

            # Removing parts left the session failing verification - fall back to truncation
            if logger:
                await logger.warning(f'Removing parts did not verify ({e.cause}); retrying with truncate')

            graph = self.scanner.load_graph(session_id)
            records = self.scanner.scan_graph(graph)
            plan = self.planner.plan(graph, records, 'truncate')
            try:
                return await self._transact(graph, plan, records, logger)
            except RolledBackError as retry_error:
                return _rolled_back(retry_error, plan, start_time)

    async def _transact(
        self,
        graph: SessionGraph,
        plan: RepairPlan,
        records: Sequence[CorruptionRecord],
        logger: LoggerProtocol | None,
    ) -> RepairResult:
        definite = [r.message_index for r in records if r.confidence == 'definite']
        known_good_before = min(definite) if definite else None
        removed = [op.message_id for op in plan.operations if isinstance(op, DeleteMessage)]

        async def apply(p: RepairPlan) -> ApplyStats:
            return await self.executor.apply(p, logger)

        async def verify(p: RepairPlan) -> VerificationResult:
            result = self.verifier.verify(p.session_id, removed, known_good_before)
            if logger and not result.ok:
                for problem in result.problems:
                    await logger.warning(f'Verification: {problem}')
            return result

        result = await self.transactions.with_backup(graph, plan, apply, verify, logger)
        if logger:
            await logger.info(
                f'Repaired session {graph.session_id} ({plan.strategy}): '
                f'{result.parts_deleted} parts and {result.messages_deleted} messages deleted, '
                f'{result.errors_cleared} errors cleared'
            )
        return result

    async def restore(self, backup_id: str, logger: LoggerProtocol | None = None) -> list[str]:
        """
        Put a backup's documents back, byte for byte.

        The manifest is loaded before anything else, so an unknown backup id
        fails without any filesystem change.

        Returns:
            Relative paths of the restored (or removed) documents

        Raises:
            BackupNotFoundError: If the backup does not exist
            SessionLockedError: If the session is being repaired
        """
        manifest = self.backups.load_manifest(backup_id)
        with _attributed(manifest.sessionID), self.locks.hold(manifest.sessionID):
            await asyncio.sleep(0)
            restored = self.backups.restore(manifest)
        if logger:
            await logger.info(f'Restored {len(restored)} documents of session {manifest.sessionID}')
        return restored

    async def prune_backup(self, backup_id: str, logger: LoggerProtocol | None = None) -> None:
        """
        Delete a backup as a whole.

        Raises:
            BackupNotFoundError: If the backup does not exist
            SessionLockedError: If the session is being repaired or restored
        """
        manifest = self.backups.load_manifest(backup_id)
        with _attributed(manifest.sessionID), self.locks.hold(manifest.sessionID):
            self.backups.prune(backup_id)
        if logger:
            await logger.info(f'Pruned backup {backup_id}')


@contextmanager
def _attributed(session_id: str) -> Iterator[None]:
    """Tag store errors raised below the service with the session they concern."""
    try:
        yield
    except StoreIOError as e:
        if e.session_id is None:
            e.session_id = session_id
        raise


def _result(
    session_id: str,
    status: RepairStatus,
    start_time: datetime,
    *,
    error_message: str | None,
) -> RepairResult:
    return RepairResult(
        session_id=session_id,
        status=status,
        strategy=None,
        backup_id=None,
        records_fixed=0,
        messages_deleted=0,
        parts_deleted=0,
        errors_cleared=0,
        error_message=error_message,
        store_restored=False,
        duration_ms=(datetime.now(UTC) - start_time).total_seconds() * 1000,
        finished_at=datetime.now(UTC),
    )


def _rolled_back(error: RolledBackError, plan: RepairPlan, start_time: datetime) -> RepairResult:
    return RepairResult(
        session_id=error.session_id,
        status='RolledBack',
        strategy=plan.strategy,
        backup_id=error.backup_id,
        records_fixed=0,
        messages_deleted=0,
        parts_deleted=0,
        errors_cleared=0,
        error_message=f'RolledBack: {error.cause} (store restored from backup {error.backup_id})',
        store_restored=True,
        duration_ms=(datetime.now(UTC) - start_time).total_seconds() * 1000,
        finished_at=datetime.now(UTC),
    )
