"""
Backup & transaction manager - snapshot, apply, verify, roll back.

Implements strong exception safety for one repair:
- Every document the plan touches is snapshotted (plus the session document)
  before the first mutation
- Apply and verify run inside an error boundary; on ANY exception the
  snapshot is restored byte for byte, then the exception continues
- Expected failures (store I/O, failed verification) are converted into
  RolledBackError; anything else propagates with full traceback after the
  rollback

Error Boundary Pattern:
- _atomic_repair() contains errors: rollback, then re-raise
- with_backup() handles errors: decides which ones are expected

Cancellation before the snapshot is written leaves nothing behind. Once
mutation has started it takes effect at the executor's checkpoint after the
current write, rolls back, and is re-raised.

Backups are never deleted here, not after success and not after rollback.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeAlias
from datetime import UTC, datetime

from session_repair.exceptions import RolledBackError, StoreIOError, VerificationFailedError
from session_repair.protocols import LoggerProtocol
from session_repair.schemas.operations.backup import BackupManifest
from session_repair.schemas.operations.plan import RepairPlan
from session_repair.schemas.operations.repair import RepairResult, VerificationResult
from session_repair.services.executor import ApplyStats
from session_repair.services.graph import SessionGraph
from session_repair.storage.backups import BackupRepository, SnapshotTarget
from session_repair.storage.documents import DocumentStore

__all__ = ['TransactionManager']

logger = logging.getLogger(__name__)

ApplyFn: TypeAlias = Callable[[RepairPlan], Awaitable[ApplyStats]]
VerifyFn: TypeAlias = Callable[[RepairPlan], Awaitable[VerificationResult]]


class TransactionManager:
    """Single decision point for rollback vs. surfacing a repair failure."""

    # Environment and verification failures - reported as RolledBack.
    # Anything else is a bug and propagates after rollback (fail loudly).
    EXPECTED_REPAIR_ERRORS = (StoreIOError, OSError, VerificationFailedError)

    def __init__(self, store: DocumentStore, backups: BackupRepository) -> None:
        self.store = store
        self.backups = backups

    def snapshot_targets(self, graph: SessionGraph, plan: RepairPlan) -> list[SnapshotTarget]:
        """Session document, then every message and part the plan deletes or edits."""
        targets: list[SnapshotTarget] = [('session', graph.session_id, graph.session_path)]
        for message_id in plan.touched_message_ids:
            targets.append(('message', message_id, self.store.document_path('message', message_id, graph.session_id)))
        for message_id, part_id in plan.touched_part_ids:
            targets.append(('part', part_id, self.store.document_path('part', part_id, message_id)))
        return targets

    @asynccontextmanager
    async def _atomic_repair(self, manifest: BackupManifest) -> AsyncGenerator[None]:
        """
        Error boundary restoring the snapshot on any failure.

        The original exception is always re-raised after the restore. If the
        restore itself fails, the snapshot location is attached as a note so
        it can be restored by hand.
        """
        try:
            yield
        except asyncio.CancelledError:
            logger.warning(f'Repair of {manifest.sessionID} cancelled, rolling back...')
            try:
                self.backups.restore(manifest)
                logger.info('Rollback completed after cancellation')
            except Exception as rollback_error:
                logger.error(f'Rollback failed during cancellation: {rollback_error}')
            raise

        except BaseException as original_exc:
            logger.error(f'Repair of {manifest.sessionID} failed: {original_exc}, rolling back...')
            try:
                self.backups.restore(manifest)
            except Exception as rollback_error:
                logger.error(f'Rollback failed: {rollback_error}')
                original_exc.add_note(f'Rollback failed: {rollback_error}')
                original_exc.add_note(f'Backup preserved at: {self.backups.snapshot_dir(manifest.backupID)}')
            else:
                logger.info('Rollback completed successfully')
                original_exc.add_note(f'Rollback completed successfully from backup {manifest.backupID}')
            raise

    async def with_backup(
        self,
        graph: SessionGraph,
        plan: RepairPlan,
        apply: ApplyFn,
        verify: VerifyFn,
        logger: LoggerProtocol | None = None,
    ) -> RepairResult:
        """
        Snapshot, apply the plan, verify, and restore the snapshot on failure.

        Returns:
            RepairResult with status 'Repaired'

        Raises:
            BackupFailedError: Snapshot could not be written; store untouched
            RolledBackError: Apply or verification failed; store restored
            asyncio.CancelledError: Cancelled; store untouched or restored
        """
        start_time = datetime.now(UTC)

        # Last point where cancellation needs no cleanup
        await asyncio.sleep(0)
        manifest = self.backups.create_snapshot(
            graph.session_id, self.snapshot_targets(graph, plan), plan.strategy, plan.known_good_before
        )
        if logger:
            await logger.info(f'Backup written: {manifest.backupID} ({len(manifest.documents)} documents)')

        try:
            async with self._atomic_repair(manifest):
                stats = await apply(plan)
                await asyncio.sleep(0)
                verification = await verify(plan)
                if not verification.ok:
                    raise VerificationFailedError(graph.session_id, list(verification.problems))

        except self.EXPECTED_REPAIR_ERRORS as e:
            if logger:
                await logger.error(f'Repair failed (rolled back): {e}')
            raise RolledBackError(
                graph.session_id,
                manifest.backupID,
                str(e),
                verification_failed=isinstance(e, VerificationFailedError),
            ) from e

        return RepairResult(
            session_id=graph.session_id,
            status='Repaired',
            strategy=plan.strategy,
            backup_id=manifest.backupID,
            records_fixed=plan.records_fixed,
            messages_deleted=stats.messages_deleted,
            parts_deleted=stats.parts_deleted,
            errors_cleared=stats.errors_cleared,
            error_message=None,
            store_restored=False,
            duration_ms=(datetime.now(UTC) - start_time).total_seconds() * 1000,
            finished_at=datetime.now(UTC),
        )
