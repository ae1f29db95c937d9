#!/usr/bin/env python3
"""
Command-line interface for opencode-session-repair.

Finds OpenCode sessions blocked by a reasoning block whose signature another
model/provider rejected, and repairs them with a backup for every change.

Exit codes: 0 success, 1 error, 3 no corruption found, 130 cancelled.
"""

from __future__ import annotations

import asyncio
import traceback
from collections.abc import Coroutine
from pathlib import Path
from typing import Any

import typer

from session_repair.cli.logger import CLILogger
from session_repair.config import settings
from session_repair.exceptions import NoCorruptionFoundError, SessionRepairError, UnrepairableError
from session_repair.schemas.operations.plan import (
    STRATEGIES,
    ClearError,
    DeleteMessage,
    DeletePart,
    RepairPlan,
    Strategy,
    TouchSession,
    TruncateSession,
)
from session_repair.schemas.operations.repair import ExitCode
from session_repair.services.repair import SessionRepairService

app = typer.Typer(
    name='session-repair',
    help='Detect and repair OpenCode sessions with rejected reasoning signatures',
    add_completion=False,
)

DATA_DIR_OPTION = typer.Option(
    None, '--data-dir', '-d', help='OpenCode data directory containing storage/ (default: SESSION_REPAIR_DATA_DIR)'
)
VERBOSE_OPTION = typer.Option(False, '--verbose', '-v', help='Verbose output')


def _validate_strategy(value: str) -> Strategy:
    for strategy in STRATEGIES:
        if strategy == value:
            return strategy
    raise typer.BadParameter(f'Must be one of: {", ".join(STRATEGIES)}')


def _make_service(data_dir: Path | None) -> SessionRepairService:
    try:
        return SessionRepairService.from_settings(settings, data_dir)
    except ValueError as e:
        typer.secho(f'Error: {e}', fg=typer.colors.RED, err=True)
        raise typer.Exit(ExitCode.ERROR)


def _fail(e: BaseException, verbose: bool) -> typer.Exit:
    typer.secho(f'Error: {e}', fg=typer.colors.RED, err=True)
    if verbose:
        traceback.print_exc()
    return typer.Exit(ExitCode.ERROR)


def _run(coro: Coroutine[Any, Any, None]) -> None:
    """Run a command coroutine, mapping Ctrl-C to exit code 130."""
    try:
        asyncio.run(coro)
    except KeyboardInterrupt:
        typer.secho('Cancelled.', fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(ExitCode.CANCELLED)


@app.command('list')
def list_sessions(
    data_dir: Path | None = DATA_DIR_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """List every session with a rejected-signature error."""
    _run(_list_async(data_dir, verbose))


async def _list_async(data_dir: Path | None, verbose: bool) -> None:
    logger = CLILogger(verbose=verbose)
    service = _make_service(data_dir)

    try:
        sessions = await service.find_symptomatic_sessions(logger)
    except SessionRepairError as e:
        raise _fail(e, verbose)

    if not sessions:
        typer.secho('No sessions with signature errors found.', fg=typer.colors.GREEN)
        raise typer.Exit(ExitCode.NO_CORRUPTION_FOUND)

    typer.secho(f'{len(sessions)} affected sessions:', bold=True)
    for info in sessions:
        typer.echo()
        typer.secho(f'  {info.session_id}', fg=typer.colors.CYAN)
        typer.echo(f'    Title: {info.title or "(untitled)"}')
        typer.echo(f'    Symptom messages: {len(info.symptom_message_ids)}')
        if info.model:
            typer.echo(f'    Model: {info.model}')
        typer.echo(f'    Error: {info.error_message.splitlines()[-1]}')


@app.command()
def scan(
    session_id: str = typer.Argument(..., help='Session ID (full or prefix)'),
    data_dir: Path | None = DATA_DIR_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Show the corruption records of a session without changing anything."""
    _run(_scan_async(session_id, data_dir, verbose))


async def _scan_async(session_id: str, data_dir: Path | None, verbose: bool) -> None:
    logger = CLILogger(verbose=verbose)
    service = _make_service(data_dir)

    try:
        full_session_id = await service.resolve_session_id(session_id, logger)
        records = await service.scan(full_session_id, logger)
    except SessionRepairError as e:
        raise _fail(e, verbose)

    if not records:
        typer.secho(f'No corruption found in session {full_session_id}', fg=typer.colors.GREEN)
        raise typer.Exit(ExitCode.NO_CORRUPTION_FOUND)

    typer.secho(f'{len(records)} corruption records in session {full_session_id}:', bold=True)
    for record in records:
        color = typer.colors.RED if record.confidence == 'definite' else typer.colors.YELLOW
        location = f'part {record.part_id} (content {record.content_index})' if record.part_id else 'whole message'
        typer.secho(f'  [{record.confidence}] ', fg=color, nl=False)
        typer.echo(f'message #{record.message_index} {record.message_id}: {location}')


@app.command()
def repair(
    session_id: str | None = typer.Argument(None, help='Session ID (full or prefix) or message ID'),
    all_sessions: bool = typer.Option(False, '--all', help='Repair every session with a signature error'),
    strategy: str | None = typer.Option(
        None,
        '--strategy',
        '-s',
        help='auto, remove-parts (delete only bad reasoning parts) or truncate (drop everything from the '
        'first bad message). Default: SESSION_REPAIR_DEFAULT_STRATEGY or auto',
    ),
    dry_run: bool = typer.Option(False, '--dry-run', help='Show the plan without changing anything'),
    yes: bool = typer.Option(False, '--yes', '-y', help='Do not ask for confirmation'),
    data_dir: Path | None = DATA_DIR_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Repair a session, or every affected session with --all. A backup is written before any change.

    To undo a repair, run 'session-repair restore BACKUP_ID' with the backup
    id printed on success.
    """
    if all_sessions == (session_id is not None):
        raise typer.BadParameter('Give either a SESSION_ID or --all')
    chosen = _validate_strategy(strategy or settings.DEFAULT_STRATEGY)
    if all_sessions:
        _run(_repair_all_async(chosen, dry_run, yes, data_dir, verbose))
    else:
        assert session_id is not None
        _run(_repair_async(session_id, chosen, dry_run, yes, data_dir, verbose))


async def _repair_async(
    session_id: str,
    strategy: Strategy,
    dry_run: bool,
    yes: bool,
    data_dir: Path | None,
    verbose: bool,
) -> None:
    """Async implementation of repair command."""
    logger = CLILogger(verbose=verbose)
    service = _make_service(data_dir)

    try:
        full_session_id = await service.resolve_session_id(session_id, logger)

        if dry_run or not yes:
            try:
                plan = await service.preview(full_session_id, strategy, logger)
            except NoCorruptionFoundError as e:
                typer.secho(str(e), fg=typer.colors.GREEN)
                raise typer.Exit(ExitCode.NO_CORRUPTION_FOUND)
            except UnrepairableError as e:
                raise _fail(e, verbose)

            _print_plan(plan, dry_run)
            if dry_run:
                return
            if not typer.confirm('Apply this repair?'):
                typer.secho('Cancelled.', fg=typer.colors.YELLOW, err=True)
                raise typer.Exit(ExitCode.CANCELLED)

        result = await service.repair(full_session_id, strategy, logger)

    except SessionRepairError as e:
        raise _fail(e, verbose)

    match result.status:
        case 'Repaired':
            typer.secho('✓ Session repaired successfully!', fg=typer.colors.GREEN)
            typer.echo(f'  Session ID: {result.session_id}')
            typer.echo(f'  Strategy: {result.strategy}')
            typer.echo(f'  Records fixed: {result.records_fixed}')
            typer.echo(f'  Parts deleted: {result.parts_deleted}')
            typer.echo(f'  Messages deleted: {result.messages_deleted}')
            typer.echo(f'  Errors cleared: {result.errors_cleared}')
            typer.echo(f'  Duration: {result.duration_ms:.0f}ms')
            typer.echo(f'  Backup: {result.backup_id}')
            typer.echo()
            typer.echo('To undo, run:')
            typer.secho(f'  session-repair restore {result.backup_id}', fg=typer.colors.CYAN)
        case 'NoCorruptionFound':
            typer.secho(f'No corruption found in session {result.session_id}', fg=typer.colors.GREEN)
        case _:
            typer.secho(
                f'Error: session {result.session_id}: {result.error_message}', fg=typer.colors.RED, err=True
            )
            if result.store_restored:
                typer.echo('The session was restored to its state before the repair.', err=True)

    raise typer.Exit(ExitCode.for_status(result.status))


async def _repair_all_async(strategy: Strategy, dry_run: bool, yes: bool, data_dir: Path | None, verbose: bool) -> None:
    """Repair every session with a symptom marker; one line per session, exit 1 if any failed."""
    logger = CLILogger(verbose=verbose)
    service = _make_service(data_dir)

    try:
        sessions = await service.find_symptomatic_sessions(logger)
    except SessionRepairError as e:
        raise _fail(e, verbose)

    if not sessions:
        typer.secho('No sessions with signature errors found.', fg=typer.colors.GREEN)
        raise typer.Exit(ExitCode.NO_CORRUPTION_FOUND)

    if dry_run:
        for info in sessions:
            try:
                _print_plan(await service.preview(info.session_id, strategy, logger), dry_run=True)
            except SessionRepairError as e:
                typer.secho(f'  {info.session_id}: {e}', fg=typer.colors.YELLOW)
        return

    if not yes and not typer.confirm(f'Repair {len(sessions)} sessions?'):
        typer.secho('Cancelled.', fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(ExitCode.CANCELLED)

    failed = 0
    for info in sessions:
        try:
            result = await service.repair(info.session_id, strategy, logger)
        except SessionRepairError as e:
            failed += 1
            typer.secho(f'✗ {info.session_id}: {e}', fg=typer.colors.RED, err=True)
            continue

        if result.status == 'Repaired':
            typer.secho(
                f'✓ {info.session_id}: repaired ({result.strategy}), backup {result.backup_id}', fg=typer.colors.GREEN
            )
        elif result.success:
            typer.echo(f'- {info.session_id}: no corruption found')
        else:
            failed += 1
            typer.secho(f'✗ {info.session_id}: {result.error_message}', fg=typer.colors.RED, err=True)

    typer.echo()
    typer.echo(f'{len(sessions) - failed} of {len(sessions)} sessions done, {failed} failed')
    raise typer.Exit(ExitCode.ERROR if failed else ExitCode.SUCCESS)


def _print_plan(plan: RepairPlan, dry_run: bool) -> None:
    heading = 'Dry run - would apply' if dry_run else 'Planned repair'
    typer.secho(f'{heading} ({plan.strategy}) to session {plan.session_id}:', fg=typer.colors.YELLOW)
    for operation in plan.operations:
        match operation:
            case DeletePart():
                typer.echo(f'  - delete part {operation.part_id} of message {operation.message_id}')
            case DeleteMessage():
                typer.echo(f'  - delete message {operation.message_id}')
            case ClearError():
                typer.echo(f'  - clear error on message {operation.message_id}')
            case TruncateSession():
                typer.echo(f'  - remove session references from message index {operation.index} on')
            case TouchSession():
                typer.echo('  - update session timestamp')


@app.command()
def restore(
    backup_id: str = typer.Argument(..., help='Backup ID (see: session-repair backups SESSION_ID)'),
    data_dir: Path | None = DATA_DIR_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Restore the documents saved in a backup, byte for byte."""
    _run(_restore_async(backup_id, data_dir, verbose))


async def _restore_async(backup_id: str, data_dir: Path | None, verbose: bool) -> None:
    logger = CLILogger(verbose=verbose)
    service = _make_service(data_dir)

    try:
        restored = await service.restore(backup_id, logger)
    except SessionRepairError as e:
        raise _fail(e, verbose)

    typer.secho('✓ Backup restored successfully!', fg=typer.colors.GREEN)
    typer.echo(f'  Backup ID: {backup_id}')
    typer.echo(f'  Documents: {len(restored)}')
    if verbose:
        for path in restored:
            typer.echo(f'    - {path}')


@app.command()
def backups(
    session_id: str = typer.Argument(..., help='Session ID (full or prefix)'),
    data_dir: Path | None = DATA_DIR_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """List the backups of a session, oldest first."""
    _run(_backups_async(session_id, data_dir, verbose))


async def _backups_async(session_id: str, data_dir: Path | None, verbose: bool) -> None:
    logger = CLILogger(verbose=verbose)
    service = _make_service(data_dir)

    try:
        full_session_id = await service.resolve_session_id(session_id, logger)
        infos = await service.list_backups(full_session_id)
        title = service.discovery.session_title(full_session_id)
    except SessionRepairError as e:
        raise _fail(e, verbose)

    typer.secho(f'Session {full_session_id} ({title or "untitled"})', bold=True)
    if not infos:
        typer.echo('  No backups.')
        return

    for info in infos:
        typer.echo()
        typer.secho(f'  {info.backup_id}', fg=typer.colors.CYAN)
        typer.echo(f'    Created: {info.created_at.isoformat()}')
        typer.echo(f'    Strategy: {info.strategy or "unknown"}')
        typer.echo(f'    Documents: {info.document_count} ({info.message_count} messages, {info.part_count} parts)')
        if verbose:
            typer.echo(f'    Path: {info.path}')


@app.command()
def prune(
    backup_id: str = typer.Argument(..., help='Backup ID to delete'),
    yes: bool = typer.Option(False, '--yes', '-y', help='Do not ask for confirmation'),
    data_dir: Path | None = DATA_DIR_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Delete a backup. The repaired session is not changed."""
    if not yes and not typer.confirm(f'Delete backup {backup_id}?'):
        raise typer.Exit(ExitCode.CANCELLED)
    _run(_prune_async(backup_id, data_dir, verbose))


async def _prune_async(backup_id: str, data_dir: Path | None, verbose: bool) -> None:
    logger = CLILogger(verbose=verbose)
    service = _make_service(data_dir)

    try:
        await service.prune_backup(backup_id, logger)
    except SessionRepairError as e:
        raise _fail(e, verbose)

    typer.secho(f'✓ Backup {backup_id} deleted', fg=typer.colors.GREEN)


def main() -> None:
    """Entry point for CLI."""
    app()


if __name__ == '__main__':
    main()
