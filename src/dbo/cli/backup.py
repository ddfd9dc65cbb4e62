"""CLI command to back up one or more drives in parallel."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import click

from dbo.backup.models import (
    EVENT_BACKUP_COMPLETE,
    EVENT_BACKUP_LOG,
    EVENT_BACKUP_PROGRESS,
    EVENT_BACKUP_STARTED,
    EVENT_FINGERPRINT_MATCH,
    BackupEvent,
)
from dbo.cli.context import get_cli_runtime
from dbo.cli.drives import format_drive_line
from dbo.cli.exit_codes import ExitCode
from dbo.cli.output import error_exit
from dbo.core.formatting import format_file_size, format_percent
from dbo.drives.models import Drive
from dbo.runtime import Runtime

logger = logging.getLogger(__name__)

PROGRESS_STEP = 5.0


@dataclass
class BackupRunSummary:
    """Final outcome per drive of one ``dbo backup`` invocation."""

    outcomes: dict[int, dict[str, Any]] = field(default_factory=dict)

    @property
    def failed(self) -> list[int]:
        return [d for d, o in self.outcomes.items() if not o.get("success")]

    @property
    def partial(self) -> list[int]:
        return [
            d
            for d, o in self.outcomes.items()
            if o.get("success") and o.get("partial_success")
        ]


def select_drives(
    drives: list[Drive], drive_ids: tuple[int, ...], all_drives: bool
) -> tuple[list[Drive], list[int]]:
    """Pick the drives to back up.

    Returns:
        (selected drives, requested ids missing from the scan).
    """
    if all_drives:
        return list(drives), []
    by_id = {drive.id: drive for drive in drives}
    selected = [by_id[i] for i in dict.fromkeys(drive_ids) if i in by_id]
    missing = [i for i in drive_ids if i not in by_id]
    return selected, missing


async def run_backups(
    runtime: Runtime,
    drives: list[Drive],
    on_event: Callable[[BackupEvent], None],
) -> BackupRunSummary:
    """Start a backup for each drive and wait for all of them to finish.

    Cancelling the calling task cancels every running backup before the
    cancellation propagates.
    """
    orchestrator = runtime.orchestrator
    bus = runtime.event_bus
    summary = BackupRunSummary()
    queue = bus.subscribe_queue()
    pending: set[int] = set()
    try:
        for drive in drives:
            result = await orchestrator.start_drive_backup(drive)
            if result.success:
                pending.add(drive.id)
            else:
                summary.outcomes[drive.id] = result.to_dict()

        while pending:
            event = await queue.get()
            on_event(event)
            if event.name == EVENT_BACKUP_COMPLETE and event.drive_id in pending:
                summary.outcomes[event.drive_id] = event.payload
                pending.discard(event.drive_id)
        # Events queued after the last completion (failed starts, late logs)
        while not queue.empty():
            on_event(queue.get_nowait())
        await orchestrator.wait_idle()
    except asyncio.CancelledError:
        logger.info("Interrupted, cancelling %d backup(s)", len(pending))
        await orchestrator.shutdown()
        raise
    finally:
        bus.unsubscribe(queue)
    return summary


class _ConsolePrinter:
    """Human-readable rendering of backup events."""

    def __init__(self, drives: list[Drive], verbose: bool) -> None:
        self._names = {d.id: d.disc_name for d in drives}
        self._verbose = verbose
        self._last_percent: dict[int, float] = {}

    def __call__(self, event: BackupEvent) -> None:
        drive_id = event.drive_id
        name = self._names.get(drive_id, "?") if drive_id is not None else "-"
        prefix = f"[{drive_id}:{name}]"
        payload = event.payload

        if event.name == EVENT_BACKUP_STARTED:
            click.echo(f"{prefix} Backup started")
        elif event.name == EVENT_FINGERPRINT_MATCH:
            match = payload.get("match") or {}
            click.echo(f"{prefix} Recognized disc: {match.get('title')}")
        elif event.name == EVENT_BACKUP_PROGRESS:
            percent = float(payload.get("percent", 0.0))
            last = self._last_percent.get(drive_id, -PROGRESS_STEP)
            if percent - last >= PROGRESS_STEP or (percent >= 100 and last < 100):
                self._last_percent[drive_id] = percent
                click.echo(f"{prefix} {format_percent(percent)}%")
        elif event.name == EVENT_BACKUP_LOG:
            if self._verbose:
                click.echo(f"{prefix} {payload.get('line', '')}")
        elif event.name == EVENT_BACKUP_COMPLETE:
            self._print_complete(prefix, payload)

    @staticmethod
    def _print_complete(prefix: str, payload: dict[str, Any]) -> None:
        if payload.get("cancelled"):
            click.echo(f"{prefix} Cancelled")
        elif not payload.get("success"):
            click.echo(f"{prefix} Failed: {payload.get('error')}", err=True)
        elif payload.get("already_exists"):
            click.echo(f"{prefix} Already backed up at {payload.get('path')}")
        elif payload.get("partial_success"):
            click.echo(
                f"{prefix} Completed with errors: "
                f"{format_percent(payload.get('percent_recovered', 0.0))}% "
                f"recovered, {payload.get('files_failed', 0)} file(s) failed "
                f"-> {payload.get('path')}"
            )
        else:
            click.echo(
                f"{prefix} Completed ({format_file_size(payload.get('size'))}) "
                f"-> {payload.get('path')}"
            )


def _print_json_event(event: BackupEvent) -> None:
    click.echo(
        json.dumps(
            {"event": event.name, "drive_id": event.drive_id, **event.payload},
            default=str,
        )
    )


@click.command("backup")
@click.argument("drive_ids", nargs=-1, type=int)
@click.option(
    "--all", "all_drives", is_flag=True, help="Back up every drive with media."
)
@click.option(
    "--json", "json_output", is_flag=True, help="Stream events as JSON lines."
)
@click.option("--verbose", "-v", is_flag=True, help="Show extraction log lines.")
@click.pass_context
def backup_command(
    ctx: click.Context,
    drive_ids: tuple[int, ...],
    all_drives: bool,
    json_output: bool,
    verbose: bool,
) -> None:
    """Back up the discs in DRIVE_IDS (as listed by `dbo drives`) in parallel.

    Press Ctrl+C to cancel all running backups.
    """
    if all_drives == bool(drive_ids):
        error_exit("Give drive ids or --all (not both)", ExitCode.INVALID_ARGUMENTS)

    runtime = get_cli_runtime(ctx)
    drives = asyncio.run(runtime.enumerator.detect_drives())
    if runtime.enumerator.last_error is not None:
        error_exit(
            runtime.enumerator.last_error, ExitCode.OPERATION_FAILED, json_output
        )

    selected, missing = select_drives(drives, drive_ids, all_drives)
    if missing:
        ids = ", ".join(str(i) for i in missing)
        error_exit(f"Drive(s) not found: {ids}", ExitCode.TARGET_NOT_FOUND, json_output)
    if not selected:
        error_exit("No drives with media found", ExitCode.TARGET_NOT_FOUND, json_output)

    if not json_output:
        for drive in selected:
            click.echo(format_drive_line(drive))
    on_event = _print_json_event if json_output else _ConsolePrinter(selected, verbose)

    try:
        summary = asyncio.run(run_backups(runtime, selected, on_event))
    except KeyboardInterrupt:
        error_exit("Interrupted, backups cancelled", ExitCode.INTERRUPTED, json_output)

    if summary.failed:
        failed = ", ".join(str(i) for i in summary.failed)
        error_exit(
            f"Backup failed for drive(s): {failed}",
            ExitCode.OPERATION_FAILED,
            json_output,
        )
    if summary.partial:
        raise SystemExit(int(ExitCode.PARTIAL_SUCCESS))
