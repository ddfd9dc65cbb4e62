"""CLI commands for drive detection and eject."""

from __future__ import annotations

import asyncio
import logging

import click

from dbo.cli.context import get_cli_runtime
from dbo.cli.exit_codes import ExitCode
from dbo.cli.output import error_exit, print_json, warning_output
from dbo.core.formatting import format_file_size
from dbo.drives.models import Drive
from dbo.drives.platform import InvalidDriveLetterError, normalize_drive_letter

logger = logging.getLogger(__name__)


def format_drive_line(drive: Drive) -> str:
    kind = "Blu-ray" if drive.is_bluray else "DVD"
    source = "mapped" if drive.has_tool_mapping else "fallback"
    return (
        f"[{drive.id}] {drive.drive_letter} {drive.disc_name} "
        f"({kind}, {format_file_size(drive.disc_size_bytes)}) "
        f"-> disc:{drive.tool_disc_index} [{source}]"
    )


@click.command("drives")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON.")
@click.pass_context
def drives_command(ctx: click.Context, json_output: bool) -> None:
    """Scan for optical drives that hold a readable disc."""
    enumerator = get_cli_runtime(ctx).enumerator
    drives = asyncio.run(enumerator.detect_drives())
    errors = enumerator.detection_errors

    if json_output:
        print_json(
            {
                "drives": [d.to_dict() for d in drives],
                "errors": [e.to_dict() for e in errors],
                "last_error": enumerator.last_error,
            }
        )
    else:
        if not drives:
            click.echo("No drives with media found.")
        for drive in drives:
            click.echo(format_drive_line(drive))
            if drive.warning:
                warning_output(f"{drive.drive_letter}: {drive.warning}")
        for error in errors:
            if error.stage == "unmapped-drive":
                continue
            where = f" ({error.drive})" if error.drive else ""
            warning_output(f"{error.stage}{where}: {error.error}")

    if enumerator.last_error is not None:
        error_exit(enumerator.last_error, ExitCode.OPERATION_FAILED, json_output)


@click.command("eject")
@click.argument("letter")
@click.pass_context
def eject_command(ctx: click.Context, letter: str) -> None:
    """Eject the disc in LETTER (e.g. E or E:)."""
    try:
        letter = normalize_drive_letter(letter)
    except InvalidDriveLetterError as e:
        error_exit(str(e), ExitCode.INVALID_ARGUMENTS)

    result = asyncio.run(get_cli_runtime(ctx).enumerator.eject_drive(letter))
    if not result.success:
        error_exit(
            result.error or f"Could not eject {letter}", ExitCode.OPERATION_FAILED
        )
    click.echo(f"Ejected {result.drive_letter}")
