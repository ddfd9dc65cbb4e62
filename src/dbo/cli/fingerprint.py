"""CLI command to capture a disc fingerprint."""

from __future__ import annotations

import asyncio

import click

from dbo.cli.context import get_cli_runtime
from dbo.cli.exit_codes import ExitCode
from dbo.cli.output import error_exit, print_json
from dbo.drives.platform import InvalidDriveLetterError, normalize_drive_letter
from dbo.fingerprint.capture import get_best_identifier, get_search_hint


@click.command("fingerprint")
@click.argument("letter")
@click.option("--label", default=None, help="Volume label to record.")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON.")
@click.pass_context
def fingerprint_command(
    ctx: click.Context, letter: str, label: str | None, json_output: bool
) -> None:
    """Capture the fingerprint of the disc in LETTER.

    Exits with OPERATION_FAILED when no usable identifier could be read.
    """
    try:
        letter = normalize_drive_letter(letter)
    except InvalidDriveLetterError as e:
        error_exit(str(e), ExitCode.INVALID_ARGUMENTS, json_output)

    capture = get_cli_runtime(ctx).fingerprint_capture
    fingerprint = asyncio.run(capture.capture(letter, label))

    if json_output:
        print_json(fingerprint.to_dict())
    else:
        click.echo(f"Type: {fingerprint.type.value}")
        identifier = get_best_identifier(fingerprint)
        if identifier is not None:
            kind, value = identifier
            click.echo(f"Identifier ({kind}): {value}")
        hint = get_search_hint(fingerprint)
        if hint:
            click.echo(f"Search hint: {hint}")
        if fingerprint.arm_match is not None:
            match = fingerprint.arm_match
            year = f" ({match.year})" if match.year else ""
            click.echo(f"Known disc: {match.title}{year} [{match.source}]")
        if fingerprint.error:
            click.echo(f"Error: {fingerprint.error}", err=True)

    if not fingerprint.is_useful:
        raise SystemExit(int(ExitCode.OPERATION_FAILED))
