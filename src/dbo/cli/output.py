"""Consistent CLI output for JSON and human-readable modes."""

from __future__ import annotations

import json
import sys
from typing import Any, NoReturn

import click

from dbo.cli.exit_codes import ExitCode


def error_exit(
    message: str,
    code: ExitCode | int,
    json_output: bool = False,
) -> NoReturn:
    """Print an error and exit.

    Args:
        message: Error message to display.
        code: Exit code to use (ExitCode enum or int).
        json_output: Whether to format output as JSON.
    """
    if isinstance(code, ExitCode):
        code_name = code.name
        exit_value = int(code)
    else:
        code_name = "UNKNOWN_ERROR"
        exit_value = code

    if json_output:
        click.echo(
            json.dumps(
                {"status": "failed", "error": {"code": code_name, "message": message}}
            ),
            err=True,
        )
    else:
        click.echo(f"Error: {message}", err=True)

    sys.exit(exit_value)


def print_json(data: dict[str, Any]) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def warning_output(message: str, json_output: bool = False) -> None:
    """Print a warning to stderr (suppressed in JSON mode)."""
    if not json_output:
        click.echo(f"Warning: {message}", err=True)
