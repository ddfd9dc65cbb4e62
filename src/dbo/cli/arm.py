"""CLI commands for the DVD fingerprint match cache."""

from __future__ import annotations

import asyncio

import click

from dbo.cli.context import get_cli_runtime
from dbo.cli.exit_codes import ExitCode
from dbo.cli.output import error_exit, print_json


@click.group("arm")
def arm_group() -> None:
    """Manage the CRC64 title match cache."""


@arm_group.command("stats")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON.")
@click.pass_context
def arm_stats(ctx: click.Context, json_output: bool) -> None:
    """Show cache size and last sync time."""
    stats = asyncio.run(get_cli_runtime(ctx).arm_database.stats())
    if json_output:
        print_json(
            {
                "entries": stats.entries,
                "cache_file": str(stats.cache_file),
                "last_sync": stats.last_sync,
            }
        )
        return
    click.echo(f"Entries:    {stats.entries}")
    click.echo(f"Cache file: {stats.cache_file}")
    click.echo(f"Last sync:  {stats.last_sync or 'never'}")


@arm_group.command("sync")
@click.pass_context
def arm_sync(ctx: click.Context) -> None:
    """Download the community database and merge new entries."""
    result = asyncio.run(get_cli_runtime(ctx).arm_database.sync())
    if not result.success:
        error_exit(f"Sync failed: {result.error}", ExitCode.OPERATION_FAILED)
    click.echo(f"Sync complete: {result.added} new entries")


@arm_group.command("clear")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
@click.pass_context
def arm_clear(ctx: click.Context, yes: bool) -> None:
    """Delete every cached entry."""
    if not yes:
        click.confirm("Clear the match cache?", abort=True)
    asyncio.run(get_cli_runtime(ctx).arm_database.clear())
    click.echo("Match cache cleared")
