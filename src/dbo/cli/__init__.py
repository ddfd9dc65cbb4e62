"""CLI for the Disc Backup Orchestrator."""

import logging
from pathlib import Path

import click

from dbo import __version__

_logging_configured: bool = False

logger = logging.getLogger(__name__)


def _configure_logging(
    config_path: Path | None,
    log_level: str | None,
    log_file: Path | None,
    log_json: bool,
) -> None:
    """Configure logging from CLI options.

    Args:
        config_path: Config file to read logging settings from.
        log_level: Override log level (debug, info, warning, error).
        log_file: Override log file path.
        log_json: Use JSON log format.
    """
    global _logging_configured
    if _logging_configured:
        return

    from dbo.config.logging_factory import configure_logging_from_cli

    configure_logging_from_cli(
        config_path=config_path,
        level=log_level,
        file=log_file,
        format="json" if log_json else None,
    )
    _logging_configured = True


@click.group()
@click.version_option(__version__, prog_name="dbo")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to configuration file (default: ~/.dbo/config.toml).",
)
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Override log level (default: info).",
)
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    default=None,
    help="Override log file path.",
)
@click.option(
    "--log-json",
    is_flag=True,
    default=False,
    help="Use JSON log format.",
)
@click.pass_context
def main(
    ctx: click.Context,
    config_path: Path | None,
    log_level: str | None,
    log_file: Path | None,
    log_json: bool,
) -> None:
    """Disc Backup Orchestrator - back up several optical discs at once."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path

    # Tests pass a prebuilt runtime and manage logging themselves
    if "runtime" not in ctx.obj:
        _configure_logging(config_path, log_level, log_file, log_json)


# Defer import to avoid circular dependency
def _register_commands():
    from dbo.cli.arm import arm_group
    from dbo.cli.backup import backup_command
    from dbo.cli.drives import drives_command, eject_command
    from dbo.cli.fingerprint import fingerprint_command
    from dbo.cli.serve import serve_command

    main.add_command(drives_command)
    main.add_command(eject_command)
    main.add_command(backup_command)
    main.add_command(fingerprint_command)
    main.add_command(arm_group)
    main.add_command(serve_command)


_register_commands()
