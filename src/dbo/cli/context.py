"""Access to configuration and components from a click context."""

from __future__ import annotations

import click

from dbo.cli.exit_codes import ExitCode
from dbo.cli.output import error_exit
from dbo.config import ConfigFileError, get_config
from dbo.config.models import DBOConfig
from dbo.runtime import Runtime, build_runtime


def get_cli_config(ctx: click.Context) -> DBOConfig:
    """Load configuration for the current invocation.

    Exits with CONFIG_ERROR when the file or environment is invalid.
    """
    obj = ctx.ensure_object(dict)
    runtime: Runtime | None = obj.get("runtime")
    if runtime is not None:
        return runtime.config
    try:
        return get_config(config_path=obj.get("config_path"), strict=True)
    except (ConfigFileError, ValueError) as e:
        error_exit(f"Invalid configuration: {e}", ExitCode.CONFIG_ERROR)


def get_cli_runtime(ctx: click.Context) -> Runtime:
    """Return the runtime for this invocation, building it on first use."""
    obj = ctx.ensure_object(dict)
    if "runtime" not in obj:
        obj["runtime"] = build_runtime(get_cli_config(ctx))
    return obj["runtime"]
