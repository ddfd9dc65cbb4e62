"""CLI serve command: run the HTTP/SSE service."""

from __future__ import annotations

import asyncio
import errno
import logging
import os

import click

from dbo.cli.context import get_cli_config, get_cli_runtime
from dbo.cli.exit_codes import ExitCode
from dbo.runtime import Runtime

logger = logging.getLogger(__name__)


async def run_server(runtime: Runtime, bind: str, port: int) -> int:
    """Run the service until SIGTERM/SIGINT.

    Args:
        runtime: Assembled components to serve.
        bind: Address to bind to.
        port: Port to bind to.

    Returns:
        Exit code (0 for clean shutdown, non-zero for errors).
    """
    from aiohttp import web

    from dbo.server.app import create_app
    from dbo.server.lifecycle import ServiceLifecycle
    from dbo.server.signals import remove_signal_handlers, setup_signal_handlers

    shutdown_timeout = runtime.config.server.shutdown_timeout
    lifecycle = ServiceLifecycle(shutdown_timeout=shutdown_timeout)
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    setup_signal_handlers(loop, lifecycle, shutdown_event)

    app = create_app(runtime, lifecycle)
    runner = web.AppRunner(app, shutdown_timeout=shutdown_timeout)
    await runner.setup()

    try:
        site = web.TCPSite(runner, bind, port)
        await site.start()

        logger.info(
            "DBO service started on http://%s:%d (PID %d)", bind, port, os.getpid()
        )
        logger.info("Event stream: http://%s:%d/api/events", bind, port)
        logger.info("Press Ctrl+C or send SIGTERM to stop")

        await shutdown_event.wait()
        logger.info(
            "Shutdown initiated, waiting up to %.1fs for backups to stop",
            shutdown_timeout,
        )
    except OSError as e:
        if e.errno == errno.EADDRINUSE:
            logger.error("Port %d is already in use", port)
            return int(ExitCode.GENERAL_ERROR)
        if e.errno == errno.EADDRNOTAVAIL:
            logger.error("Cannot bind to address %s", bind)
            return int(ExitCode.GENERAL_ERROR)
        logger.error("Server error: %s", e)
        return int(ExitCode.GENERAL_ERROR)
    finally:
        remove_signal_handlers(loop)
        # Runs on_shutdown, which cancels running backups
        await runner.cleanup()
        logger.info("DBO service stopped")

    return int(ExitCode.SUCCESS)


@click.command("serve")
@click.option("--bind", type=str, default=None, help="Address to bind to.")
@click.option("--port", "-p", type=int, default=None, help="Port to bind to.")
@click.pass_context
def serve_command(ctx: click.Context, bind: str | None, port: int | None) -> None:
    """Run the HTTP service with a live event stream.

    Binds to 127.0.0.1:8322 unless configured otherwise. Handles graceful
    shutdown on SIGTERM or SIGINT (Ctrl+C), cancelling running backups.
    """
    config = get_cli_config(ctx)
    bind = bind or config.server.bind
    port = port or config.server.port
    runtime = get_cli_runtime(ctx)

    try:
        exit_code = asyncio.run(run_server(runtime, bind, port))
    except KeyboardInterrupt:
        exit_code = int(ExitCode.INTERRUPTED)
    raise SystemExit(exit_code)
