"""aiohttp application factory."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass

from aiohttp import web

from dbo import __version__
from dbo.runtime import Runtime
from dbo.server.api.routes import setup_api_routes
from dbo.server.lifecycle import ServiceLifecycle

logger = logging.getLogger(__name__)


@dataclass
class HealthStatus:
    """Health check response payload."""

    status: str
    """Overall status: 'healthy' or 'shutting_down'."""

    uptime_seconds: float
    """Seconds since service startup."""

    version: str
    """DBO version string."""

    shutting_down: bool = False
    """True if graceful shutdown is in progress."""

    backups_running: int = 0
    """Number of backups currently in flight."""

    event_subscribers: int = 0
    """Number of connected event stream clients."""

    def to_dict(self) -> dict:
        return asdict(self)


async def health_handler(request: web.Request) -> web.Response:
    """Handle GET /health requests.

    Returns:
        200 with a HealthStatus payload while running, 503 once shutdown
        has begun.
    """
    lifecycle: ServiceLifecycle | None = request.app.get("lifecycle")
    runtime: Runtime = request.app["runtime"]

    shutting_down = lifecycle.is_shutting_down if lifecycle else False
    health = HealthStatus(
        status="shutting_down" if shutting_down else "healthy",
        uptime_seconds=round(lifecycle.uptime_seconds, 3) if lifecycle else 0.0,
        version=__version__,
        shutting_down=shutting_down,
        backups_running=len(runtime.orchestrator.running_drive_ids()),
        event_subscribers=runtime.event_bus.subscriber_count,
    )
    return web.json_response(health.to_dict(), status=503 if shutting_down else 200)


async def _on_shutdown(app: web.Application) -> None:
    """Cancel running backups and wait for them until the shutdown deadline."""
    runtime: Runtime = app["runtime"]
    running = runtime.orchestrator.running_drive_ids()
    lifecycle: ServiceLifecycle | None = app.get("lifecycle")
    timeout = None
    if lifecycle is not None:
        lifecycle.initiate_shutdown()
        lifecycle.shutdown_state.backups_interrupted = len(running)
        timeout = lifecycle.shutdown_state.remaining_seconds
    if running:
        logger.info("Cancelling %d running backup(s) for shutdown", len(running))
    try:
        await asyncio.wait_for(runtime.orchestrator.shutdown(), timeout)
    except asyncio.TimeoutError:
        logger.warning("Backups still running at the shutdown deadline")


def create_app(
    runtime: Runtime, lifecycle: ServiceLifecycle | None = None
) -> web.Application:
    """Create and configure the aiohttp Application.

    Args:
        runtime: Assembled components the handlers operate on.
        lifecycle: Shutdown coordination; a fresh one is created when None.

    Returns:
        Configured aiohttp Application instance.
    """
    app = web.Application()
    app["runtime"] = runtime
    app["lifecycle"] = lifecycle or ServiceLifecycle(
        shutdown_timeout=runtime.config.server.shutdown_timeout
    )

    app.router.add_get("/health", health_handler)
    setup_api_routes(app)

    app.on_shutdown.append(_on_shutdown)
    return app
