"""Server-Sent Events (SSE) stream of backup events.

Endpoints:
    GET /api/events - every orchestrator event, named as emitted
        (backup-started, backup-progress, backup-log, backup-complete,
        fingerprint-match, metadata-updated), plus periodic heartbeats.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any

from aiohttp import web

from dbo.server.api.errors import SERVICE_UNAVAILABLE, api_error
from dbo.server.api.helpers import get_runtime, shutdown_check

logger = logging.getLogger(__name__)

# SSE configuration
SSE_HEARTBEAT_INTERVAL = 15.0  # seconds
SSE_WRITE_TIMEOUT = 5.0  # seconds - timeout for writing to slow clients
MAX_SSE_CONNECTIONS = 100


async def _write_sse_event(
    response: web.StreamResponse,
    event_type: str,
    data: dict[str, Any],
    timeout: float = SSE_WRITE_TIMEOUT,
) -> bool:
    """Write an SSE event to the response stream.

    Args:
        response: The streaming response object.
        event_type: Event type name (e.g., 'backup-progress', 'heartbeat').
        data: Event data to JSON-serialize.
        timeout: Write timeout in seconds.

    Returns:
        True if write succeeded, False if connection was closed or timed out.
    """
    try:
        payload = (
            f"event: {event_type}\n"
            f"data: {json.dumps(data, default=str)}\n"
            "\n"
        )
        await asyncio.wait_for(response.write(payload.encode("utf-8")), timeout=timeout)
        return True
    except asyncio.TimeoutError:
        logger.warning("SSE write timeout - slow client")
        return False
    except (ConnectionResetError, ConnectionAbortedError, BrokenPipeError):
        logger.debug("SSE client disconnected")
        return False


@shutdown_check
async def sse_events_handler(request: web.Request) -> web.StreamResponse:
    """Handle GET /api/events - stream orchestrator events.

    Each client gets its own queue on the event bus, so a slow client only
    loses its own events.
    """
    client_ip = request.remote or "unknown"
    sse_connections = request.app.setdefault("_sse_connections", {"count": 0})
    if sse_connections["count"] >= MAX_SSE_CONNECTIONS:
        logger.warning(
            "SSE connection limit reached (%d), rejecting client=%s",
            MAX_SSE_CONNECTIONS,
            client_ip,
        )
        resp = api_error(
            "Service temporarily unavailable - too many connections",
            code=SERVICE_UNAVAILABLE,
            status=503,
        )
        resp.headers["Retry-After"] = "10"
        return resp

    heartbeat = request.app.get("sse_heartbeat_interval", SSE_HEARTBEAT_INTERVAL)
    bus = get_runtime(request).event_bus
    queue = bus.subscribe_queue()
    sse_connections["count"] += 1
    logger.debug(
        "SSE connection established client=%s (total: %d)",
        client_ip,
        sse_connections["count"],
    )

    response = web.StreamResponse(
        status=200,
        headers={
            "Content-Type": "text/event-stream",
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
    try:
        await response.prepare(request)
        await _write_sse_event(
            response, "connected", {"subscribers": bus.subscriber_count}
        )
        while True:
            lifecycle = request.app.get("lifecycle")
            if lifecycle is not None and lifecycle.is_shutting_down:
                await _write_sse_event(response, "close", {"reason": "server_shutdown"})
                break
            try:
                event = await asyncio.wait_for(queue.get(), timeout=heartbeat)
            except asyncio.TimeoutError:
                ok = await _write_sse_event(
                    response,
                    "heartbeat",
                    {"timestamp": datetime.now(timezone.utc).isoformat()},
                )
            else:
                ok = await _write_sse_event(response, event.name, event.payload)
            if not ok:
                break
    except asyncio.CancelledError:
        logger.debug("SSE connection cancelled client=%s", client_ip)
        raise
    finally:
        bus.unsubscribe(queue)
        sse_connections["count"] -= 1
        logger.debug(
            "SSE connection closed client=%s (remaining: %d)",
            client_ip,
            sse_connections["count"],
        )

    return response
