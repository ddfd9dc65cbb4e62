"""Shared request helpers for the API handlers."""

from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable

from aiohttp import web

from dbo.runtime import Runtime
from dbo.server.api.errors import SHUTTING_DOWN, api_error

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def get_runtime(request: web.Request) -> Runtime:
    return request.app["runtime"]


def shutdown_check(handler: Handler) -> Handler:
    """Decorator that returns 503 once the service is shutting down.

    Usage:
        @shutdown_check
        async def my_api_handler(request: web.Request) -> web.Response:
            ...
    """

    @functools.wraps(handler)
    async def wrapper(request: web.Request) -> web.StreamResponse:
        lifecycle = request.app.get("lifecycle")
        if lifecycle is not None and lifecycle.is_shutting_down:
            return api_error("Service is shutting down", code=SHUTTING_DOWN, status=503)
        return await handler(request)

    return wrapper
