"""JSON error bodies for the dbo API.

An error response is ``{"error": <message>, "code": <CODE>}`` with an
optional ``details`` member, for example::

    return api_error("Drive 3 not found", code=NOT_FOUND, status=404)
"""

from __future__ import annotations

from typing import Any

from aiohttp import web

from dbo.backup.models import StartBackupResult
from dbo.backup.orchestrator import ALREADY_RUNNING_ERROR

INVALID_REQUEST = "INVALID_REQUEST"
INVALID_JSON = "INVALID_JSON"
INVALID_PARAMETER = "INVALID_PARAMETER"
NOT_FOUND = "NOT_FOUND"
RESOURCE_CONFLICT = "RESOURCE_CONFLICT"
OPERATION_FAILED = "OPERATION_FAILED"
SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
SHUTTING_DOWN = "SHUTTING_DOWN"


def api_error(
    message: str, *, code: str, status: int = 400, details: Any = None
) -> web.Response:
    body: dict[str, Any] = {"error": message, "code": code}
    if details is not None:
        body["details"] = details
    return web.json_response(body, status=status)


def backup_start_error(result: StartBackupResult) -> web.Response:
    """Translate a refused StartBackupResult into an error response.

    A drive that already has a backup gives 409. A cancellation during
    fingerprint capture or an adapter that could not be created gives 500
    with the result as details.
    """
    if result.error == ALREADY_RUNNING_ERROR:
        return api_error(result.error, code=RESOURCE_CONFLICT, status=409)
    return api_error(
        result.error or "Backup could not be started",
        code=OPERATION_FAILED,
        status=500,
        details=result.to_dict(),
    )
