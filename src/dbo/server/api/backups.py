"""Backup API handlers.

Endpoints:
    GET    /api/backups             - backups currently in flight
    POST   /api/backups             - start a backup for a drive of the last scan
    DELETE /api/backups/{drive_id}  - cancel a running backup
"""

from __future__ import annotations

import json
import logging

from aiohttp import web

from dbo.server.api.errors import (
    INVALID_JSON,
    INVALID_PARAMETER,
    INVALID_REQUEST,
    NOT_FOUND,
    api_error,
    backup_start_error,
)
from dbo.server.api.helpers import get_runtime, shutdown_check

logger = logging.getLogger(__name__)


async def list_backups_handler(request: web.Request) -> web.Response:
    orchestrator = get_runtime(request).orchestrator
    return web.json_response({"backups": orchestrator.running_backups()})


@shutdown_check
async def start_backup_handler(request: web.Request) -> web.Response:
    """Start a backup for ``{"drive_id": N}``.

    The drive must come from the most recent GET /api/drives scan. The
    response is sent once extraction has been launched; progress follows
    on the event stream.
    """
    try:
        body = await request.json()
    except json.JSONDecodeError:
        return api_error("Request body must be JSON", code=INVALID_JSON)
    if not isinstance(body, dict):
        return api_error("Request body must be a JSON object", code=INVALID_REQUEST)

    drive_id = body.get("drive_id")
    if not isinstance(drive_id, int) or isinstance(drive_id, bool):
        return api_error("drive_id must be an integer", code=INVALID_PARAMETER)

    runtime = get_runtime(request)
    drive = runtime.enumerator.get_drive(drive_id)
    if drive is None:
        return api_error(
            f"Drive {drive_id} not found in the last scan", code=NOT_FOUND, status=404
        )

    result = await runtime.orchestrator.start_drive_backup(drive)
    if result.success:
        return web.json_response(result.to_dict(), status=202)
    return backup_start_error(result)


async def cancel_backup_handler(request: web.Request) -> web.Response:
    raw = request.match_info["drive_id"]
    try:
        drive_id = int(raw)
    except ValueError:
        return api_error(f"Invalid drive id: {raw}", code=INVALID_PARAMETER)

    if not get_runtime(request).orchestrator.cancel_backup(drive_id):
        return api_error(
            f"No backup running for drive {drive_id}", code=NOT_FOUND, status=404
        )
    return web.json_response({"success": True, "drive_id": drive_id})
