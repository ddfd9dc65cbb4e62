"""Drive API handlers.

Endpoints:
    GET  /api/drives                 - scan and list drives with media
    GET  /api/drives/errors          - problems recorded by the last scan
    POST /api/drives/{letter}/eject  - open a drive tray
"""

from __future__ import annotations

import logging

from aiohttp import web

from dbo.drives.platform import InvalidDriveLetterError, normalize_drive_letter
from dbo.server.api.errors import INVALID_PARAMETER, OPERATION_FAILED, api_error
from dbo.server.api.helpers import get_runtime, shutdown_check

logger = logging.getLogger(__name__)


@shutdown_check
async def list_drives_handler(request: web.Request) -> web.Response:
    """Run a full scan and return drives plus detection warnings."""
    enumerator = get_runtime(request).enumerator
    drives = await enumerator.detect_drives()
    return web.json_response(
        {
            "drives": [drive.to_dict() for drive in drives],
            "errors": [error.to_dict() for error in enumerator.detection_errors],
            "last_error": enumerator.last_error,
        }
    )


async def drive_errors_handler(request: web.Request) -> web.Response:
    """Return detection problems from the most recent scan without rescanning."""
    enumerator = get_runtime(request).enumerator
    return web.json_response(
        {
            "errors": [error.to_dict() for error in enumerator.detection_errors],
            "last_error": enumerator.last_error,
        }
    )


@shutdown_check
async def eject_drive_handler(request: web.Request) -> web.Response:
    """Eject a drive. The letter is validated before anything runs."""
    raw = request.match_info["letter"]
    try:
        letter = normalize_drive_letter(raw)
    except InvalidDriveLetterError as e:
        return api_error(str(e), code=INVALID_PARAMETER)

    result = await get_runtime(request).enumerator.eject_drive(letter)
    if not result.success:
        return api_error(
            result.error or "Eject failed", code=OPERATION_FAILED, status=500
        )
    return web.json_response({"success": True, "drive_letter": result.drive_letter})
