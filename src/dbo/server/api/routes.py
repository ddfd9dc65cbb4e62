"""API route registration."""

from __future__ import annotations

from aiohttp import web

from dbo.server.api.backups import (
    cancel_backup_handler,
    list_backups_handler,
    start_backup_handler,
)
from dbo.server.api.drives import (
    drive_errors_handler,
    eject_drive_handler,
    list_drives_handler,
)
from dbo.server.api.events import sse_events_handler


def setup_api_routes(app: web.Application) -> None:
    app.router.add_get("/api/drives", list_drives_handler)
    app.router.add_get("/api/drives/errors", drive_errors_handler)
    app.router.add_post("/api/drives/{letter}/eject", eject_drive_handler)
    app.router.add_get("/api/backups", list_backups_handler)
    app.router.add_post("/api/backups", start_backup_handler)
    app.router.add_delete("/api/backups/{drive_id}", cancel_backup_handler)
    app.router.add_get("/api/events", sse_events_handler)
