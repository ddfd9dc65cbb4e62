"""JSON log formatting."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from dbo.logging.context import DRIVE_RECORD_FIELDS, get_drive_context

# Attributes every LogRecord carries, plus those filled in by Formatter.format
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.NOTSET, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}


def _drive_of(record: logging.LogRecord) -> dict[str, Any] | None:
    """Drive context stamped on the record, or the caller's if unfiltered."""
    if hasattr(record, "drive_id"):
        drive_id, disc_name = record.drive_id, getattr(record, "disc_name", None)
    else:
        drive_id, disc_name = get_drive_context()
    if drive_id is None:
        return None
    drive: dict[str, Any] = {"id": drive_id}
    if disc_name:
        drive["disc"] = disc_name
    return drive


class JSONFormatter(logging.Formatter):
    """Format log records as one JSON object per line.

    Keys:
        timestamp: ISO-8601 UTC with milliseconds.
        level: Level name.
        logger: Logger name, omitted for the root logger.
        drive: ``{"id": 0, "disc": "MOVIE"}`` when the record was logged
            inside a drive context, so lines from parallel backups can be
            grouped with a single key.
        message: The formatted message.
        context: Anything passed via ``extra=``.
        exception: Formatted traceback, when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds"),
            "level": record.levelname,
        }
        if record.name and record.name != "root":
            entry["logger"] = record.name

        drive = _drive_of(record)
        if drive is not None:
            entry["drive"] = drive
        entry["message"] = record.getMessage()

        extras = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS
            and key not in DRIVE_RECORD_FIELDS
            and not key.startswith("_")
        }
        if extras:
            entry["context"] = extras

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        elif record.stack_info:
            entry["exception"] = self.formatStack(record.stack_info)

        return json.dumps(entry, default=str)
