"""Structured logging for DBO.

Text or JSON output, optional file rotation, and per-drive context so
parallel backups can be told apart in the log.
"""

from dbo.logging.config import configure_logging
from dbo.logging.context import (
    DriveContextFilter,
    clear_drive_context,
    drive_context,
    get_drive_context,
    set_drive_context,
)
from dbo.logging.handlers import JSONFormatter

__all__ = [
    "DriveContextFilter",
    "JSONFormatter",
    "clear_drive_context",
    "configure_logging",
    "drive_context",
    "get_drive_context",
    "set_drive_context",
]
