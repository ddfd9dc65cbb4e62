"""Drive context for structured logging.

Each backup runs in its own asyncio task; contextvars give every task its
own drive_id/disc_name so log lines from parallel backups stay attributable.
"""

from __future__ import annotations

import contextvars
import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Generator

_drive_id: contextvars.ContextVar[int | None] = contextvars.ContextVar(
    "drive_id", default=None
)
_disc_name: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "disc_name", default=None
)

# Attributes DriveContextFilter sets on every record
DRIVE_RECORD_FIELDS = frozenset({"drive_id", "disc_name", "drive_tag"})


def set_drive_context(drive_id: int, disc_name: str | None = None) -> None:
    """Set the drive context for the current task."""
    _drive_id.set(drive_id)
    _disc_name.set(disc_name)


def clear_drive_context() -> None:
    """Clear the drive context for the current task."""
    _drive_id.set(None)
    _disc_name.set(None)


def get_drive_context() -> tuple[int | None, str | None]:
    """Return (drive_id, disc_name); either may be None."""
    return _drive_id.get(), _disc_name.get()


@contextmanager
def drive_context(
    drive_id: int, disc_name: str | None = None
) -> Generator[None, None, None]:
    """Set the drive context for the duration of the block.

    The previous context is restored on exit.

    Example:
        with drive_context(0, "MOVIE_DISC"):
            logger.info("Starting backup")  # tagged [D0:MOVIE_DISC]
    """
    old_drive_id = _drive_id.get()
    old_disc_name = _disc_name.get()
    try:
        set_drive_context(drive_id, disc_name)
        yield
    finally:
        _drive_id.set(old_drive_id)
        _disc_name.set(old_disc_name)


class DriveContextFilter(logging.Filter):
    """Inject drive_id, disc_name and a compact drive_tag into records."""

    def filter(self, record: logging.LogRecord) -> bool:
        drive_id, disc_name = get_drive_context()

        record.drive_id = drive_id
        record.disc_name = disc_name

        # [D0:MOVIE] or [D0] or empty
        if drive_id is not None:
            if disc_name:
                record.drive_tag = f"[D{drive_id}:{disc_name}] "
            else:
                record.drive_tag = f"[D{drive_id}] "
        else:
            record.drive_tag = ""

        return True
