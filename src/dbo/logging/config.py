"""Logging setup from LoggingConfig."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING

from dbo.logging.context import DriveContextFilter
from dbo.logging.handlers import JSONFormatter

if TYPE_CHECKING:
    from dbo.config.models import LoggingConfig

TEXT_FORMAT = "%(asctime)s - %(drive_tag)s%(name)s - %(levelname)s - %(message)s"
TEXT_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# One line per HTTP request or polling call; only shown at debug
CHATTY_LOGGERS = ("aiohttp.access", "httpx", "httpcore")


def _make_formatter(fmt: str) -> logging.Formatter:
    if fmt.casefold() == "json":
        return JSONFormatter()
    return logging.Formatter(TEXT_FORMAT, datefmt=TEXT_DATE_FORMAT)


def _open_log_file(config: LoggingConfig) -> logging.Handler | None:
    """Open the rotating log file, or return None if it cannot be opened."""
    path = Path(config.file).expanduser()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        return RotatingFileHandler(
            path,
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
    except OSError as e:
        sys.stderr.write(f"Warning: Could not open log file {path}: {e}\n")
        return None


def configure_logging(config: LoggingConfig) -> None:
    """Install root handlers according to config.

    Every handler gets a DriveContextFilter so both formats can show which
    drive a line belongs to. Stderr is used when requested, or when no log
    file is configured or it cannot be opened. Below debug level the
    per-request loggers of the HTTP stack are held at WARNING.
    """
    level = logging.getLevelName(config.level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handlers: list[logging.Handler] = []
    if config.file:
        file_handler = _open_log_file(config)
        if file_handler is not None:
            handlers.append(file_handler)
    if config.include_stderr or not handlers:
        handlers.append(logging.StreamHandler(sys.stderr))

    formatter = _make_formatter(config.format)
    drive_filter = DriveContextFilter()
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(drive_filter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers[:] = handlers

    chatty_level = logging.NOTSET if level <= logging.DEBUG else logging.WARNING
    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(chatty_level)
