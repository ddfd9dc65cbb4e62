"""Mapping between OS drive letters and makemkvcon disc indices.

makemkvcon numbers drives itself (disc:0, disc:1, ...) and that order has no
fixed relation to drive letters. ``makemkvcon -r info disc:9999`` lists every
drive without opening a disc, and its DRV lines give the correspondence.

While backups are running the enumeration query competes with the running
extractions for the drives, so the mapper serves the last known mapping from
its cache instead.
"""

from __future__ import annotations

import logging
import subprocess  # nosec B404
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from pathlib import Path

from dbo.core.subprocess_utils import run_command
from dbo.drives.models import DetectionError, DiscIndexEntry, DiscIndexMapping
from dbo.makemkv.protocol import (
    DVD_TYPE_CODE,
    DriveRecordLine,
    MessageLine,
    UnrecognizedLine,
    parse_line,
)
from dbo.makemkv.tools import find_makemkvcon

logger = logging.getLogger(__name__)

MAPPING_QUERY_ARGS = ("-r", "info", "disc:9999")

CommandRunner = Callable[..., tuple[str, str, int]]


@dataclass(frozen=True)
class _CachedEntry:
    entry: DiscIndexEntry
    cached_at: float


def parse_mapping_output(output: str) -> DiscIndexMapping:
    """Build a mapping from the DRV lines of an enumeration query.

    Only drives reporting media present and a drive letter are kept.
    Empty drives are expected and skipped quietly; any other flag value is
    logged. A malformed DRV line is skipped without affecting the others.
    """
    mapping: DiscIndexMapping = {}
    for raw in output.splitlines():
        if not raw.strip():
            continue
        parsed = parse_line(raw)
        if isinstance(parsed, DriveRecordLine):
            if parsed.drive_letter is None:
                continue
            if parsed.has_media:
                mapping[parsed.drive_letter] = DiscIndexEntry(
                    disc_index=parsed.index,
                    disc_type=parsed.type_code,
                    flags=parsed.flags,
                )
                logger.info(
                    "makemkvcon mapping: %s -> disc:%d",
                    parsed.drive_letter,
                    parsed.index,
                    extra={"type_code": parsed.type_code},
                )
            elif not parsed.is_empty:
                logger.warning(
                    "Drive %s has unexpected flags: %d",
                    parsed.drive_letter,
                    parsed.flags,
                )
        elif isinstance(parsed, UnrecognizedLine) and raw.startswith("DRV:"):
            logger.debug("Could not parse DRV line: %s", raw)
        elif isinstance(parsed, MessageLine):
            lower = parsed.text.lower()
            if "error" in lower or "fail" in lower:
                logger.warning("makemkvcon message: %s", parsed.text)
    return mapping


class DiscIndexMapper:
    """Query and cache the drive letter to disc index mapping.

    Thread-safe: the cache may be read by a scan running in a worker thread
    while the event loop seeds it for a starting backup.
    """

    def __init__(
        self,
        makemkvcon_path: Path | None = None,
        *,
        timeout: float = 30.0,
        cache_ttl: float = 300.0,
        is_busy: Callable[[], bool] | None = None,
        runner: CommandRunner = run_command,
        tool_locator: Callable[[Path | None], Path | None] = find_makemkvcon,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the mapper.

        Args:
            makemkvcon_path: Configured executable; PATH and the default
                install locations are searched when None.
            timeout: Seconds before the enumeration query is abandoned.
            cache_ttl: Seconds a cached entry stays fresh.
            is_busy: Returns True while any backup is running.
            runner: Command runner with run_command's signature.
            tool_locator: Resolves the executable path.
            clock: Monotonic time source.
        """
        self._configured_path = makemkvcon_path
        self._timeout = timeout
        self._cache_ttl = cache_ttl
        self._is_busy = is_busy
        self._runner = runner
        self._tool_locator = tool_locator
        self._clock = clock
        self._cache: dict[str, _CachedEntry] = {}
        self._lock = threading.Lock()
        self._errors: list[DetectionError] = []

    @property
    def errors(self) -> list[DetectionError]:
        """Errors recorded since the last reset_errors()."""
        return list(self._errors)

    def reset_errors(self) -> None:
        self._errors = []

    def set_busy_check(self, is_busy: Callable[[], bool] | None) -> None:
        """Install the "backups running" predicate after construction."""
        self._is_busy = is_busy

    def _busy(self) -> bool:
        return bool(self._is_busy and self._is_busy())

    def _cached_mapping(self) -> DiscIndexMapping:
        with self._lock:
            return {
                letter: replace(cached.entry, from_cache=True)
                for letter, cached in self._cache.items()
            }

    def get_mapping(self, force_refresh: bool = False) -> DiscIndexMapping:
        """Return the current drive letter to disc index mapping.

        Never raises. A missing executable, a timeout or a failing query
        yields whatever the cache holds (possibly nothing) and records a
        DetectionError.

        Args:
            force_refresh: Query the tool even while backups are running.
        """
        if self._busy() and not force_refresh:
            logger.info("Backups running, using cached makemkvcon mapping")
            mapping = self._cached_mapping()
            if not mapping:
                logger.warning("No cached mapping available during backup")
            return mapping

        executable = self._tool_locator(self._configured_path)
        if executable is None:
            error = "makemkvcon executable not found"
            logger.error(error)
            self._errors.append(DetectionError(stage="tool-check", error=error))
            return {}

        start = self._clock()
        logger.info("Querying makemkvcon for disc mapping")
        try:
            stdout, stderr, returncode = self._runner(
                [executable, *MAPPING_QUERY_ARGS], timeout=self._timeout
            )
        except subprocess.TimeoutExpired:
            return self._query_failed(f"query timed out after {self._timeout}s")
        except OSError as e:
            return self._query_failed(str(e))

        mapping = parse_mapping_output(stdout)
        if returncode != 0 and not mapping:
            detail = stderr.strip() or f"exit code {returncode}"
            return self._query_failed(detail)

        now = self._clock()
        with self._lock:
            for letter, entry in mapping.items():
                self._cache[letter] = _CachedEntry(entry=entry, cached_at=now)

        logger.info(
            "makemkvcon query completed in %.1fs: %d drive(s) with discs",
            now - start,
            len(mapping),
        )
        return mapping

    def _query_failed(self, detail: str) -> DiscIndexMapping:
        logger.error("makemkvcon mapping failed: %s", detail)
        self._errors.append(DetectionError(stage="mapping-query", error=detail))
        mapping = self._cached_mapping()
        if mapping:
            logger.info("Using cached mapping due to makemkvcon error")
        return mapping

    def seed_cache(
        self, drive_letter: str, disc_index: int, disc_type: int = DVD_TYPE_CODE
    ) -> None:
        """Record a known mapping, e.g. when a backup starts on a drive."""
        entry = DiscIndexEntry(disc_index=disc_index, disc_type=disc_type, flags=2)
        with self._lock:
            self._cache[drive_letter] = _CachedEntry(entry, self._clock())
        logger.info("Cache seeded for %s -> disc:%d", drive_letter, disc_index)

    def clear_cache_for_drive(self, drive_letter: str) -> None:
        with self._lock:
            self._cache.pop(drive_letter, None)
        logger.debug("Cache cleared for %s", drive_letter)

    def get_cached(self, drive_letter: str) -> DiscIndexEntry | None:
        """Return the fresh cached entry for drive_letter, if any."""
        with self._lock:
            cached = self._cache.get(drive_letter)
        if cached is None or self._clock() - cached.cached_at >= self._cache_ttl:
            return None
        return replace(cached.entry, from_cache=True)

    def has_fresh_cache(self, drive_letter: str) -> bool:
        return self.get_cached(drive_letter) is not None
