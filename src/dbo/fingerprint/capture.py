"""Disc fingerprint capture.

Capture must run before extraction starts: makemkvcon rewrites timestamps
on disc-derived files, and the DVD hash covers file creation times.

Capture never fails a backup. Every problem, including a hang on a bad
disc, degrades to an ``unknown`` fingerprint carrying the error.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from dbo.fingerprint.bluray import generate_bluray_fingerprint, is_bluray_structure
from dbo.fingerprint.dvd import generate_dvd_fingerprint, is_dvd_structure
from dbo.fingerprint.models import DiscStructure, Fingerprint, FingerprintType

if TYPE_CHECKING:
    from dbo.backup.interfaces import FingerprintMatchCache

logger = logging.getLogger(__name__)

UNKNOWN_STRUCTURE_ERROR = "Could not detect disc type (no VIDEO_TS or BDMV folder)"


def default_root_path(drive_letter: str) -> Path:
    letter = drive_letter.rstrip(":/\\")
    return Path(letter + ":\\")


def detect_disc_structure(root: Path) -> DiscStructure:
    """Classify the filesystem layout at root. Blu-ray is checked first."""
    try:
        if is_bluray_structure(root):
            return DiscStructure.BLURAY
        if is_dvd_structure(root):
            return DiscStructure.DVD
    except OSError as e:
        logger.debug("Could not inspect %s: %s", root, e)
    return DiscStructure.UNKNOWN


def _bluray_strategy(root: Path, volume_label: str | None) -> Fingerprint:
    bd = generate_bluray_fingerprint(root)
    if bd.content_id:
        fp_type = FingerprintType.CONTENT_ID
    elif bd.disc_id:
        fp_type = FingerprintType.DISC_ID
    elif bd.embedded_title:
        fp_type = FingerprintType.EMBEDDED_TITLE
    else:
        fp_type = FingerprintType.UNKNOWN
    return Fingerprint(
        type=fp_type,
        content_id=bd.content_id,
        disc_id=bd.disc_id,
        organization_id=bd.organization_id,
        embedded_title=bd.embedded_title,
        volume_label=volume_label,
        error=bd.error,
    )


def _dvd_strategy(root: Path, volume_label: str | None) -> Fingerprint:
    dvd = generate_dvd_fingerprint(root)
    return Fingerprint(
        type=FingerprintType.CRC64 if dvd.crc64 else FingerprintType.UNKNOWN,
        crc64=dvd.crc64,
        volume_label=volume_label,
        error=dvd.error,
    )


_STRATEGIES: dict[DiscStructure, Callable[[Path, str | None], Fingerprint]] = {
    DiscStructure.BLURAY: _bluray_strategy,
    DiscStructure.DVD: _dvd_strategy,
}


def capture_fingerprint(root: Path, volume_label: str | None = None) -> Fingerprint:
    """Capture a fingerprint from the disc mounted at root (blocking).

    Strategies are tried in priority order (Blu-ray, then DVD) and the first
    useful result wins. Errors inside a strategy are reported on the
    returned fingerprint, never raised.
    """
    start = time.monotonic()
    structure = detect_disc_structure(root)
    strategy = _STRATEGIES.get(structure)
    if strategy is None:
        logger.warning("Unknown disc type at %s", root)
        return Fingerprint.unknown(UNKNOWN_STRUCTURE_ERROR, volume_label=volume_label)

    logger.info("Detected %s structure at %s", structure.value, root)
    fingerprint = strategy(root, volume_label)
    logger.info(
        "Fingerprint capture completed in %dms",
        (time.monotonic() - start) * 1000,
        extra={
            "type": fingerprint.type.value,
            "useful": fingerprint.is_useful,
            "error": fingerprint.error,
        },
    )
    return fingerprint


def get_best_identifier(fingerprint: Fingerprint | None) -> tuple[str, str] | None:
    """Return (kind, value) for the most specific identifier, if any.

    kind is "dvd_crc64", "bluray_isan" or "bluray_discid".
    """
    if fingerprint is None:
        return None
    if fingerprint.crc64:
        return "dvd_crc64", fingerprint.crc64
    if fingerprint.content_id:
        return "bluray_isan", fingerprint.content_id
    if fingerprint.disc_id:
        return "bluray_discid", fingerprint.disc_id
    return None


def get_search_hint(fingerprint: Fingerprint | None) -> str | None:
    """Return text suitable for a title search: embedded title, else label."""
    if fingerprint is None:
        return None
    return fingerprint.embedded_title or fingerprint.volume_label or None


class FingerprintCapture:
    """Bounded, non-failing fingerprint capture for a drive.

    Example:
        capture = FingerprintCapture(timeout=60, match_cache=ArmDatabase(path))
        fingerprint = await capture.capture("E:", "MOVIE_TITLE")
        if fingerprint.arm_match:
            print(fingerprint.arm_match.title)
    """

    def __init__(
        self,
        *,
        timeout: float = 60.0,
        match_cache: FingerprintMatchCache | None = None,
        root_path: Callable[[str], Path] = default_root_path,
        capture_func: Callable[[Path, str | None], Fingerprint] = capture_fingerprint,
    ) -> None:
        self._timeout = timeout
        self._match_cache = match_cache
        self._root_path = root_path
        self._capture_func = capture_func

    @property
    def match_cache(self) -> FingerprintMatchCache | None:
        return self._match_cache

    async def capture(
        self, drive_letter: str, disc_name: str | None = None
    ) -> Fingerprint:
        """Capture the fingerprint of the disc in drive_letter.

        Returns:
            The first useful fingerprint, or an ``unknown`` one with error
            set. Never raises except for task cancellation.
        """
        logger.info("Capturing fingerprint for %s", drive_letter)
        try:
            fingerprint = await asyncio.wait_for(
                self._capture(drive_letter, disc_name), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Fingerprint capture timed out after %ss for %s",
                self._timeout,
                drive_letter,
            )
            return Fingerprint.unknown(
                f"Fingerprint capture timed out after {self._timeout}s",
                volume_label=disc_name,
            )
        except Exception as e:
            logger.warning("Fingerprint capture failed for %s: %s", drive_letter, e)
            return Fingerprint.unknown(
                str(e) or type(e).__name__, volume_label=disc_name
            )

        if not fingerprint.is_useful:
            fingerprint.type = FingerprintType.UNKNOWN
        return fingerprint

    async def _capture(self, drive_letter: str, disc_name: str | None) -> Fingerprint:
        root = self._root_path(drive_letter)
        fingerprint = await asyncio.to_thread(self._capture_func, root, disc_name)
        if fingerprint.crc64 and self._match_cache is not None:
            await self._lookup(fingerprint)
        return fingerprint

    async def _lookup(self, fingerprint: Fingerprint) -> None:
        assert fingerprint.crc64 is not None
        try:
            match = await self._match_cache.lookup(fingerprint.crc64)
        except Exception as e:
            logger.warning("Fingerprint cache lookup failed: %s", e)
            return
        if match is not None:
            logger.info(
                "Fingerprint match: %s (%s)", match.title, match.year or "unknown year"
            )
            fingerprint.arm_match = match
