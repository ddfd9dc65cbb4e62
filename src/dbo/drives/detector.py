"""Optical drive detection.

DriveEnumerator reconciles two views of the hardware: the OS knows drive
letters, volume labels and sizes, while makemkvcon addresses discs by its
own disc:N index. A scan produces one Drive per optical drive holding
readable media, carrying both.
"""

from __future__ import annotations

import asyncio
import logging
import subprocess  # nosec B404

from dbo.drives.mapping import DiscIndexMapper
from dbo.drives.models import (
    DetectionError,
    DiscIndexEntry,
    DiscType,
    Drive,
    EjectResult,
    SingleDriveScan,
)
from dbo.drives.platform import (
    DrivePlatform,
    InvalidDriveLetterError,
    MediaProbe,
    PlatformCommandError,
    normalize_drive_letter,
)
from dbo.makemkv.protocol import BLURAY_TYPE_CODE

logger = logging.getLogger(__name__)

UNKNOWN_DISC_NAME = "Unknown Disc"
UNMAPPED_WARNING = (
    "makemkvcon did not report this drive; using position {index} as disc index"
)

_PLATFORM_ERRORS = (OSError, PlatformCommandError, subprocess.TimeoutExpired)


def disc_type_from_code(type_code: int) -> DiscType:
    """Map a makemkvcon drive type code to a DiscType."""
    return DiscType.BLURAY if type_code == BLURAY_TYPE_CODE else DiscType.DVD


class DriveEnumerator:
    """Scan the system for optical drives with media.

    Example:
        enumerator = DriveEnumerator(WindowsPlatform(), DiscIndexMapper())
        drives = await enumerator.detect_drives()
        for problem in enumerator.detection_errors:
            print(problem.stage, problem.error)
    """

    def __init__(self, platform: DrivePlatform, mapper: DiscIndexMapper) -> None:
        self._platform = platform
        self._mapper = mapper
        self._errors: list[DetectionError] = []
        self._last_error: str | None = None
        self._last_drives: list[Drive] = []

    @property
    def mapper(self) -> DiscIndexMapper:
        return self._mapper

    @property
    def platform(self) -> DrivePlatform:
        return self._platform

    @property
    def detection_errors(self) -> list[DetectionError]:
        """Problems recorded during the most recent scan."""
        return list(self._errors)

    @property
    def last_error(self) -> str | None:
        """Message of the last scan that failed outright, if any."""
        return self._last_error

    @property
    def last_drives(self) -> list[Drive]:
        """Result of the most recent scan."""
        return list(self._last_drives)

    def get_drive(self, drive_id: int) -> Drive | None:
        """Look up a drive from the most recent scan by id."""
        for drive in self._last_drives:
            if drive.id == drive_id:
                return drive
        return None

    async def detect_drives(self) -> list[Drive]:
        """Scan all drives. Blocking OS queries run in a worker thread."""
        return await asyncio.to_thread(self.detect_drives_sync)

    def detect_drives_sync(self) -> list[Drive]:
        """Scan all drives and return those with readable media.

        Never raises; see detection_errors for anything that went wrong.
        """
        logger.info("Starting drive detection")
        self._errors = []
        self._mapper.reset_errors()

        try:
            letters = self._platform.list_drive_letters()
        except _PLATFORM_ERRORS as e:
            logger.error("Drive enumeration failed: %s", e)
            self._last_error = str(e)
            self._errors.append(DetectionError(stage="enumerate", error=str(e)))
            self._last_drives = []
            return []

        optical = [letter for letter in letters if self._check_optical(letter)]
        logger.info("Found %d optical drive(s): %s", len(optical), ", ".join(optical))

        with_media: list[tuple[str, str]] = []
        for letter in optical:
            probe = self._probe(letter)
            if not probe.has_media:
                logger.debug("%s - %s", letter, probe.reason)
                continue
            with_media.append((letter, self._read_label(letter)))

        mapping = self._mapper.get_mapping() if with_media else {}
        self._errors.extend(self._mapper.errors)

        drives = []
        for position, (letter, label) in enumerate(with_media):
            entry = mapping.get(letter)
            drives.append(self._build_drive(position, letter, label, entry))

        self._last_error = None
        self._last_drives = drives
        logger.info("Detection complete: %d drive(s) with media", len(drives))
        if self._errors:
            logger.warning(
                "Detection completed with %d warning(s)/error(s)", len(self._errors)
            )
        return drives

    def _check_optical(self, letter: str) -> bool:
        try:
            return self._platform.is_optical(letter)
        except _PLATFORM_ERRORS as e:
            logger.debug("Could not check drive type for %s: %s", letter, e)
            self._errors.append(
                DetectionError(stage="drive-type", error=str(e), drive=letter)
            )
            return False

    def _probe(self, letter: str) -> MediaProbe:
        try:
            return self._platform.probe_media(letter)
        except _PLATFORM_ERRORS as e:
            return MediaProbe(False, "other", str(e))

    def _read_label(self, letter: str) -> str:
        try:
            label = self._platform.volume_label(letter)
        except _PLATFORM_ERRORS as e:
            logger.warning("Could not get volume label for %s: %s", letter, e)
            self._errors.append(
                DetectionError(stage="volume-label", error=str(e), drive=letter)
            )
            return UNKNOWN_DISC_NAME
        return label or UNKNOWN_DISC_NAME

    def _read_size(self, letter: str) -> int:
        try:
            return self._platform.disc_size(letter)
        except _PLATFORM_ERRORS as e:
            logger.warning("Could not get disc size for %s: %s", letter, e)
            self._errors.append(
                DetectionError(stage="disc-size", error=str(e), drive=letter)
            )
            return 0

    def _detect_type_from_structure(self, letter: str) -> DiscType:
        try:
            if self._platform.path_exists(f"{letter}/BDMV"):
                return DiscType.BLURAY
        except _PLATFORM_ERRORS as e:
            logger.debug("%s: could not detect disc type: %s", letter, e)
        return DiscType.DVD

    def _build_drive(
        self,
        position: int,
        letter: str,
        label: str,
        entry: DiscIndexEntry | None,
    ) -> Drive:
        size = self._read_size(letter)
        if entry is not None:
            drive = Drive(
                id=position,
                drive_letter=letter,
                disc_name=label,
                disc_type=disc_type_from_code(entry.disc_type),
                disc_size_bytes=size,
                tool_disc_index=entry.disc_index,
                has_tool_mapping=True,
                mapping_from_cache=entry.from_cache,
            )
        else:
            warning = UNMAPPED_WARNING.format(index=position)
            self._errors.append(
                DetectionError(stage="unmapped-drive", error=warning, drive=letter)
            )
            drive = Drive(
                id=position,
                drive_letter=letter,
                disc_name=label,
                disc_type=self._detect_type_from_structure(letter),
                disc_size_bytes=size,
                tool_disc_index=position,
                has_tool_mapping=False,
                warning=warning,
            )
        logger.info(
            "%s -> disc:%d (%s, %s)",
            letter,
            drive.tool_disc_index,
            "Blu-ray" if drive.is_bluray else "DVD",
            "mapped" if drive.has_tool_mapping else "fallback",
            extra={"size": size, "from_cache": drive.mapping_from_cache},
        )
        return drive

    async def scan_single_drive(self, drive_letter: str) -> SingleDriveScan:
        """Rescan one drive without touching the others.

        Raises:
            InvalidDriveLetterError: If drive_letter is not a drive letter.
        """
        letter = normalize_drive_letter(drive_letter)
        return await asyncio.to_thread(self._scan_single_sync, letter)

    def _scan_single_sync(self, letter: str) -> SingleDriveScan:
        logger.info("Scanning single drive: %s", letter)
        self._errors = []
        self._mapper.reset_errors()

        probe = self._probe(letter)
        if not probe.has_media:
            logger.info("%s has no readable media (%s)", letter, probe.reason)
            return SingleDriveScan(drive_letter=letter, has_disc=False)

        label = self._read_label(letter)
        entry = self._mapper.get_cached(letter)
        if entry is None:
            entry = self._mapper.get_mapping().get(letter)
            self._errors.extend(self._mapper.errors)

        # Keep the id of a previous scan so callers can match it up
        previous = next(
            (d for d in self._last_drives if d.drive_letter == letter), None
        )
        position = previous.id if previous is not None else 0
        drive = self._build_drive(position, letter, label, entry)
        return SingleDriveScan(
            drive_letter=letter, has_disc=True, drive=drive, errors=list(self._errors)
        )

    async def eject_drive(self, drive_letter: str) -> EjectResult:
        """Open the tray of a drive.

        Input is validated before any command is built; invalid input is
        reported as a failed result and nothing is executed.
        """
        try:
            letter = normalize_drive_letter(drive_letter)
        except InvalidDriveLetterError as e:
            logger.error("Refusing to eject: %s", e)
            return EjectResult(success=False, error=str(e))

        self._mapper.clear_cache_for_drive(letter)
        try:
            await asyncio.to_thread(self._platform.eject, letter)
        except _PLATFORM_ERRORS as e:
            logger.error("Eject failed for %s: %s", letter, e)
            return EjectResult(success=False, drive_letter=letter, error=str(e))
        logger.info("Ejected %s", letter)
        return EjectResult(success=True, drive_letter=letter)

