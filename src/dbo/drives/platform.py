"""Operating-system drive capabilities.

DriveEnumerator only talks to the OS through the DrivePlatform protocol, so
detection and orchestration logic can be exercised with an in-memory
double. WindowsPlatform is the production implementation.
"""

from __future__ import annotations

import errno
import logging
import os
import re
import subprocess  # nosec B404
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from dbo.core.subprocess_utils import run_command

logger = logging.getLogger(__name__)

_DRIVE_LETTER_PATTERN = re.compile(r"^([A-Za-z]):?\\?$")
_VOLUME_LABEL_PATTERN = re.compile(r"Volume in drive .+ is (.+)")
_TOTAL_BYTES_PATTERN = re.compile(r"Total bytes\s*:\s*([\d,.]+)")

CommandRunner = Callable[..., tuple[str, str, int]]


class InvalidDriveLetterError(ValueError):
    """Raised when input is not a single drive letter."""


class PlatformCommandError(RuntimeError):
    """Raised when an OS command fails."""


def normalize_drive_letter(value: str) -> str:
    """Validate a drive letter and return it as "X:".

    Accepts "e", "E", "E:" and "E:\\". Everything else raises before any
    command could be built from it.

    Raises:
        InvalidDriveLetterError: If value is not a single drive letter.
    """
    if not isinstance(value, str):
        raise InvalidDriveLetterError(f"Invalid drive letter: {value!r}")
    match = _DRIVE_LETTER_PATTERN.fullmatch(value)
    if match is None:
        raise InvalidDriveLetterError(f"Invalid drive letter: {value!r}")
    return f"{match.group(1).upper()}:"


@dataclass(frozen=True)
class MediaProbe:
    """Whether a drive has readable media, and why not if it doesn't.

    reason is one of "no-disc", "busy", "access-denied" or "other" when
    has_media is False.
    """

    has_media: bool
    reason: str | None = None
    detail: str | None = None


def classify_media_error(error: OSError) -> str:
    """Map an OSError from reading a drive root to a MediaProbe reason."""
    if error.errno in (errno.ENOENT, errno.ENXIO, errno.ENODEV) or isinstance(
        error, FileNotFoundError
    ):
        return "no-disc"
    if error.errno == errno.EBUSY:
        return "busy"
    if error.errno in (errno.EACCES, errno.EPERM) or isinstance(
        error, PermissionError
    ):
        return "access-denied"
    return "other"


@runtime_checkable
class DrivePlatform(Protocol):
    """OS queries needed to enumerate and eject optical drives.

    Letters are passed and returned in "X:" form. Every method may raise
    OSError, PlatformCommandError or subprocess.TimeoutExpired; callers
    convert those into DetectionErrors.
    """

    def list_drive_letters(self) -> list[str]:
        """Return all drive letters known to the OS."""
        ...

    def is_optical(self, letter: str) -> bool:
        """Return True if the drive is a CD/DVD/BD drive."""
        ...

    def probe_media(self, letter: str) -> MediaProbe:
        """Check whether the drive's root can be read."""
        ...

    def volume_label(self, letter: str) -> str | None:
        """Return the volume label, or None if the disc has none."""
        ...

    def disc_size(self, letter: str) -> int:
        """Return the total size of the mounted volume in bytes."""
        ...

    def path_exists(self, path: str) -> bool:
        """Return True if path (e.g. "E:/BDMV") exists."""
        ...

    def root_path(self, letter: str) -> Path:
        """Return the filesystem path of the drive's root."""
        ...

    def eject(self, letter: str) -> None:
        """Open the drive tray."""
        ...


class WindowsPlatform:
    """DrivePlatform backed by fsutil, cmd and PowerShell."""

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        runner: CommandRunner = run_command,
    ) -> None:
        self._timeout = timeout
        self._runner = runner

    def _run(self, args: list[str], timeout: float | None = None) -> str:
        stdout, stderr, returncode = self._runner(
            args, timeout=timeout or self._timeout
        )
        if returncode != 0:
            raise PlatformCommandError(
                f"{args[0]} exited with {returncode}: "
                f"{stderr.strip() or stdout.strip()}"
            )
        return stdout

    def list_drive_letters(self) -> list[str]:
        # "Drives: C:\ D:\ E:\"
        output = self._run(["fsutil", "fsinfo", "drives"])
        letters = []
        for token in output.replace("Drives:", "").split():
            token = token.rstrip("\\")
            if re.fullmatch(r"[A-Z]:", token):
                letters.append(token)
        return letters

    def is_optical(self, letter: str) -> bool:
        output = self._run(["fsutil", "fsinfo", "drivetype", letter])
        return "CD-ROM" in output

    def probe_media(self, letter: str) -> MediaProbe:
        try:
            os.listdir(f"{letter}/")
        except OSError as e:
            return MediaProbe(False, classify_media_error(e), str(e))
        return MediaProbe(True)

    def volume_label(self, letter: str) -> str | None:
        output = self._run(["cmd", "/c", "vol", letter])
        match = _VOLUME_LABEL_PATTERN.search(output)
        return match.group(1).strip() if match else None

    def disc_size(self, letter: str) -> int:
        output = self._run(["fsutil", "volume", "diskfree", letter])
        match = _TOTAL_BYTES_PATTERN.search(output)
        if match is None:
            return 0
        return int(re.sub(r"[,.]", "", match.group(1)))

    def path_exists(self, path: str) -> bool:
        return os.path.exists(path)

    def root_path(self, letter: str) -> Path:
        return Path(f"{letter}\\")

    def eject(self, letter: str) -> None:
        letter = normalize_drive_letter(letter)
        script = (
            "(New-Object -comObject Shell.Application)"
            f'.NameSpace(17).ParseName("{letter}").InvokeVerb("Eject")'
        )
        try:
            self._run(["powershell", "-NoProfile", "-Command", script], timeout=15)
        except subprocess.TimeoutExpired as e:
            raise PlatformCommandError(f"Eject timed out for {letter}") from e
