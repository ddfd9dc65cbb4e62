"""Locating the makemkvcon and 7-Zip executables."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)

MAKEMKVCON_NAMES = ("makemkvcon64", "makemkvcon")
MAKEMKVCON_DEFAULT_PATHS = (
    Path(r"C:\Program Files (x86)\MakeMKV\makemkvcon64.exe"),
    Path(r"C:\Program Files\MakeMKV\makemkvcon64.exe"),
)

SEVEN_ZIP_NAMES = ("7z", "7za")
SEVEN_ZIP_DEFAULT_PATHS = (
    Path(r"C:\Program Files\7-Zip\7z.exe"),
    Path(r"C:\Program Files (x86)\7-Zip\7z.exe"),
)


def _find_tool(
    names: tuple[str, ...],
    configured_path: Path | None,
    default_paths: tuple[Path, ...],
) -> Path | None:
    """Find an executable: configured path, then PATH, then install dirs."""
    if configured_path:
        if configured_path.is_file():
            return configured_path
        logger.warning(
            "Configured path for %s is not a file: %s", names[0], configured_path
        )

    for name in names:
        which_result = shutil.which(name)
        if which_result:
            return Path(which_result)

    for candidate in default_paths:
        if candidate.is_file():
            return candidate
    return None


def find_makemkvcon(configured_path: Path | None = None) -> Path | None:
    """Return the makemkvcon executable, or None if it is not installed."""
    return _find_tool(MAKEMKVCON_NAMES, configured_path, MAKEMKVCON_DEFAULT_PATHS)


def find_seven_zip(configured_path: Path | None = None) -> Path | None:
    """Return the 7-Zip executable, or None if it is not installed."""
    return _find_tool(SEVEN_ZIP_NAMES, configured_path, SEVEN_ZIP_DEFAULT_PATHS)
