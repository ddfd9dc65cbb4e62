"""Optical drive detection and control."""

from dbo.drives.detector import DriveEnumerator, disc_type_from_code
from dbo.drives.mapping import DiscIndexMapper, parse_mapping_output
from dbo.drives.models import (
    DetectionError,
    DiscIndexEntry,
    DiscIndexMapping,
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
    WindowsPlatform,
    normalize_drive_letter,
)

__all__ = [
    "DetectionError",
    "DiscIndexEntry",
    "DiscIndexMapper",
    "DiscIndexMapping",
    "DiscType",
    "Drive",
    "DriveEnumerator",
    "DrivePlatform",
    "EjectResult",
    "InvalidDriveLetterError",
    "MediaProbe",
    "PlatformCommandError",
    "SingleDriveScan",
    "WindowsPlatform",
    "disc_type_from_code",
    "normalize_drive_letter",
    "parse_mapping_output",
]
