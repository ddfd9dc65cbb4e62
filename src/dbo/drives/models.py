"""Data models for drive detection."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class DiscType(str, Enum):
    """Kind of disc in a drive."""

    DVD = "dvd"
    BLURAY = "bluray"


@dataclass(frozen=True)
class Drive:
    """An optical drive holding readable media.

    Attributes:
        id: Position in the scan result; stable only within one scan.
        drive_letter: OS drive letter, e.g. "E:".
        disc_name: Volume label ("Unknown Disc" when it can't be read).
        disc_type: DVD or Blu-ray.
        disc_size_bytes: Total size reported by the filesystem (0 if unknown).
        tool_disc_index: makemkvcon disc:N index used to target this disc.
        has_tool_mapping: False when tool_disc_index is a positional guess.
        warning: Advisory message for the user, if any.
        mapping_from_cache: True when the index came from the mapping cache.
    """

    id: int
    drive_letter: str
    disc_name: str
    disc_type: DiscType
    disc_size_bytes: int
    tool_disc_index: int
    has_tool_mapping: bool
    warning: str | None = None
    mapping_from_cache: bool = False

    @property
    def description(self) -> str:
        return f"Optical Drive ({self.drive_letter})"

    @property
    def is_bluray(self) -> bool:
        return self.disc_type is DiscType.BLURAY

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["disc_type"] = self.disc_type.value
        data["description"] = self.description
        return data


@dataclass(frozen=True)
class DiscIndexEntry:
    """makemkvcon's view of one drive with a disc in it."""

    disc_index: int
    disc_type: int
    flags: int
    from_cache: bool = False


DiscIndexMapping = dict[str, DiscIndexEntry]


@dataclass(frozen=True)
class DetectionError:
    """A non-fatal problem encountered while scanning.

    Attributes:
        stage: Where it happened: "enumerate", "tool-check", "mapping-query",
            "volume-label", "disc-size", "unmapped-drive" or "detection".
        error: Human-readable description.
        drive: Drive letter involved, if any.
    """

    stage: str
    error: str
    drive: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class EjectResult:
    """Outcome of an eject request."""

    success: bool
    drive_letter: str | None = None
    error: str | None = None


@dataclass
class SingleDriveScan:
    """Result of rescanning one drive."""

    drive_letter: str
    has_disc: bool
    drive: Drive | None = None
    errors: list[DetectionError] = field(default_factory=list)
