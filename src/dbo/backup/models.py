"""Data models for backup orchestration."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dbo.fingerprint.models import Fingerprint
from dbo.makemkv.errors import ErrorRecord

if TYPE_CHECKING:
    from dbo.backup.interfaces import ExtractionAdapter


class BackupState(Enum):
    """Lifecycle of one backup, keyed by drive id."""

    IDLE = "idle"
    FINGERPRINT_CAPTURING = "fingerprint_capturing"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            BackupState.COMPLETED,
            BackupState.FAILED,
            BackupState.CANCELLED,
        )


@dataclass
class BackupHandle:
    """Registry entry for an in-flight backup.

    At most one handle exists per drive_id. The handle is inserted before
    fingerprint capture starts, so the drive is reserved from the first
    moment.
    """

    drive_id: int
    disc_name: str
    drive_letter: str | None
    state: BackupState = BackupState.FINGERPRINT_CAPTURING
    adapter: ExtractionAdapter | None = None
    fingerprint: Fingerprint | None = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task[None] | None = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def to_dict(self) -> dict[str, Any]:
        return {
            "drive_id": self.drive_id,
            "disc_name": self.disc_name,
            "drive_letter": self.drive_letter,
            "state": self.state.value,
            "fingerprint": self.fingerprint.to_dict() if self.fingerprint else None,
        }


@dataclass
class BackupResult:
    """Outcome of a finished extraction.

    Attributes:
        path: Final backup folder.
        size_bytes: Size of the final backup.
        already_exists: A complete backup was found and nothing ran.
        is_dvd_image: The tool produced a disc image that was unpacked.
        partial_success: Exit code 0 but some files had recoverable errors.
        errors_encountered: Recoverable error records, in arrival order.
        files_successful: Output files not named in any error record.
        files_failed: Distinct files with recoverable errors.
        percent_recovered: files_successful as a share of all files.
    """

    path: Path
    size_bytes: int = 0
    already_exists: bool = False
    is_dvd_image: bool = False
    partial_success: bool = False
    errors_encountered: list[ErrorRecord] = field(default_factory=list)
    files_successful: int = 0
    files_failed: int = 0
    percent_recovered: float = 100.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": str(self.path),
            "size": self.size_bytes,
            "already_exists": self.already_exists,
            "is_dvd_image": self.is_dvd_image,
            "partial_success": self.partial_success,
            "errors_encountered": [e.to_dict() for e in self.errors_encountered],
            "files_successful": self.files_successful,
            "files_failed": self.files_failed,
            "percent_recovered": self.percent_recovered,
        }


@dataclass(frozen=True)
class StartBackupResult:
    """Immediate answer to a start request; extraction continues afterwards."""

    success: bool
    drive_id: int
    started: bool = False
    fingerprint: Fingerprint | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "drive_id": self.drive_id,
            "started": self.started,
            "fingerprint": self.fingerprint.to_dict() if self.fingerprint else None,
            "error": self.error,
        }


@dataclass(frozen=True)
class BackupProgress:
    """One progress update from an extraction.

    percent is 0-100 and never decreases within one backup.
    """

    percent: float
    current: int = 0
    total: int = 0
    maximum: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "percent": round(self.percent, 2),
            "current": self.current,
            "total": self.total,
            "max": self.maximum,
        }


EVENT_BACKUP_STARTED = "backup-started"
EVENT_BACKUP_PROGRESS = "backup-progress"
EVENT_BACKUP_LOG = "backup-log"
EVENT_BACKUP_COMPLETE = "backup-complete"
EVENT_FINGERPRINT_MATCH = "fingerprint-match"
EVENT_METADATA_UPDATED = "metadata-updated"

EVENT_NAMES = frozenset(
    {
        EVENT_BACKUP_STARTED,
        EVENT_BACKUP_PROGRESS,
        EVENT_BACKUP_LOG,
        EVENT_BACKUP_COMPLETE,
        EVENT_FINGERPRINT_MATCH,
        EVENT_METADATA_UPDATED,
    }
)


@dataclass(frozen=True)
class BackupEvent:
    """A named notification for observers."""

    name: str
    payload: dict[str, Any]
    drive_id: int | None = None

    def __post_init__(self) -> None:
        if self.name not in EVENT_NAMES:
            raise ValueError(f"Unknown event name: {self.name}")
