"""Collaborator protocols for the backup orchestrator.

The orchestrator depends only on these seams. Production implementations
live elsewhere (MakeMKVAdapter, JsonMetadataStore, ArmDatabase); tests
substitute in-memory doubles.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from dbo.backup.models import BackupProgress, BackupResult
    from dbo.fingerprint.models import ArmMatch
    from dbo.metadata.models import DiscMetadata

logger = logging.getLogger(__name__)


class ExtractionAdapter(Protocol):
    """Runs one extraction. A fresh instance is used for every backup."""

    async def run_backup(
        self,
        disc_index: int,
        disc_name: str,
        disc_size: int,
        on_progress: Callable[[BackupProgress], None] | None = None,
        on_log: Callable[[str], None] | None = None,
    ) -> BackupResult:
        """Extract the disc and return the outcome.

        Raises:
            BackupCancelledError: If cancelled.
            BackupError: On any failure.
        """
        ...

    def cancel(self) -> None:
        """Request termination of the running extraction without waiting."""
        ...


class AdapterFactory(Protocol):
    def create(self) -> ExtractionAdapter: ...


class MetadataStore(Protocol):
    """Reads and writes the metadata document beside a backup."""

    async def load_metadata(self, backup_path: Path) -> DiscMetadata | None: ...

    async def save_metadata(
        self, backup_path: Path, metadata: DiscMetadata
    ) -> None: ...


class FingerprintMatchCache(Protocol):
    """Maps DVD CRC64 hashes to known titles."""

    async def lookup(self, crc64: str) -> ArmMatch | None: ...

    async def add_to_cache(self, crc64: str, match: ArmMatch) -> None: ...


@dataclass(frozen=True)
class IdentifyResult:
    success: bool
    metadata: dict[str, Any] | None = None
    error: str | None = None


class DiscIdentifier(Protocol):
    """Post-backup identification pipeline.

    Runs after a backup completes and never affects its outcome.
    """

    async def identify(self, backup_path: Path, disc_name: str) -> IdentifyResult: ...


class Notifier(Protocol):
    """User-facing notifications (toast, tray balloon, ...).

    level is "info", "success", "warning" or "error".
    """

    def notify(self, title: str, body: str, level: str = "info") -> None: ...


_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class LoggingNotifier:
    """Notifier that writes notifications to the log."""

    def notify(self, title: str, body: str, level: str = "info") -> None:
        logger.log(_LEVELS.get(level, logging.INFO), "%s: %s", title, body)
