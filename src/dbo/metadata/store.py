"""JSON file metadata store.

Each backup folder holds its own ``metadata.json``. Reads and writes run in
a worker thread; writes go through a temporary file and an atomic rename so
a crash never leaves a truncated document behind.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from pydantic import ValidationError

from dbo.fingerprint.models import utc_now_iso
from dbo.metadata.models import DiscMetadata

logger = logging.getLogger(__name__)

METADATA_FILENAME = "metadata.json"


class JsonMetadataStore:
    """Load and save DiscMetadata beside a backup."""

    def metadata_path(self, backup_path: Path) -> Path:
        return Path(backup_path) / METADATA_FILENAME

    def has_metadata(self, backup_path: Path) -> bool:
        return self.metadata_path(backup_path).exists()

    def load_metadata_sync(self, backup_path: Path) -> DiscMetadata | None:
        path = self.metadata_path(backup_path)
        if not path.exists():
            return None
        try:
            return DiscMetadata.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError, ValueError) as e:
            logger.error("Failed to load metadata from %s: %s", path, e)
            return None

    def save_metadata_sync(self, backup_path: Path, metadata: DiscMetadata) -> None:
        metadata.updated_at = utc_now_iso()
        path = self.metadata_path(backup_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_text(
            metadata.model_dump_json(by_alias=True, indent=2), encoding="utf-8"
        )
        tmp.replace(path)
        logger.debug("Saved metadata to %s", path)

    async def load_metadata(self, backup_path: Path) -> DiscMetadata | None:
        """Return the backup's metadata, or None if absent or unreadable."""
        return await asyncio.to_thread(self.load_metadata_sync, backup_path)

    async def save_metadata(self, backup_path: Path, metadata: DiscMetadata) -> None:
        """Write the backup's metadata.

        Raises:
            OSError: If the file cannot be written.
        """
        await asyncio.to_thread(self.save_metadata_sync, backup_path, metadata)
