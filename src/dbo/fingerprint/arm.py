"""Local cache of DVD CRC64 to title matches.

Entries come from two places: titles confirmed locally after a backup
(source "local") and the Automatic Ripping Machine community database
(source "arm"), downloaded on demand by ``sync()``. Keys are lower-case
CRC64 hex strings.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from dbo.fingerprint.models import ArmMatch, utc_now_iso

logger = logging.getLogger(__name__)

CACHE_VERSION = 1
EXACT_MATCH_CONFIDENCE = 0.99


class ArmEntry(BaseModel):
    """One cached title. Unknown fields from the remote database are kept."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    title: str
    year: int | None = None
    type: str = "movie"
    source: str = "local"
    added_at: str | None = Field(default=None, alias="addedAt")


class ArmCacheFile(BaseModel):
    """On-disk layout of the cache file."""

    model_config = ConfigDict(populate_by_name=True)

    version: int = CACHE_VERSION
    last_sync: str | None = Field(default=None, alias="lastSync")
    saved_at: str | None = Field(default=None, alias="savedAt")
    entries: dict[str, ArmEntry] = Field(default_factory=dict)


@dataclass(frozen=True)
class SyncResult:
    success: bool
    added: int = 0
    error: str | None = None


@dataclass(frozen=True)
class CacheStats:
    entries: int
    cache_file: Path
    last_sync: str | None


def _coerce_year(value: Any) -> int | None:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


class ArmDatabase:
    """CRC64 match cache backed by a JSON file.

    The file is read once, on first use. Every write rewrites the whole file.
    An unreadable or corrupt file is logged and treated as empty.
    """

    def __init__(
        self,
        cache_file: Path,
        *,
        database_url: str = (
            "https://raw.githubusercontent.com/automatic-ripping-machine/"
            "dvd-crc64-database/main/database.json"
        ),
        sync_timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the cache.

        Args:
            cache_file: JSON file holding the cache.
            database_url: Community database location used by sync().
            sync_timeout: HTTP timeout in seconds for sync().
            transport: Optional httpx transport (tests use MockTransport).
        """
        self._cache_file = cache_file
        self._database_url = database_url
        self._sync_timeout = sync_timeout
        self._transport = transport
        self._entries: dict[str, ArmEntry] = {}
        self._last_sync: str | None = None
        self._loaded = False
        self._lock = asyncio.Lock()

    @property
    def cache_file(self) -> Path:
        return self._cache_file

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        async with self._lock:
            if self._loaded:
                return
            cache = await asyncio.to_thread(self._read_file)
            self._entries = {k.lower(): v for k, v in cache.entries.items()}
            self._last_sync = cache.last_sync
            self._loaded = True
            logger.info("Loaded %d entries from match cache", len(self._entries))

    def _read_file(self) -> ArmCacheFile:
        if not self._cache_file.exists():
            logger.info("No match cache file found, starting fresh")
            return ArmCacheFile()
        try:
            return ArmCacheFile.model_validate_json(
                self._cache_file.read_text(encoding="utf-8")
            )
        except (OSError, ValidationError, ValueError) as e:
            logger.error("Failed to load match cache %s: %s", self._cache_file, e)
            return ArmCacheFile()

    def _write_file(self, cache: ArmCacheFile) -> None:
        self._cache_file.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._cache_file.with_suffix(".tmp")
        tmp.write_text(
            cache.model_dump_json(by_alias=True, indent=2, exclude_none=False),
            encoding="utf-8",
        )
        tmp.replace(self._cache_file)

    async def _save(self) -> None:
        cache = ArmCacheFile(
            last_sync=self._last_sync,
            saved_at=utc_now_iso(),
            entries=dict(self._entries),
        )
        try:
            await asyncio.to_thread(self._write_file, cache)
        except OSError as e:
            logger.error("Failed to save match cache: %s", e)
            return
        logger.debug("Saved %d entries to match cache", len(self._entries))

    async def lookup(self, crc64: str) -> ArmMatch | None:
        """Return the cached title for crc64, if any."""
        await self._ensure_loaded()
        entry = self._entries.get(crc64.lower())
        if entry is None:
            logger.debug("Match cache miss for %s", crc64)
            return None
        logger.info("Match cache hit for %s: %r", crc64, entry.title)
        return ArmMatch(
            title=entry.title,
            year=entry.year,
            media_type=entry.type or "movie",
            source=entry.source or "local",
            confidence=EXACT_MATCH_CONFIDENCE,
        )

    async def add_to_cache(self, crc64: str, match: ArmMatch) -> None:
        """Record a confirmed title for crc64, replacing any previous entry."""
        await self._ensure_loaded()
        self._entries[crc64.lower()] = ArmEntry(
            title=match.title,
            year=match.year,
            type=match.media_type or "movie",
            source="local",
            added_at=utc_now_iso(),
        )
        await self._save()
        logger.info("Added to match cache: %s -> %r", crc64, match.title)

    async def _fetch_database(self) -> dict[str, Any]:
        async with httpx.AsyncClient(
            timeout=self._sync_timeout, transport=self._transport
        ) as client:
            response = await client.get(self._database_url)
            response.raise_for_status()
            return response.json()

    async def sync(self) -> SyncResult:
        """Merge the community database into the cache.

        Existing entries win; only unseen hashes are added, with source
        "arm". Network and format errors are reported on the result.
        """
        await self._ensure_loaded()
        logger.info("Syncing with ARM community database")
        try:
            remote = await self._fetch_database()
        except httpx.HTTPStatusError as e:
            error = f"HTTP {e.response.status_code}"
            logger.error("ARM sync failed: %s", error)
            return SyncResult(success=False, error=error)
        except httpx.HTTPError as e:
            logger.error("ARM sync failed: %s", e)
            return SyncResult(success=False, error=str(e) or type(e).__name__)
        except json.JSONDecodeError:
            logger.error("ARM sync failed: invalid JSON response")
            return SyncResult(success=False, error="Invalid JSON response")

        remote_entries = remote.get("entries") if isinstance(remote, dict) else None
        if not isinstance(remote_entries, dict):
            return SyncResult(success=False, error="Invalid database format")

        added = 0
        for crc64, info in remote_entries.items():
            key = str(crc64).lower()
            if key in self._entries or not isinstance(info, dict):
                continue
            if not info.get("title"):
                continue
            data = {**info, "year": _coerce_year(info.get("year")), "source": "arm"}
            try:
                self._entries[key] = ArmEntry.model_validate(data)
            except ValidationError as e:
                logger.debug("Skipping malformed ARM entry %s: %s", crc64, e)
                continue
            added += 1

        self._last_sync = utc_now_iso()
        await self._save()
        logger.info("ARM sync complete: added %d new entries", added)
        return SyncResult(success=True, added=added)

    async def stats(self) -> CacheStats:
        await self._ensure_loaded()
        return CacheStats(
            entries=len(self._entries),
            cache_file=self._cache_file,
            last_sync=self._last_sync,
        )

    async def clear(self) -> None:
        """Drop all entries and delete the cache file."""
        self._entries = {}
        self._last_sync = None
        self._loaded = True
        try:
            await asyncio.to_thread(self._cache_file.unlink, missing_ok=True)
        except OSError as e:
            logger.error("Failed to clear match cache: %s", e)
            return
        logger.info("Match cache cleared")
