"""Parallel backup orchestration.

BackupOrchestrator owns the registry of in-flight backups, at most one per
drive id. Each backup captures a fingerprint, then runs its extraction in
its own asyncio task with its own adapter and subprocess. Because every
process targets a distinct ``disc:N`` with scanning disabled, any number of
drives can extract at once.

All registry mutations happen on the event loop thread. The "already
running" check and the insertion of the reservation handle happen without
an intervening await, which is what keeps two concurrent start requests for
one drive from both succeeding.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from dbo.backup.events import EventBus
from dbo.backup.exceptions import BackupCancelledError, BackupError
from dbo.backup.interfaces import (
    AdapterFactory,
    DiscIdentifier,
    ExtractionAdapter,
    FingerprintMatchCache,
    LoggingNotifier,
    MetadataStore,
    Notifier,
)
from dbo.backup.models import (
    EVENT_BACKUP_COMPLETE,
    EVENT_BACKUP_LOG,
    EVENT_BACKUP_PROGRESS,
    EVENT_BACKUP_STARTED,
    EVENT_FINGERPRINT_MATCH,
    EVENT_METADATA_UPDATED,
    BackupHandle,
    BackupProgress,
    BackupResult,
    BackupState,
    StartBackupResult,
)
from dbo.core.formatting import format_percent
from dbo.drives.mapping import DiscIndexMapper
from dbo.drives.models import Drive, EjectResult
from dbo.fingerprint.capture import FingerprintCapture
from dbo.fingerprint.models import Fingerprint
from dbo.logging.context import drive_context
from dbo.makemkv.protocol import BLURAY_TYPE_CODE, DVD_TYPE_CODE
from dbo.metadata.models import create_empty_metadata

logger = logging.getLogger(__name__)

ALREADY_RUNNING_ERROR = "Backup already running for this drive"
CANCELLED_ERROR = "Backup cancelled"

EjectCallback = Callable[[str], Awaitable[EjectResult]]


class BackupOrchestrator:
    """Start, track and cancel backups across drives.

    Example:
        orchestrator = BackupOrchestrator(
            MakeMKVAdapterFactory(config),
            fingerprint_capture=FingerprintCapture(match_cache=arm_db),
            event_bus=bus,
            metadata_store=JsonMetadataStore(),
            match_cache=arm_db,
            mapper=enumerator.mapper,
            eject=enumerator.eject_drive,
        )
        result = await orchestrator.start_drive_backup(drive)
        await orchestrator.wait_idle()
    """

    def __init__(
        self,
        adapter_factory: AdapterFactory,
        *,
        fingerprint_capture: FingerprintCapture | None = None,
        event_bus: EventBus | None = None,
        metadata_store: MetadataStore | None = None,
        match_cache: FingerprintMatchCache | None = None,
        identifier: DiscIdentifier | None = None,
        notifier: Notifier | None = None,
        mapper: DiscIndexMapper | None = None,
        eject: EjectCallback | None = None,
        eject_after_backup: bool = False,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            adapter_factory: Creates one extraction adapter per backup.
            fingerprint_capture: Captures fingerprints before extraction;
                capture is skipped when None.
            event_bus: Receives all observer events.
            metadata_store: Persists the fingerprint beside the backup.
            match_cache: Remembers CRC64 title matches for future discs.
            identifier: Post-backup identification, run fire-and-forget.
            notifier: User notifications; defaults to logging them.
            mapper: Disc index mapper whose cache is seeded per backup and
                which is told when backups are running.
            eject: Coroutine ejecting a drive letter.
            eject_after_backup: Eject the disc after a successful backup.
        """
        self._adapter_factory = adapter_factory
        self._capture = fingerprint_capture
        self._events = event_bus or EventBus()
        self._metadata_store = metadata_store
        self._match_cache = match_cache
        self._identifier = identifier
        self._notifier = notifier or LoggingNotifier()
        self._mapper = mapper
        self._eject = eject
        self._eject_after_backup = eject_after_backup

        self._registry: dict[int, BackupHandle] = {}
        self._backup_tasks: set[asyncio.Task[None]] = set()
        self._identify_tasks: set[asyncio.Task[None]] = set()

        if mapper is not None:
            mapper.set_busy_check(self.has_running_backups)

    @property
    def events(self) -> EventBus:
        return self._events

    def is_backup_running(self, drive_id: int) -> bool:
        return drive_id in self._registry

    def get_running_backup(self, drive_id: int) -> BackupHandle | None:
        return self._registry.get(drive_id)

    def running_drive_ids(self) -> list[int]:
        return sorted(self._registry)

    def has_running_backups(self) -> bool:
        return bool(self._registry)

    def running_backups(self) -> list[dict[str, Any]]:
        return [self._registry[d].to_dict() for d in sorted(self._registry)]

    async def start_drive_backup(self, drive: Drive) -> StartBackupResult:
        """Start a backup for a drive from the latest scan."""
        return await self.start_backup(
            drive.id,
            drive.tool_disc_index,
            drive.disc_name,
            drive.disc_size_bytes,
            drive.drive_letter,
            disc_type_code=BLURAY_TYPE_CODE if drive.is_bluray else DVD_TYPE_CODE,
        )

    async def start_backup(
        self,
        drive_id: int,
        tool_disc_index: int,
        disc_name: str,
        disc_size: int,
        drive_letter: str | None = None,
        *,
        disc_type_code: int = DVD_TYPE_CODE,
    ) -> StartBackupResult:
        """Start a backup and return as soon as extraction is launched.

        Progress, log lines and the final outcome arrive as events.

        Returns:
            success=False with an error if the drive is busy, the backup
            was cancelled during fingerprint capture, or no adapter could be
            created. Otherwise success=True and started=True.
        """
        if drive_id in self._registry:
            logger.warning("Backup already running for drive %d", drive_id)
            return StartBackupResult(
                success=False, drive_id=drive_id, error=ALREADY_RUNNING_ERROR
            )
        handle = BackupHandle(
            drive_id=drive_id, disc_name=disc_name, drive_letter=drive_letter
        )
        self._registry[drive_id] = handle

        logger.info(
            "Starting backup for %s (disc:%d)",
            disc_name,
            tool_disc_index,
            extra={
                "target_drive": drive_id,
                "disc_size": disc_size,
                "drive_letter": drive_letter,
                "total_running": len(self._registry),
            },
        )

        try:
            with drive_context(drive_id, disc_name):
                fingerprint = await self._capture_fingerprint(drive_letter, disc_name)
        except asyncio.CancelledError:
            self._release(handle)
            raise

        if self._registry.get(drive_id) is not handle or handle.cancelled:
            logger.info(
                "Backup for drive %d cancelled during fingerprint capture", drive_id
            )
            return StartBackupResult(
                success=False,
                drive_id=drive_id,
                fingerprint=fingerprint,
                error=CANCELLED_ERROR,
            )

        handle.fingerprint = fingerprint
        if fingerprint is not None and fingerprint.arm_match is not None:
            self._events.emit(
                EVENT_FINGERPRINT_MATCH,
                {"drive_id": drive_id, "match": fingerprint.arm_match.to_dict()},
                drive_id,
            )
        self._events.emit(
            EVENT_BACKUP_STARTED,
            {
                "drive_id": drive_id,
                "fingerprint": fingerprint.to_dict() if fingerprint else None,
            },
            drive_id,
        )

        try:
            adapter = self._adapter_factory.create()
        except Exception as e:
            logger.error("Could not create extraction adapter: %s", e)
            self._release(handle)
            self._events.emit(
                EVENT_BACKUP_COMPLETE,
                {"drive_id": drive_id, "success": False, "error": str(e)},
                drive_id,
            )
            return StartBackupResult(
                success=False, drive_id=drive_id, fingerprint=fingerprint, error=str(e)
            )

        handle.adapter = adapter
        handle.state = BackupState.RUNNING
        if self._mapper is not None and drive_letter:
            self._mapper.seed_cache(drive_letter, tool_disc_index, disc_type_code)

        task = asyncio.create_task(
            self._run_backup(handle, adapter, tool_disc_index, disc_size),
            name=f"backup-drive-{drive_id}",
        )
        handle.task = task
        self._backup_tasks.add(task)
        task.add_done_callback(self._backup_tasks.discard)

        return StartBackupResult(
            success=True, drive_id=drive_id, started=True, fingerprint=fingerprint
        )

    async def _capture_fingerprint(
        self, drive_letter: str | None, disc_name: str
    ) -> Fingerprint | None:
        if self._capture is None:
            return None
        if not drive_letter:
            logger.warning("No drive letter provided, skipping fingerprint capture")
            return None
        fingerprint = await self._capture.capture(drive_letter, disc_name)
        if fingerprint.is_useful:
            logger.info(
                "Fingerprint captured: %s",
                fingerprint.type.value,
                extra={
                    "crc64": fingerprint.crc64,
                    "content_id": fingerprint.content_id,
                    "embedded_title": fingerprint.embedded_title,
                },
            )
        return fingerprint

    def cancel_backup(self, drive_id: int) -> bool:
        """Cancel the backup for drive_id.

        Requests termination and drops the registry entry immediately; the
        process may still be exiting when this returns.

        Returns:
            False if no backup was running for the drive.
        """
        handle = self._registry.get(drive_id)
        if handle is None:
            return False
        logger.info("Cancelling backup for drive %d (%s)", drive_id, handle.disc_name)
        handle.cancel_event.set()
        handle.state = BackupState.CANCELLED
        if handle.adapter is not None:
            handle.adapter.cancel()
        del self._registry[drive_id]
        return True

    def cancel_all(self) -> int:
        """Cancel every running backup and return how many were cancelled."""
        return sum(1 for d in list(self._registry) if self.cancel_backup(d))

    async def wait_idle(self, include_identification: bool = False) -> None:
        """Wait until every launched backup task has finished.

        With include_identification, identification tasks spawned by those
        backups are waited for as well.
        """
        while True:
            tasks = {t for t in self._backup_tasks if not t.done()}
            if include_identification:
                tasks |= {t for t in self._identify_tasks if not t.done()}
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel running backups and identification, then wait for both."""
        cancelled = self.cancel_all()
        if cancelled:
            logger.info("Shutdown: cancelled %d running backup(s)", cancelled)
        for task in list(self._identify_tasks):
            task.cancel()
        await self.wait_idle(include_identification=True)

    def _release(self, handle: BackupHandle) -> None:
        if self._registry.get(handle.drive_id) is handle:
            del self._registry[handle.drive_id]

    async def _run_backup(
        self,
        handle: BackupHandle,
        adapter: ExtractionAdapter,
        disc_index: int,
        disc_size: int,
    ) -> None:
        drive_id = handle.drive_id
        disc_name = handle.disc_name

        def on_progress(progress: BackupProgress) -> None:
            payload = {"drive_id": drive_id, **progress.to_dict()}
            self._events.emit(EVENT_BACKUP_PROGRESS, payload, drive_id)

        def on_log(line: str) -> None:
            logger.debug("[%s] %s", disc_name, line)
            payload = {"drive_id": drive_id, "line": line}
            self._events.emit(EVENT_BACKUP_LOG, payload, drive_id)

        with drive_context(drive_id, disc_name):
            try:
                result = await adapter.run_backup(
                    disc_index, disc_name, disc_size, on_progress, on_log
                )
            except (BackupCancelledError, asyncio.CancelledError) as e:
                if isinstance(e, asyncio.CancelledError):
                    adapter.cancel()
                self._report_cancelled(handle, str(e) or CANCELLED_ERROR)
                if isinstance(e, asyncio.CancelledError):
                    raise
            except Exception as e:
                handle.state = BackupState.FAILED
                if isinstance(e, BackupError):
                    logger.error("Backup failed for %s: %s", disc_name, e)
                else:
                    logger.exception("Unexpected error during backup of %s", disc_name)
                self._events.emit(
                    EVENT_BACKUP_COMPLETE,
                    {"drive_id": drive_id, "success": False, "error": str(e)},
                    drive_id,
                )
                self._notifier.notify("Backup Failed", f"{disc_name}: {e}", "error")
            else:
                if handle.cancelled:
                    # Finished before the cancel request reached the adapter
                    self._report_cancelled(handle, CANCELLED_ERROR)
                else:
                    handle.state = BackupState.COMPLETED
                    await self._on_success(handle, result)
            finally:
                self._release(handle)

    def _report_cancelled(self, handle: BackupHandle, error: str) -> None:
        handle.state = BackupState.CANCELLED
        logger.info("Backup cancelled for %s", handle.disc_name)
        self._events.emit(
            EVENT_BACKUP_COMPLETE,
            {
                "drive_id": handle.drive_id,
                "success": False,
                "cancelled": True,
                "error": error,
            },
            handle.drive_id,
        )

    async def _on_success(self, handle: BackupHandle, result: BackupResult) -> None:
        drive_id = handle.drive_id
        disc_name = handle.disc_name
        fingerprint = handle.fingerprint
        logger.info(
            "Backup completed for %s",
            disc_name,
            extra={"size": result.size_bytes, "path": str(result.path)},
        )

        if fingerprint is not None:
            await self._store_fingerprint(result.path, disc_name, fingerprint)

        self._events.emit(
            EVENT_BACKUP_COMPLETE,
            {
                "drive_id": drive_id,
                "success": True,
                "fingerprint": fingerprint.to_dict() if fingerprint else None,
                **result.to_dict(),
            },
            drive_id,
        )

        if self._identifier is not None:
            self._spawn_identification(result.path, disc_name)

        if result.partial_success:
            self._notifier.notify(
                "Backup Complete (with errors)",
                f"{disc_name}: {format_percent(result.percent_recovered)}% of "
                f"files recovered, {result.files_failed} file(s) had errors.",
                "warning",
            )
        else:
            self._notifier.notify(
                "Backup Complete",
                f"{disc_name} has been successfully backed up.",
                "success",
            )

        if self._eject_after_backup and handle.drive_letter and self._eject:
            await self._auto_eject(handle.drive_letter)

    async def _store_fingerprint(
        self, backup_path: Path, disc_name: str, fingerprint: Fingerprint
    ) -> None:
        if self._metadata_store is not None:
            try:
                metadata = await self._metadata_store.load_metadata(backup_path)
                if metadata is None:
                    metadata = create_empty_metadata(volume_label=disc_name)
                metadata.fingerprint = fingerprint.to_dict()
                await self._metadata_store.save_metadata(backup_path, metadata)
                logger.info("Fingerprint stored for %s", disc_name)
            except Exception as e:
                logger.warning("Failed to store fingerprint: %s", e)

        cache = self._match_cache
        if cache is not None and fingerprint.crc64 and fingerprint.arm_match:
            try:
                await cache.add_to_cache(fingerprint.crc64, fingerprint.arm_match)
            except Exception as e:
                logger.warning("Failed to cache fingerprint match: %s", e)

    def _spawn_identification(self, backup_path: Path, disc_name: str) -> None:
        logger.info("Starting auto-identification for %s", disc_name)
        task = asyncio.create_task(
            self._identify(backup_path, disc_name), name=f"identify-{disc_name}"
        )
        self._identify_tasks.add(task)
        task.add_done_callback(self._identify_tasks.discard)

    async def _identify(self, backup_path: Path, disc_name: str) -> None:
        assert self._identifier is not None
        try:
            result = await self._identifier.identify(backup_path, disc_name)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Auto-identification error for %s", disc_name)
            return
        if result.success:
            logger.info("Auto-identification completed for %s", disc_name)
            self._events.emit(EVENT_METADATA_UPDATED, {"path": str(backup_path)})
        else:
            logger.warning(
                "Auto-identification failed for %s: %s", disc_name, result.error
            )

    async def _auto_eject(self, drive_letter: str) -> None:
        assert self._eject is not None
        logger.info("Auto-ejecting disc from %s", drive_letter)
        try:
            result = await self._eject(drive_letter)
        except Exception as e:
            logger.warning("Eject error: %s", e)
            return
        if result.success:
            self._notifier.notify("Disc Ejected", f"{drive_letter} has been ejected.")
        else:
            logger.warning("Failed to eject %s: %s", drive_letter, result.error)
