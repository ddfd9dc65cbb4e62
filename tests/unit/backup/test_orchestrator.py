"""Tests for backup/orchestrator.py."""

from __future__ import annotations

import asyncio
from pathlib import Path
from types import SimpleNamespace

import pytest
from fakes import (
    DRIVE_LIST_OUTPUT,
    FakeAdapter,
    FakeAdapterFactory,
    FakeCapture,
    FakeEject,
    FakeIdentifier,
    FakeMatchCache,
    FakeMetadataStore,
    FakeNotifier,
    FakeRunner,
    drain,
    found_tool,
)

from dbo.backup.events import EventBus
from dbo.backup.exceptions import BackupError
from dbo.backup.interfaces import IdentifyResult
from dbo.backup.models import (
    EVENT_BACKUP_COMPLETE,
    EVENT_BACKUP_LOG,
    EVENT_BACKUP_PROGRESS,
    EVENT_BACKUP_STARTED,
    EVENT_FINGERPRINT_MATCH,
    EVENT_METADATA_UPDATED,
    BackupResult,
    BackupState,
)
from dbo.backup.orchestrator import (
    ALREADY_RUNNING_ERROR,
    CANCELLED_ERROR,
    BackupOrchestrator,
)
from dbo.drives.mapping import DiscIndexMapper
from dbo.drives.models import DiscType, Drive
from dbo.fingerprint.models import ArmMatch, Fingerprint, FingerprintType
from dbo.makemkv.errors import ErrorRecord
from dbo.metadata.models import create_empty_metadata

pytestmark = pytest.mark.asyncio


def _setup(
    adapters: list[FakeAdapter] | None = None,
    capture: FakeCapture | None = None,
    **kwargs,
) -> SimpleNamespace:
    parts = SimpleNamespace(
        factory=kwargs.pop("factory", None) or FakeAdapterFactory(adapters),
        capture=capture or FakeCapture(),
        bus=EventBus(),
        store=FakeMetadataStore(kwargs.pop("fail_save", False)),
        cache=FakeMatchCache(),
        notifier=FakeNotifier(),
    )
    parts.orchestrator = BackupOrchestrator(
        parts.factory,
        fingerprint_capture=parts.capture,
        event_bus=parts.bus,
        metadata_store=parts.store,
        match_cache=parts.cache,
        notifier=parts.notifier,
        **kwargs,
    )
    parts.queue = parts.bus.subscribe_queue()
    return parts


def _names(events) -> list[str]:
    return [e.name for e in events]


def _complete(events) -> list[dict]:
    return [e.payload for e in events if e.name == EVENT_BACKUP_COMPLETE]


async def _start(orchestrator: BackupOrchestrator, drive_id: int = 0, **kwargs):
    kwargs.setdefault("drive_letter", "E:")
    return await orchestrator.start_backup(
        drive_id,
        kwargs.pop("tool_disc_index", drive_id),
        kwargs.pop("disc_name", f"DISC_{drive_id}"),
        kwargs.pop("disc_size", 1000),
        **kwargs,
    )


class TestStartBackup:
    """Tests for the happy path of start_backup."""

    async def test_success_flow(self) -> None:
        adapter = FakeAdapter(progress=(10.0, 55.5), logs=("Task: Copying",))
        parts = _setup([adapter])

        result = await _start(parts.orchestrator, 0, disc_name="MOVIE")

        assert result.success
        assert result.started
        assert result.fingerprint.crc64 == "8a2b48b0fdb13115"
        assert parts.orchestrator.is_backup_running(0)

        await parts.orchestrator.wait_idle()

        events = drain(parts.queue)
        assert _names(events) == [
            EVENT_BACKUP_STARTED,
            EVENT_BACKUP_LOG,
            EVENT_BACKUP_PROGRESS,
            EVENT_BACKUP_PROGRESS,
            EVENT_BACKUP_COMPLETE,
        ]
        assert all(e.drive_id == 0 for e in events)
        assert events[3].payload["percent"] == 55.5
        complete = events[-1].payload
        assert complete["success"]
        assert complete["drive_id"] == 0
        assert complete["path"] == str(Path("/backups/backup/MOVIE"))
        assert complete["fingerprint"]["crc64"] == "8a2b48b0fdb13115"
        assert adapter.calls == [(0, "MOVIE", 1000)]
        assert not parts.orchestrator.is_backup_running(0)
        assert parts.notifier.titles == ["Backup Complete"]

    async def test_fingerprint_is_stored_beside_backup(self) -> None:
        parts = _setup()
        await _start(parts.orchestrator, 0, disc_name="MOVIE")
        await parts.orchestrator.wait_idle()

        metadata = parts.store.documents[Path("/backups/backup/MOVIE")]
        assert metadata.fingerprint["type"] == "crc64"
        assert metadata.fingerprint["crc64"] == "8a2b48b0fdb13115"
        assert metadata.disc.volume_label == "MOVIE"

    async def test_existing_metadata_is_updated(self) -> None:
        parts = _setup()
        path = Path("/backups/backup/MOVIE")
        parts.store.documents[path] = create_empty_metadata(volume_label="OLD")

        await _start(parts.orchestrator, 0, disc_name="MOVIE")
        await parts.orchestrator.wait_idle()

        stored = parts.store.documents[path]
        assert stored.disc.volume_label == "OLD"
        assert stored.fingerprint is not None

    async def test_metadata_failure_does_not_fail_backup(self) -> None:
        parts = _setup(fail_save=True)
        await _start(parts.orchestrator)
        await parts.orchestrator.wait_idle()

        assert _complete(drain(parts.queue))[0]["success"]

    async def test_fingerprint_match_event_and_cache(self) -> None:
        match = ArmMatch(title="The Movie", year=1999, source="arm")
        capture = FakeCapture(
            Fingerprint(
                type=FingerprintType.CRC64, crc64="8a2b48b0fdb13115", arm_match=match
            )
        )
        parts = _setup(capture=capture)

        await _start(parts.orchestrator)
        await parts.orchestrator.wait_idle()

        events = drain(parts.queue)
        assert _names(events)[:2] == [EVENT_FINGERPRINT_MATCH, EVENT_BACKUP_STARTED]
        assert events[0].payload["match"]["title"] == "The Movie"
        assert parts.cache.added == [("8a2b48b0fdb13115", match)]

    async def test_no_drive_letter_skips_fingerprint(self) -> None:
        parts = _setup()
        result = await _start(parts.orchestrator, drive_letter=None)
        await parts.orchestrator.wait_idle()

        assert result.success
        assert result.fingerprint is None
        assert parts.capture.calls == []
        assert parts.store.documents == {}
        assert _complete(drain(parts.queue))[0]["fingerprint"] is None

    async def test_unknown_fingerprint_is_still_stored(self) -> None:
        capture = FakeCapture(Fingerprint.unknown("no VIDEO_TS"))
        parts = _setup(capture=capture)

        await _start(parts.orchestrator, disc_name="MOVIE")
        await parts.orchestrator.wait_idle()

        stored = parts.store.documents[Path("/backups/backup/MOVIE")]
        assert stored.fingerprint["type"] == "unknown"
        assert stored.fingerprint["error"] == "no VIDEO_TS"

    async def test_start_drive_backup_uses_scan_fields(self) -> None:
        adapter = FakeAdapter()
        parts = _setup([adapter])
        drive = Drive(
            id=4,
            drive_letter="G:",
            disc_name="BD_DISC",
            disc_type=DiscType.BLURAY,
            disc_size_bytes=25_000,
            tool_disc_index=2,
            has_tool_mapping=True,
        )

        await parts.orchestrator.start_drive_backup(drive)
        await parts.orchestrator.wait_idle()

        assert adapter.calls == [(2, "BD_DISC", 25_000)]
        assert parts.capture.calls == [("G:", "BD_DISC")]

    async def test_adapter_creation_failure(self) -> None:
        parts = _setup(factory=FakeAdapterFactory(error=RuntimeError("no tool")))

        result = await _start(parts.orchestrator)

        assert not result.success
        assert result.error == "no tool"
        assert not parts.orchestrator.is_backup_running(0)
        events = drain(parts.queue)
        assert _names(events) == [EVENT_BACKUP_STARTED, EVENT_BACKUP_COMPLETE]
        assert events[-1].payload == {
            "drive_id": 0,
            "success": False,
            "error": "no tool",
        }


class TestSingleBackupPerDrive:
    """At most one backup runs per drive id."""

    async def test_second_start_while_running(self) -> None:
        adapter = FakeAdapter(hold=True)
        parts = _setup([adapter])
        await _start(parts.orchestrator)

        second = await _start(parts.orchestrator)

        assert not second.success
        assert second.error == ALREADY_RUNNING_ERROR
        assert len(parts.factory.created) == 1
        adapter.release()
        await parts.orchestrator.wait_idle()

    async def test_second_start_during_fingerprint_capture(self) -> None:
        capture = FakeCapture(hold=True)
        parts = _setup(capture=capture)

        first = asyncio.create_task(_start(parts.orchestrator))
        await capture.entered.wait()
        handle = parts.orchestrator.get_running_backup(0)
        assert handle.state is BackupState.FINGERPRINT_CAPTURING

        second = await _start(parts.orchestrator)
        assert second.error == ALREADY_RUNNING_ERROR

        capture.release()
        assert (await first).success
        await parts.orchestrator.wait_idle()
        assert len(_complete(drain(parts.queue))) == 1

    async def test_concurrent_starts_only_one_wins(self) -> None:
        parts = _setup()
        results = await asyncio.gather(*(_start(parts.orchestrator) for _ in range(5)))
        await parts.orchestrator.wait_idle()

        assert sum(r.success for r in results) == 1
        assert len(parts.factory.created) == 1

    async def test_drive_can_be_reused_after_completion(self) -> None:
        parts = _setup()
        await _start(parts.orchestrator)
        await parts.orchestrator.wait_idle()

        again = await _start(parts.orchestrator)
        await parts.orchestrator.wait_idle()

        assert again.success
        assert len(parts.factory.created) == 2


class TestParallelBackups:
    """Backups on different drives run independently."""

    async def test_two_drives_at_once(self) -> None:
        a, b = FakeAdapter(hold=True, progress=(5.0,)), FakeAdapter(hold=True)
        parts = _setup([a, b])

        await _start(parts.orchestrator, 0, drive_letter="E:")
        await _start(parts.orchestrator, 1, drive_letter="F:")

        assert parts.orchestrator.running_drive_ids() == [0, 1]
        assert parts.orchestrator.has_running_backups()
        running = parts.orchestrator.running_backups()
        assert [r["state"] for r in running] == ["running", "running"]

        b.release()
        await asyncio.sleep(0.01)
        assert parts.orchestrator.running_drive_ids() == [0]
        a.release()
        await parts.orchestrator.wait_idle()

        events = drain(parts.queue)
        for drive_id in (0, 1):
            mine = [e.name for e in events if e.drive_id == drive_id]
            assert mine[0] == EVENT_BACKUP_STARTED
            assert mine[-1] == EVENT_BACKUP_COMPLETE
        assert not parts.orchestrator.has_running_backups()

    async def test_mapper_is_seeded_and_serves_cache_while_busy(self) -> None:
        runner = FakeRunner(stdout=DRIVE_LIST_OUTPUT)
        mapper = DiscIndexMapper(runner=runner, tool_locator=found_tool)
        adapter = FakeAdapter(hold=True)
        parts = _setup([adapter], mapper=mapper)

        await _start(
            parts.orchestrator,
            0,
            tool_disc_index=3,
            drive_letter="H:",
            disc_type_code=12,
        )

        entry = mapper.get_cached("H:")
        assert entry.disc_index == 3
        assert entry.disc_type == 12
        assert mapper.get_mapping()["H:"].disc_index == 3
        assert runner.calls == []

        adapter.release()
        await parts.orchestrator.wait_idle()
        mapper.get_mapping()
        assert len(runner.calls) == 1


class TestFailures:
    """Tests for failed and partially successful backups."""

    async def test_backup_error(self) -> None:
        parts = _setup([FakeAdapter(error=BackupError("disk full"))])
        await _start(parts.orchestrator, disc_name="MOVIE")
        await parts.orchestrator.wait_idle()

        complete = _complete(drain(parts.queue))
        assert complete == [{"drive_id": 0, "success": False, "error": "disk full"}]
        assert parts.notifier.notifications == [
            ("Backup Failed", "MOVIE: disk full", "error")
        ]
        assert parts.store.documents == {}
        assert not parts.orchestrator.is_backup_running(0)

    async def test_unexpected_error(self) -> None:
        parts = _setup([FakeAdapter(error=KeyError("boom"))])
        await _start(parts.orchestrator)
        await parts.orchestrator.wait_idle()

        complete = _complete(drain(parts.queue))[0]
        assert not complete["success"]
        assert "boom" in complete["error"]

    async def test_partial_success(self) -> None:
        result = BackupResult(
            path=Path("/backups/backup/DISC_0"),
            partial_success=True,
            errors_encountered=[
                ErrorRecord(message="Hash check failed", file="00800.m2ts")
            ],
            files_successful=3,
            files_failed=1,
            percent_recovered=75.0,
        )
        parts = _setup([FakeAdapter(result=result)])

        await _start(parts.orchestrator)
        await parts.orchestrator.wait_idle()

        complete = _complete(drain(parts.queue))[0]
        assert complete["success"]
        assert complete["partial_success"]
        assert complete["files_failed"] == 1
        assert complete["errors_encountered"][0]["file"] == "00800.m2ts"
        title, body, level = parts.notifier.notifications[0]
        assert title == "Backup Complete (with errors)"
        assert "75% of files recovered" in body
        assert level == "warning"


class TestCancellation:
    """Tests for cancel_backup, cancel_all and shutdown."""

    async def test_cancel_running_backup(self) -> None:
        adapter = FakeAdapter(hold=True)
        parts = _setup([adapter])
        await _start(parts.orchestrator)
        await adapter.started.wait()

        assert parts.orchestrator.cancel_backup(0)
        assert not parts.orchestrator.is_backup_running(0)
        await parts.orchestrator.wait_idle()

        assert adapter.cancel_calls == 1
        complete = _complete(drain(parts.queue))
        assert len(complete) == 1
        assert complete[0]["success"] is False
        assert complete[0]["cancelled"] is True
        assert complete[0]["error"]
        assert parts.notifier.notifications == []

    async def test_cancel_before_extraction_is_never_a_success(self) -> None:
        adapter = FakeAdapter(ignore_cancel=True)
        identifier = FakeIdentifier()
        eject = FakeEject()
        parts = _setup(
            [adapter], identifier=identifier, eject=eject, eject_after_backup=True
        )
        result = await _start(parts.orchestrator)
        assert result.started

        assert parts.orchestrator.cancel_backup(0)
        await parts.orchestrator.wait_idle(include_identification=True)

        complete = _complete(drain(parts.queue))
        assert complete == [
            {
                "drive_id": 0,
                "success": False,
                "cancelled": True,
                "error": CANCELLED_ERROR,
            }
        ]
        assert parts.notifier.notifications == []
        assert identifier.calls == []
        assert eject.calls == []

    async def test_cancel_unknown_drive(self) -> None:
        assert not _setup().orchestrator.cancel_backup(9)

    async def test_cancel_during_fingerprint_capture(self) -> None:
        capture = FakeCapture(hold=True)
        parts = _setup(capture=capture)

        task = asyncio.create_task(_start(parts.orchestrator))
        await capture.entered.wait()
        assert parts.orchestrator.cancel_backup(0)
        capture.release()
        result = await task

        assert not result.success
        assert result.error == CANCELLED_ERROR
        assert parts.factory.created == []
        assert drain(parts.queue) == []
        assert not parts.orchestrator.is_backup_running(0)

    async def test_restart_after_cancel_during_capture(self) -> None:
        capture = FakeCapture(hold=True)
        parts = _setup(capture=capture)

        stale = asyncio.create_task(_start(parts.orchestrator))
        await capture.entered.wait()
        parts.orchestrator.cancel_backup(0)

        capture.hold = False
        fresh = await _start(parts.orchestrator)
        capture.release()

        assert fresh.success
        assert (await stale).error == CANCELLED_ERROR
        await parts.orchestrator.wait_idle()
        assert len(parts.factory.created) == 1

    async def test_task_cancellation_during_capture_releases_drive(self) -> None:
        capture = FakeCapture(hold=True)
        parts = _setup(capture=capture)

        task = asyncio.create_task(_start(parts.orchestrator))
        await capture.entered.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert not parts.orchestrator.is_backup_running(0)

    async def test_shutdown_cancels_everything(self) -> None:
        adapters = [FakeAdapter(hold=True), FakeAdapter(hold=True)]
        parts = _setup(adapters)
        await _start(parts.orchestrator, 0, drive_letter="E:")
        await _start(parts.orchestrator, 1, drive_letter="F:")

        await parts.orchestrator.shutdown()

        assert not parts.orchestrator.has_running_backups()
        assert all(a.cancel_calls == 1 for a in adapters)
        complete = _complete(drain(parts.queue))
        assert sorted(c["drive_id"] for c in complete) == [0, 1]
        assert all(c["cancelled"] for c in complete)

    async def test_cancel_all_count(self) -> None:
        parts = _setup([FakeAdapter(hold=True), FakeAdapter(hold=True)])
        await _start(parts.orchestrator, 0)
        await _start(parts.orchestrator, 1)

        assert parts.orchestrator.cancel_all() == 2
        await parts.orchestrator.wait_idle()


class TestAfterBackup:
    """Tests for auto-eject and post-backup identification."""

    async def test_eject_after_success(self) -> None:
        eject = FakeEject()
        parts = _setup(eject=eject, eject_after_backup=True)

        await _start(parts.orchestrator, drive_letter="E:")
        await parts.orchestrator.wait_idle()

        assert eject.calls == ["E:"]
        assert parts.notifier.titles == ["Backup Complete", "Disc Ejected"]

    async def test_no_eject_after_failure(self) -> None:
        eject = FakeEject()
        parts = _setup(
            [FakeAdapter(error=BackupError("x"))], eject=eject, eject_after_backup=True
        )
        await _start(parts.orchestrator)
        await parts.orchestrator.wait_idle()

        assert eject.calls == []

    async def test_eject_disabled(self) -> None:
        eject = FakeEject()
        parts = _setup(eject=eject)
        await _start(parts.orchestrator)
        await parts.orchestrator.wait_idle()

        assert eject.calls == []

    async def test_eject_failure_is_only_logged(self) -> None:
        eject = FakeEject(success=False)
        parts = _setup(eject=eject, eject_after_backup=True)
        await _start(parts.orchestrator)
        await parts.orchestrator.wait_idle()

        assert eject.calls == ["E:"]
        assert parts.notifier.titles == ["Backup Complete"]

    async def test_identification_runs_after_success(self) -> None:
        identifier = FakeIdentifier()
        parts = _setup(identifier=identifier)

        await _start(parts.orchestrator, disc_name="MOVIE")
        await parts.orchestrator.wait_idle(include_identification=True)

        assert identifier.calls == [(Path("/backups/backup/MOVIE"), "MOVIE")]
        events = drain(parts.queue)
        assert events[-1].name == EVENT_METADATA_UPDATED
        assert events[-1].payload == {"path": str(Path("/backups/backup/MOVIE"))}

    async def test_identification_failure_does_not_change_outcome(self) -> None:
        identifier = FakeIdentifier(IdentifyResult(success=False, error="no match"))
        parts = _setup(identifier=identifier)

        await _start(parts.orchestrator)
        await parts.orchestrator.wait_idle(include_identification=True)

        events = drain(parts.queue)
        assert EVENT_METADATA_UPDATED not in _names(events)
        assert _complete(events)[0]["success"]
