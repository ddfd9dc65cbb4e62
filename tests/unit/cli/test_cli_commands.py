"""Tests for the dbo CLI commands, run against an in-memory runtime."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner
from fakes import (
    FakeAdapter,
    FakeAdapterFactory,
    FakePlatform,
    make_runtime,
    platform_error,
)

from dbo import __version__
from dbo.backup.exceptions import BackupError
from dbo.backup.models import BackupResult
from dbo.cli import main
from dbo.cli.backup import select_drives
from dbo.cli.exit_codes import ExitCode
from dbo.drives.models import DiscType, Drive


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def base_dir(temp_dir: Path) -> Path:
    return temp_dir / "discs"


def _invoke(runner: CliRunner, runtime, *args: str):
    return runner.invoke(main, list(args), obj={"runtime": runtime})


def _factory(base_dir: Path, *adapters: FakeAdapter) -> FakeAdapterFactory:
    return FakeAdapterFactory(list(adapters), backup_dir=base_dir / "backup")


class TestMain:
    """Tests for the top-level group."""

    def test_version(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_commands_registered(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["--help"])
        for command in ("drives", "eject", "backup", "fingerprint", "arm", "serve"):
            assert command in result.output


class TestDrivesCommand:
    """Tests for `dbo drives`."""

    def test_lists_drives(self, runner: CliRunner, base_dir: Path) -> None:
        result = _invoke(runner, make_runtime(base_dir), "drives")

        assert result.exit_code == 0
        assert "[0] E: MOVIE_ONE (DVD, 7.0 GB) -> disc:0 [mapped]" in result.output
        assert "[1] G: SECOND_DISC (Blu-ray, 23.3 GB) -> disc:2 [mapped]" in (
            result.output
        )

    def test_json(self, runner: CliRunner, base_dir: Path) -> None:
        result = _invoke(runner, make_runtime(base_dir), "drives", "--json")

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert [d["drive_letter"] for d in data["drives"]] == ["E:", "G:"]
        assert data["last_error"] is None

    def test_no_drives(self, runner: CliRunner, base_dir: Path) -> None:
        platform = FakePlatform(letters=["C:"], optical=set())
        result = _invoke(runner, make_runtime(base_dir, platform=platform), "drives")

        assert result.exit_code == 0
        assert "No drives with media found." in result.output

    def test_enumeration_failure(self, runner: CliRunner, base_dir: Path) -> None:
        platform = FakePlatform(failures={"list_drive_letters": platform_error()})
        result = _invoke(runner, make_runtime(base_dir, platform=platform), "drives")

        assert result.exit_code == ExitCode.OPERATION_FAILED
        assert "fsutil failed" in result.output


class TestEjectCommand:
    """Tests for `dbo eject`."""

    def test_eject(self, runner: CliRunner, base_dir: Path) -> None:
        platform = FakePlatform()
        runtime = make_runtime(base_dir, platform=platform)
        result = _invoke(runner, runtime, "eject", "e")

        assert result.exit_code == 0
        assert "Ejected E:" in result.output
        assert platform.ejected == ["E:"]

    def test_invalid_letter(self, runner: CliRunner, base_dir: Path) -> None:
        platform = FakePlatform()
        runtime = make_runtime(base_dir, platform=platform)

        result = _invoke(runner, runtime, "eject", "E:; shutdown")

        assert result.exit_code == ExitCode.INVALID_ARGUMENTS
        assert platform.ejected == []

    def test_failure(self, runner: CliRunner, base_dir: Path) -> None:
        platform = FakePlatform(failures={"eject": platform_error("tray stuck")})
        runtime = make_runtime(base_dir, platform=platform)
        result = _invoke(runner, runtime, "eject", "E")

        assert result.exit_code == ExitCode.OPERATION_FAILED
        assert "tray stuck" in result.output


class TestBackupCommand:
    """Tests for `dbo backup`."""

    def test_single_drive(self, runner: CliRunner, base_dir: Path) -> None:
        adapter = FakeAdapter(progress=(1.0, 50.0, 100.0))
        runtime = make_runtime(base_dir, factory=_factory(base_dir, adapter))

        result = _invoke(runner, runtime, "backup", "0")

        assert result.exit_code == 0, result.output
        assert "[0:MOVIE_ONE] Backup started" in result.output
        assert "[0:MOVIE_ONE] 50%" in result.output
        assert "[0:MOVIE_ONE] Completed (7.0 GB)" in result.output
        assert adapter.calls == [(0, "MOVIE_ONE", 7_500_000_000)]

    def test_all_drives_json(self, runner: CliRunner, base_dir: Path) -> None:
        runtime = make_runtime(base_dir, factory=_factory(base_dir))

        result = _invoke(runner, runtime, "backup", "--all", "--json")

        assert result.exit_code == 0, result.output
        events = [json.loads(line) for line in result.output.splitlines()]
        complete = [e for e in events if e["event"] == "backup-complete"]
        assert sorted(e["drive_id"] for e in complete) == [0, 1]
        assert all(e["success"] for e in complete)

    def test_verbose_shows_log_lines(self, runner: CliRunner, base_dir: Path) -> None:
        adapter = FakeAdapter(logs=("Saving 3 titles",))
        runtime = make_runtime(base_dir, factory=_factory(base_dir, adapter))

        quiet = _invoke(runner, runtime, "backup", "0")
        assert "Saving 3 titles" not in quiet.output

        adapter = FakeAdapter(logs=("Saving 3 titles",))
        runtime = make_runtime(base_dir, factory=_factory(base_dir, adapter))
        loud = _invoke(runner, runtime, "backup", "0", "-v")
        assert "Saving 3 titles" in loud.output

    @pytest.mark.parametrize("args", [(), ("0", "--all")])
    def test_requires_ids_or_all(self, runner: CliRunner, base_dir: Path, args) -> None:
        result = _invoke(runner, make_runtime(base_dir), "backup", *args)
        assert result.exit_code == ExitCode.INVALID_ARGUMENTS

    def test_unknown_drive(self, runner: CliRunner, base_dir: Path) -> None:
        result = _invoke(runner, make_runtime(base_dir), "backup", "7")

        assert result.exit_code == ExitCode.TARGET_NOT_FOUND
        assert "Drive(s) not found: 7" in result.output

    def test_failure(self, runner: CliRunner, base_dir: Path) -> None:
        adapter = FakeAdapter(error=BackupError("disk full"))
        runtime = make_runtime(base_dir, factory=_factory(base_dir, adapter))

        result = _invoke(runner, runtime, "backup", "0")

        assert result.exit_code == ExitCode.OPERATION_FAILED
        assert "Failed: disk full" in result.output
        assert "Backup failed for drive(s): 0" in result.output

    def test_partial_success(self, runner: CliRunner, base_dir: Path) -> None:
        partial = BackupResult(
            path=base_dir / "backup" / "MOVIE_ONE",
            partial_success=True,
            files_successful=9,
            files_failed=1,
            percent_recovered=90.0,
        )
        adapter = FakeAdapter(result=partial)
        runtime = make_runtime(base_dir, factory=_factory(base_dir, adapter))

        result = _invoke(runner, runtime, "backup", "0")

        assert result.exit_code == ExitCode.PARTIAL_SUCCESS
        assert "Completed with errors: 90% recovered, 1 file(s) failed" in (
            result.output
        )


class TestSelectDrives:
    """Tests for select_drives."""

    def _drive(self, drive_id: int) -> Drive:
        return Drive(
            id=drive_id,
            drive_letter="E:",
            disc_name="X",
            disc_type=DiscType.DVD,
            disc_size_bytes=0,
            tool_disc_index=drive_id,
            has_tool_mapping=True,
        )

    def test_by_id_deduplicates(self) -> None:
        drives = [self._drive(0), self._drive(1)]
        selected, missing = select_drives(drives, (1, 1, 3), all_drives=False)
        assert [d.id for d in selected] == [1]
        assert missing == [3]

    def test_all(self) -> None:
        drives = [self._drive(0), self._drive(1)]
        selected, missing = select_drives(drives, (), all_drives=True)
        assert selected == drives
        assert missing == []


class TestFingerprintCommand:
    """Tests for `dbo fingerprint`."""

    def test_dvd(self, runner: CliRunner, base_dir: Path, dvd_root: Path) -> None:
        platform = FakePlatform(roots={"E:": dvd_root})
        runtime = make_runtime(base_dir, platform=platform)

        result = _invoke(runner, runtime, "fingerprint", "E", "--label", "MOVIE")

        assert result.exit_code == 0, result.output
        assert "Type: crc64" in result.output
        assert "Identifier (dvd_crc64): " in result.output
        assert "Search hint: MOVIE" in result.output

    def test_json(self, runner: CliRunner, base_dir: Path, dvd_root: Path) -> None:
        platform = FakePlatform(roots={"E:": dvd_root})
        runtime = make_runtime(base_dir, platform=platform)

        result = _invoke(runner, runtime, "fingerprint", "E:", "--json")

        assert json.loads(result.output)["type"] == "crc64"

    def test_unreadable_disc(
        self, runner: CliRunner, base_dir: Path, temp_dir: Path
    ) -> None:
        platform = FakePlatform(roots={"G:": temp_dir / "empty"})
        runtime = make_runtime(base_dir, platform=platform)

        result = _invoke(runner, runtime, "fingerprint", "G")

        assert result.exit_code == ExitCode.OPERATION_FAILED
        assert "Type: unknown" in result.output


class TestArmCommands:
    """Tests for `dbo arm`."""

    def test_stats_empty(self, runner: CliRunner, base_dir: Path) -> None:
        result = _invoke(runner, make_runtime(base_dir), "arm", "stats", "--json")

        data = json.loads(result.output)
        assert data["entries"] == 0
        assert data["last_sync"] is None

    def test_clear(self, runner: CliRunner, base_dir: Path) -> None:
        result = _invoke(runner, make_runtime(base_dir), "arm", "clear", "--yes")

        assert result.exit_code == 0
        assert "Match cache cleared" in result.output

    def test_clear_asks_first(self, runner: CliRunner, base_dir: Path) -> None:
        result = runner.invoke(
            main, ["arm", "clear"], obj={"runtime": make_runtime(base_dir)}, input="n\n"
        )
        assert result.exit_code == 1
        assert "Match cache cleared" not in result.output
