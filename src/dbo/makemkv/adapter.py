"""makemkvcon backup adapter.

One MakeMKVAdapter runs one backup: it owns a single makemkvcon process
that copies ``disc:<index>`` into a temp folder, streams the tool's robot
output, and on success moves (or, for disc images, unpacks) the result
into the backup folder.

Folder layout under the configured base directory::

    temp/<disc name>     makemkvcon output while running; never pre-created
    backup/<disc name>   finished backups

makemkvcon refuses to write into an existing folder, so the temp folder
must not exist when the process starts.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from dbo.backup.exceptions import (
    BackupCancelledError,
    BackupError,
    BackupProcessingError,
    ToolNotFoundError,
)
from dbo.backup.models import BackupProgress, BackupResult
from dbo.config.models import DBOConfig
from dbo.core.file_utils import folder_size, list_files, remove_path
from dbo.core.formatting import format_file_size, sanitize_disc_name
from dbo.makemkv.errors import (
    ErrorRecord,
    compute_recovery_percent,
    is_error_message,
    is_recoverable_error,
    is_warning_message,
    parse_error_message,
)
from dbo.makemkv.flags import (
    PerformanceSettings,
    build_backup_command,
    build_backup_flags,
    get_preset,
)
from dbo.makemkv.protocol import (
    MessageLine,
    ProgressCurrentLine,
    ProgressTitleLine,
    ProgressValueLine,
    parse_line,
)
from dbo.makemkv.tools import find_makemkvcon, find_seven_zip

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[BackupProgress], None]
LogCallback = Callable[[str], None]
ToolLocator = Callable[[Path | None], Path | None]

COMPLETE_THRESHOLD_PERCENT = 95.0
UNKNOWN_SIZE_COMPLETE_BYTES = 100 * 1024 * 1024
TINY_BACKUP_BYTES = 10 * 1024 * 1024

# Copy progress is mapped onto 0-94%; finalizing reports 96, 99 and 100.
COPY_PHASE_SCALE = 95.0
COPY_PHASE_CEILING = 94.0


def is_backup_complete(
    backup_size: int, disc_size: int, threshold: float = COMPLETE_THRESHOLD_PERCENT
) -> bool:
    """Return True if a backup is large enough to be considered complete.

    Without a disc size, anything over 100 MiB counts as complete.
    """
    if disc_size <= 0:
        return backup_size > UNKNOWN_SIZE_COMPLETE_BYTES
    return backup_size * 100 / disc_size >= threshold


@dataclass(frozen=True)
class BackupStatus:
    """What already exists on disk for a disc name.

    status is "none", "complete", "incomplete_backup" or "incomplete_temp".
    """

    status: str
    disc_size: int = 0
    backup_size: int = 0
    temp_size: int = 0
    path: Path | None = None
    files: int = 0
    is_dvd: bool = False


@dataclass
class _RunState:
    """Mutable bookkeeping for one makemkvcon run."""

    disc_size: int
    percent: float = 0.0
    last_size: int = 0
    in_copy_phase: bool = False
    errors: list[ErrorRecord] = field(default_factory=list)
    fatal_messages: list[str] = field(default_factory=list)
    poll_task: asyncio.Task[None] | None = None


class MakeMKVAdapter:
    """Run a single makemkvcon backup.

    Example:
        adapter = MakeMKVAdapter(base_dir=Path("D:/Backups"))
        result = await adapter.run_backup(0, "MOVIE", 7_500_000_000,
                                          on_progress=print, on_log=print)
    """

    POLL_INTERVAL = 0.5
    POLL_FALLBACK_DELAY = 5.0

    def __init__(
        self,
        *,
        base_dir: Path,
        makemkvcon_path: Path | None = None,
        seven_zip_path: Path | None = None,
        performance: PerformanceSettings | None = None,
        extraction_mode: str = "full_backup",
        min_title_length_minutes: int = 10,
        split_size_mb: int = 0,
        tool_locator: ToolLocator = find_makemkvcon,
        seven_zip_locator: ToolLocator = find_seven_zip,
    ) -> None:
        self._base_dir = base_dir
        self._makemkvcon_path = makemkvcon_path
        self._seven_zip_path = seven_zip_path
        self._performance = performance or get_preset("balanced")
        self._extraction_mode = extraction_mode
        self._min_title_length_minutes = min_title_length_minutes
        self._split_size_mb = split_size_mb
        self._tool_locator = tool_locator
        self._seven_zip_locator = seven_zip_locator
        self._process: asyncio.subprocess.Process | None = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def temp_path(self, disc_name: str) -> Path:
        return self._base_dir / "temp" / sanitize_disc_name(disc_name)

    def backup_path(self, disc_name: str) -> Path:
        return self._base_dir / "backup" / sanitize_disc_name(disc_name)

    def cancel(self) -> None:
        """Ask the running process to terminate.

        Returns without waiting; run_backup raises BackupCancelledError
        once the process has exited.
        """
        self._cancelled = True
        process = self._process
        if process is None or process.returncode is not None:
            return
        logger.info("Cancelling backup, terminating makemkvcon (pid %d)", process.pid)
        self._terminate(process)

    @staticmethod
    def _terminate(process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            pass

    def check_backup_status(
        self, disc_name: str, disc_size: int, on_log: LogCallback | None = None
    ) -> BackupStatus:
        """Inspect the backup and temp folders for disc_name (blocking)."""
        log = on_log or (lambda _line: None)
        temp = self.temp_path(disc_name)
        backup = self.backup_path(disc_name)

        if backup.is_file():
            size = backup.stat().st_size
            log(f"Found disc image backup: {format_file_size(size)}")
            if is_backup_complete(size, disc_size):
                return BackupStatus(
                    "complete", disc_size, size, path=backup, files=1, is_dvd=True
                )
        elif backup.is_dir():
            is_dvd = (backup / "VIDEO_TS").exists()
            files = len(list_files(backup))
            size = folder_size(backup)
            log(
                f"Backup folder: {format_file_size(size)}, {files} files"
                + (f" ({size * 100 / disc_size:.1f}% of disc)" if disc_size else "")
            )
            if is_backup_complete(size, disc_size):
                log(f"Found complete backup: {files} files, {format_file_size(size)}")
                return BackupStatus(
                    "complete", disc_size, size, path=backup, files=files, is_dvd=is_dvd
                )
            if files > 0 and size > TINY_BACKUP_BYTES:
                log("Found INCOMPLETE backup")
                return BackupStatus(
                    "incomplete_backup",
                    disc_size,
                    size,
                    path=backup,
                    files=files,
                    is_dvd=is_dvd,
                )
            log("Backup folder is empty/tiny - will be cleaned up")

        if temp.exists():
            files = len(list_files(temp))
            size = folder_size(temp)
            log(f"Temp folder: {format_file_size(size)}")
            if files == 0 or size < TINY_BACKUP_BYTES:
                return BackupStatus("none", disc_size, temp_size=size)
            return BackupStatus(
                "incomplete_temp", disc_size, temp_size=size, path=temp, files=files
            )
        return BackupStatus("none", disc_size)

    def _prepare_folders(
        self, status: BackupStatus, disc_name: str, log: LogCallback
    ) -> None:
        temp = self.temp_path(disc_name)
        backup = self.backup_path(disc_name)

        if status.status == "incomplete_backup":
            log("Deleting incomplete backup folder...")
            remove_path(backup)
        elif backup.exists() and folder_size(backup) < TINY_BACKUP_BYTES:
            log("Deleting empty/tiny backup folder...")
            remove_path(backup)

        if temp.exists():
            log("Cleaning up temp folder...")
            try:
                remove_path(temp)
            except OSError as e:
                logger.error("Failed to delete temp folder %s: %s", temp, e)
            if temp.exists():
                raise BackupError(
                    f"Cannot delete temp folder: {temp} - folder still exists"
                )

        temp.parent.mkdir(parents=True, exist_ok=True)

    def _min_title_seconds(self) -> int | None:
        if self._extraction_mode != "smart_extract":
            return None
        return self._min_title_length_minutes * 60

    async def run_backup(
        self,
        disc_index: int,
        disc_name: str,
        disc_size: int,
        on_progress: ProgressCallback | None = None,
        on_log: LogCallback | None = None,
    ) -> BackupResult:
        """Back up ``disc:<disc_index>`` to the backup folder for disc_name.

        The process exit code alone decides success. Recoverable read
        errors on exit code 0 produce a partial-success result.

        Raises:
            ToolNotFoundError: If makemkvcon (or 7-Zip, for images) is missing.
            BackupCancelledError: If cancel() was called or the process was
                killed by a signal.
            BackupProcessingError: If the finished output could not be moved
                or unpacked.
            BackupError: If makemkvcon exited with a non-zero code.
        """
        if self._cancelled:
            raise BackupCancelledError()
        progress = on_progress or (lambda _p: None)
        log = on_log or (lambda _line: None)

        executable = self._tool_locator(self._makemkvcon_path)
        if executable is None:
            raise ToolNotFoundError("makemkvcon", str(self._makemkvcon_path or "PATH"))

        temp = self.temp_path(disc_name)
        backup = self.backup_path(disc_name)
        smart = self._extraction_mode == "smart_extract"
        mode_label = "Smart Extract" if smart else "Full Backup"
        logger.info(
            "Starting backup for %s [%s]",
            disc_name,
            mode_label,
            extra={"disc_index": disc_index, "temp": str(temp), "disc_size": disc_size},
        )
        log(f"Using MakeMKV source: disc:{disc_index}")
        log(f"Extraction mode: {mode_label}")

        status = await asyncio.to_thread(
            self.check_backup_status, disc_name, disc_size, log
        )
        if status.status == "complete":
            if self._cancelled:
                raise BackupCancelledError()
            log(f"Backup already exists at: {backup}")
            progress(BackupProgress(percent=100.0, current=1, total=1, maximum=1))
            return BackupResult(
                path=backup,
                size_bytes=status.backup_size,
                already_exists=True,
                is_dvd_image=status.is_dvd,
                files_successful=status.files,
            )

        await asyncio.to_thread(self._prepare_folders, status, disc_name, log)

        flags = build_backup_flags(
            self._performance,
            split_size_mb=self._split_size_mb,
            min_title_seconds=self._min_title_seconds(),
        )
        args = build_backup_command(executable, disc_index, temp, flags)
        log(f"Disc size: {format_file_size(disc_size)}")
        log(f"Starting backup to temp: {temp}")
        log(f"Final destination: {backup}")
        command = " ".join(["makemkvcon", "backup", *flags, f"disc:{disc_index}"])
        log(f"Running: {command} \"{temp}\"")

        if self._cancelled:
            raise BackupCancelledError()

        state = _RunState(disc_size=disc_size)
        try:
            returncode = await self._run_process(args, temp, state, progress, log)
        except asyncio.CancelledError:
            await asyncio.to_thread(remove_path, temp)
            raise
        except OSError as e:
            logger.error("Could not start makemkvcon: %s", e)
            await asyncio.to_thread(remove_path, temp)
            raise BackupError(f"Could not start makemkvcon: {e}") from e

        if self._cancelled or returncode < 0:
            logger.info(
                "Backup cancelled for %s", disc_name, extra={"returncode": returncode}
            )
            log(f"Backup cancelled (exit code {returncode})")
            await asyncio.to_thread(remove_path, temp)
            raise BackupCancelledError()

        if returncode != 0:
            logger.error(
                "Backup failed for %s",
                disc_name,
                extra={"returncode": returncode, "errors": state.fatal_messages},
            )
            log("Backup failed, cleaning up temp folder...")
            await asyncio.to_thread(remove_path, temp)
            message = (
                ". ".join(state.fatal_messages)
                if state.fatal_messages
                else f"Backup failed with exit code {returncode}. "
                "Check system logs for details."
            )
            log(f"ERROR: {message}")
            raise BackupError(message)

        if state.fatal_messages:
            logger.warning(
                "makemkvcon reported %d error(s) but exited successfully",
                len(state.fatal_messages),
            )
        return await self._finalize(temp, backup, state, progress, log)

    async def _run_process(
        self,
        args: list[str],
        temp: Path,
        state: _RunState,
        progress: ProgressCallback,
        log: LogCallback,
    ) -> int:
        process = await asyncio.create_subprocess_exec(  # nosec B603
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        self._process = process
        if self._cancelled:
            self.cancel()

        logger.info("makemkvcon started (pid %d)", process.pid)
        progress(BackupProgress(0.0, 0, state.disc_size, state.disc_size))

        fallback = asyncio.create_task(self._polling_fallback(temp, state, progress))
        try:
            assert process.stdout is not None and process.stderr is not None
            await asyncio.gather(
                self._read_stdout(process.stdout, temp, state, progress, log),
                self._read_stderr(process.stderr, state, log),
            )
            return await process.wait()
        except asyncio.CancelledError:
            self.cancel()
            await self._reap(process)
            raise
        except Exception:
            logger.exception("Lost makemkvcon output, stopping pid %d", process.pid)
            self._terminate(process)
            await self._reap(process)
            raise
        finally:
            fallback.cancel()
            if state.poll_task is not None:
                state.poll_task.cancel()
            self._process = None

    @staticmethod
    async def _reap(process: asyncio.subprocess.Process) -> None:
        try:
            await asyncio.wait_for(process.wait(), timeout=5.0)
        except asyncio.TimeoutError:
            process.kill()

    async def _read_stdout(
        self,
        stream: asyncio.StreamReader,
        temp: Path,
        state: _RunState,
        progress: ProgressCallback,
        log: LogCallback,
    ) -> None:
        while True:
            raw = await stream.readline()
            if not raw:
                break
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if line.strip():
                self._handle_line(line, temp, state, progress, log)

    async def _read_stderr(
        self, stream: asyncio.StreamReader, state: _RunState, log: LogCallback
    ) -> None:
        while True:
            raw = await stream.readline()
            if not raw:
                break
            line = raw.decode("utf-8", errors="replace").strip()
            if line:
                logger.error("makemkvcon stderr: %s", line)
                log(f"STDERR: {line}")
                state.fatal_messages.append(f"STDERR: {line}")

    def _handle_line(
        self,
        line: str,
        temp: Path,
        state: _RunState,
        progress: ProgressCallback,
        log: LogCallback,
    ) -> None:
        parsed = parse_line(line)
        if isinstance(parsed, ProgressValueLine):
            # Scan-phase PRGV completes instantly and means nothing; during
            # the copy phase folder size is the progress source, unless the
            # disc size is unknown.
            if state.in_copy_phase and state.disc_size <= 0:
                self._report(
                    state,
                    progress,
                    parsed.percent * COPY_PHASE_CEILING / 100,
                    parsed.total,
                    parsed.maximum,
                )
        elif isinstance(parsed, ProgressTitleLine):
            if parsed.name:
                log(f"Task: {parsed.name}")
            logger.info("makemkvcon task: %s", parsed.name)
            if "copying" in parsed.name.lower() and not state.in_copy_phase:
                state.in_copy_phase = True
                logger.info("Entering copy phase")
            self._start_polling(temp, state, progress)
        elif isinstance(parsed, ProgressCurrentLine):
            if parsed.name:
                logger.debug("Processing: %s", parsed.name)
        elif isinstance(parsed, MessageLine):
            self._handle_message(parsed, state, log)

    def _handle_message(
        self, message: MessageLine, state: _RunState, log: LogCallback
    ) -> None:
        text = message.text
        is_error = is_error_message(message.code, text)
        is_warning = not is_error and is_warning_message(text)

        if is_error:
            logger.error("[%d] %s", message.code, text)
            log(f"ERROR: {text}")
        elif is_warning:
            logger.warning("[%d] %s", message.code, text)
            log(f"WARNING: {text}")
        else:
            logger.debug("[%d] %s", message.code, text)
            log(text)

        if not is_error:
            return
        if is_recoverable_error(text):
            record = parse_error_message(text)
            state.errors.append(record)
            logger.warning(
                "Recoverable error in %s", record.file or "unknown file",
                extra={"error_label": record.error, "offset": record.offset},
            )
            log(f"WARNING (recoverable): {text}")
        else:
            state.fatal_messages.append(text)

    def _report(
        self,
        state: _RunState,
        progress: ProgressCallback,
        percent: float,
        current: int,
        maximum: int,
    ) -> None:
        if percent <= state.percent:
            return
        state.percent = percent
        progress(BackupProgress(percent, current, state.disc_size, maximum))

    def _start_polling(
        self, temp: Path, state: _RunState, progress: ProgressCallback
    ) -> None:
        if state.disc_size <= 0 or state.poll_task is not None:
            return
        state.poll_task = asyncio.create_task(self._poll_size(temp, state, progress))
        logger.info("Started size-based progress polling")

    async def _polling_fallback(
        self, temp: Path, state: _RunState, progress: ProgressCallback
    ) -> None:
        await asyncio.sleep(self.POLL_FALLBACK_DELAY)
        if state.poll_task is None and state.disc_size > 0:
            logger.warning(
                "No task title after %ss, starting fallback polling",
                self.POLL_FALLBACK_DELAY,
            )
            self._start_polling(temp, state, progress)

    async def _poll_size(
        self, temp: Path, state: _RunState, progress: ProgressCallback
    ) -> None:
        while True:
            try:
                size = await asyncio.to_thread(folder_size, temp)
            except OSError as e:
                logger.warning("Polling error: %s", e)
            else:
                state.last_size = size
                percent = min(
                    size / state.disc_size * COPY_PHASE_SCALE, COPY_PHASE_CEILING
                )
                self._report(state, progress, percent, size, state.disc_size)
            await asyncio.sleep(self.POLL_INTERVAL)

    async def _finalize(
        self,
        temp: Path,
        backup: Path,
        state: _RunState,
        progress: ProgressCallback,
        log: LogCallback,
    ) -> BackupResult:
        temp_size = await asyncio.to_thread(folder_size, temp)
        if state.disc_size > 0:
            ratio = temp_size * 100 / state.disc_size
            log(
                f"Rip complete! Size: {format_file_size(temp_size)} "
                f"({ratio:.1f}% of disc)"
            )
            if ratio < 90 and not state.errors:
                log(f"WARNING: Backup is only {ratio:.1f}% of disc size")
        else:
            log(f"Rip complete! Size: {format_file_size(temp_size)}")

        is_image = temp.is_file()
        maximum = state.disc_size
        try:
            backup.parent.mkdir(parents=True, exist_ok=True)
            progress(BackupProgress(96.0, maximum, maximum, maximum))
            if is_image:
                log("Disc image detected - extracting all files...")
                await self._extract_image(temp, backup, log)
                progress(BackupProgress(99.0, maximum, maximum, maximum))
                log("Cleaning up disc image...")
                await asyncio.to_thread(remove_path, temp)
            else:
                log("Moving to backup folder...")
                await asyncio.to_thread(shutil.move, str(temp), str(backup))
                progress(BackupProgress(99.0, maximum, maximum, maximum))
        except BackupProcessingError:
            raise
        except (OSError, BackupError) as e:
            log(f"ERROR: Failed to process backup: {e}")
            raise BackupProcessingError(str(e)) from e

        final_size = await asyncio.to_thread(folder_size, backup)
        output_files = await asyncio.to_thread(list_files, backup)
        result = self._build_result(backup, final_size, is_image, output_files, state)
        progress(BackupProgress(100.0, maximum, maximum, maximum))

        if result.partial_success:
            log(f"Backup completed with {result.files_failed} file error(s)")
            log(
                f"Files recovered: {result.files_successful} of "
                f"{result.files_successful + result.files_failed} "
                f"({result.percent_recovered:.1f}%)"
            )
            logger.warning(
                "Partial backup completed",
                extra={
                    "files_successful": result.files_successful,
                    "files_failed": result.files_failed,
                    "percent_recovered": result.percent_recovered,
                },
            )
        else:
            log("Backup completed successfully!")
        log(f"Saved to: {backup}")
        log(f"Final size: {format_file_size(final_size)}")
        return result

    @staticmethod
    def _build_result(
        backup: Path,
        size: int,
        is_image: bool,
        output_files: list[Path],
        state: _RunState,
    ) -> BackupResult:
        failed_names = {r.file.lower() for r in state.errors if r.file}
        unnamed_failures = sum(1 for r in state.errors if not r.file)
        files_failed = len(failed_names) + unnamed_failures
        files_successful = sum(
            1 for p in output_files if p.name.lower() not in failed_names
        )
        return BackupResult(
            path=backup,
            size_bytes=size,
            is_dvd_image=is_image,
            partial_success=bool(state.errors),
            errors_encountered=list(state.errors),
            files_successful=files_successful,
            files_failed=files_failed,
            percent_recovered=compute_recovery_percent(files_successful, files_failed),
        )

    async def _extract_image(
        self, image: Path, destination: Path, log: LogCallback
    ) -> None:
        seven_zip = self._seven_zip_locator(self._seven_zip_path)
        if seven_zip is None:
            raise ToolNotFoundError("7-Zip", "cannot extract DVD files")

        args = [str(seven_zip), "x", str(image), f"-o{destination}", "-y"]
        logger.info("Extracting all files from %s", image)
        log(f"Running: 7z {' '.join(args[1:])}")
        start = time.monotonic()
        process = await asyncio.create_subprocess_exec(  # nosec B603
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
        for line in stdout.decode("utf-8", errors="replace").splitlines():
            if "Extracting" in line or "%" in line:
                logger.debug("7-Zip: %s", line.strip())
        if process.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            logger.error("7-Zip failed (%d): %s", process.returncode, detail)
            raise BackupProcessingError(
                f"7-Zip extraction failed with code {process.returncode}"
            )
        if not destination.exists():
            raise BackupProcessingError(
                "7-Zip completed but destination folder not found"
            )
        files = await asyncio.to_thread(list_files, destination)
        log(f"Extracted {len(files)} files successfully")
        logger.info(
            "Image extracted in %.1fs", time.monotonic() - start,
            extra={"files": len(files)},
        )


class MakeMKVAdapterFactory:
    """Build a fresh MakeMKVAdapter per backup from the loaded configuration."""

    def __init__(
        self,
        config: DBOConfig,
        *,
        tool_locator: ToolLocator = find_makemkvcon,
        seven_zip_locator: ToolLocator = find_seven_zip,
    ) -> None:
        self._config = config
        self._tool_locator = tool_locator
        self._seven_zip_locator = seven_zip_locator
        self._performance = get_preset(config.backup.performance_preset)

    @property
    def performance(self) -> PerformanceSettings:
        return self._performance

    def create(self) -> MakeMKVAdapter:
        backup = self._config.backup
        return MakeMKVAdapter(
            base_dir=self._config.paths.base_dir,
            makemkvcon_path=self._config.tools.makemkvcon,
            seven_zip_path=self._config.tools.seven_zip,
            performance=self._performance,
            extraction_mode=backup.extraction_mode,
            min_title_length_minutes=backup.min_title_length_minutes,
            split_size_mb=backup.split_size_mb,
            tool_locator=self._tool_locator,
            seven_zip_locator=self._seven_zip_locator,
        )
