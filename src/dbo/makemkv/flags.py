"""Performance presets and command-line construction for makemkvcon backup."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PerformanceSettings:
    """Read-buffer tuning for one backup.

    cache/minbuf/maxbuf are in MB, timeout in milliseconds.
    """

    name: str
    description: str
    cache: int
    minbuf: int
    maxbuf: int
    timeout: int
    split_size: int = 0
    max_retries: int = 3

    def clamped(self) -> PerformanceSettings:
        """Return a copy with every value forced into its safe range."""
        cache = max(1, min(256, self.cache))
        maxbuf = max(1, min(256, self.maxbuf))
        minbuf = max(0, min(maxbuf, self.minbuf))
        timeout = max(1000, min(60000, self.timeout))
        return replace(
            self, cache=cache, minbuf=minbuf, maxbuf=maxbuf, timeout=timeout
        )


PERFORMANCE_PRESETS: dict[str, PerformanceSettings] = {
    "fast": PerformanceSettings(
        name="Fast",
        description="Minimal cache and lower memory use. Best for DVDs.",
        cache=8,
        minbuf=1,
        maxbuf=8,
        timeout=8000,
    ),
    "balanced": PerformanceSettings(
        name="Balanced",
        description="Good balance of speed and reliability.",
        cache=16,
        minbuf=1,
        maxbuf=16,
        timeout=10000,
    ),
    "compatibility": PerformanceSettings(
        name="Compatibility",
        description="Larger cache and more retries for damaged discs.",
        cache=64,
        minbuf=2,
        maxbuf=32,
        timeout=15000,
        max_retries=5,
    ),
    "4k-bluray": PerformanceSettings(
        name="4K Blu-ray",
        description="Large cache for high bitrate UHD content.",
        cache=128,
        minbuf=4,
        maxbuf=64,
        timeout=12000,
    ),
}


def get_preset(name: str) -> PerformanceSettings:
    """Return the named preset, falling back to "balanced" if unknown."""
    preset = PERFORMANCE_PRESETS.get(name)
    if preset is None:
        logger.warning("Unknown preset %r, falling back to balanced", name)
        preset = PERFORMANCE_PRESETS["balanced"]
    return preset


def build_backup_flags(
    settings: PerformanceSettings,
    *,
    split_size_mb: int = 0,
    min_title_seconds: int | None = None,
) -> list[str]:
    """Build the option list for ``makemkvcon backup``.

    Args:
        settings: Performance settings; clamped before use.
        split_size_mb: Split output files at this size (0 disables).
        min_title_seconds: Skip titles shorter than this (smart extract).
    """
    settings = settings.clamped()
    flags = [
        "--decrypt",
        f"--cache={settings.cache}",
        "--noscan",
        "-r",
        "--progress=-same",
    ]
    split = split_size_mb or settings.split_size
    if split > 0:
        flags.append(f"--split-size={split}")
    if min_title_seconds:
        flags.append(f"--minlength={min_title_seconds}")
    return flags


def build_backup_command(
    executable: Path,
    disc_index: int,
    destination: Path,
    flags: list[str],
) -> list[str]:
    """Return the full argv targeting ``disc:<disc_index>``."""
    return [str(executable), "backup", *flags, f"disc:{disc_index}", str(destination)]
