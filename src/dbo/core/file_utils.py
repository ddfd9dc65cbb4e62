"""Filesystem helpers shared by the extraction and fingerprint code."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)


def folder_size(path: Path) -> int:
    """Return the total size in bytes of all files below path.

    A file counts as itself (disc images are single files). Unreadable
    entries are skipped; a missing path has size 0.
    """
    try:
        if path.is_file():
            return path.stat().st_size
    except OSError:
        return 0
    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                total += (Path(root) / name).stat().st_size
            except OSError:
                continue
    return total


def list_files(path: Path) -> list[Path]:
    """Return every regular file below path, sorted."""
    if not path.exists():
        return []
    if path.is_file():
        return [path]
    return sorted(p for p in path.rglob("*") if p.is_file())


def remove_path(path: Path) -> None:
    """Delete a file or folder tree if it exists."""
    if not path.exists():
        return
    if path.is_dir():
        shutil.rmtree(path)
    else:
        path.unlink()
    logger.debug("Removed %s", path)
