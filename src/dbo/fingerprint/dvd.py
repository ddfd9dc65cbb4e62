"""DVD fingerprinting.

Computes the pydvdid-compatible CRC-64 of a DVD's VIDEO_TS folder, the
key used by the community DVD CRC64 database.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dbo.fingerprint.crc64 import CRC64, filetime_bytes, to_filetime, uint32_bytes

logger = logging.getLogger(__name__)

DVD_FILE_EXTENSIONS = frozenset({".ifo", ".bup", ".vob"})
IFO_READ_SIZE = 65536
CONTENT_IFOS = ("VIDEO_TS.IFO", "VTS_01_0.IFO")


@dataclass
class DvdFingerprint:
    crc64: str | None = None
    error: str | None = None


def is_dvd_structure(root: Path) -> bool:
    """Return True if root holds a VIDEO_TS folder with at least one IFO."""
    video_ts = root / "VIDEO_TS"
    try:
        return any(name.lower().endswith(".ifo") for name in os.listdir(video_ts))
    except OSError:
        return False


def list_dvd_files(video_ts: Path) -> list[str]:
    """Return IFO/BUP/VOB file names sorted case-insensitively."""
    try:
        names = os.listdir(video_ts)
    except OSError as e:
        logger.error("Failed to read VIDEO_TS directory: %s", e)
        return []
    dvd_files = [n for n in names if Path(n).suffix.lower() in DVD_FILE_EXTENSIONS]
    return sorted(dvd_files, key=str.lower)


def _creation_time(stat: os.stat_result) -> float:
    # st_birthtime exists on macOS and BSD; on Windows st_ctime is creation
    birthtime = getattr(stat, "st_birthtime", None)
    if birthtime is not None:
        return birthtime
    if os.name == "nt":
        return stat.st_ctime
    return stat.st_mtime


def _add_file_metadata(crc: CRC64, path: Path, name: str) -> None:
    stat = path.stat()
    crc.update(filetime_bytes(to_filetime(_creation_time(stat))))
    crc.update(uint32_bytes(stat.st_size))
    crc.update(name.encode("utf-8") + b"\0")


def _add_ifo_content(crc: CRC64, path: Path) -> None:
    with path.open("rb") as f:
        crc.update(f.read(IFO_READ_SIZE))


def generate_dvd_fingerprint(root: Path) -> DvdFingerprint:
    """Compute the CRC-64 fingerprint of the DVD mounted at root.

    Files that cannot be read are logged and skipped; they change the hash
    but do not fail the fingerprint.

    Args:
        root: Drive root, e.g. Path("E:\\").

    Returns:
        DvdFingerprint with crc64 set, or error set if there was nothing
        to hash.
    """
    video_ts = root / "VIDEO_TS"
    if not video_ts.is_dir():
        return DvdFingerprint(error="VIDEO_TS folder not found")

    names = list_dvd_files(video_ts)
    if not names:
        return DvdFingerprint(error="No DVD files found in VIDEO_TS")
    logger.debug("Found %d DVD files for fingerprinting", len(names))

    crc = CRC64()
    for name in names:
        try:
            _add_file_metadata(crc, video_ts / name, name)
        except OSError as e:
            logger.warning("Failed to process %s: %s", name, e)

    for name in CONTENT_IFOS:
        path = video_ts / name
        if not path.exists():
            continue
        try:
            _add_ifo_content(crc, path)
        except OSError as e:
            logger.warning("Failed to read %s content: %s", name, e)

    digest = crc.hexdigest()
    logger.info("DVD fingerprint generated: %s", digest)
    return DvdFingerprint(crc64=digest)
