"""Blu-ray fingerprinting.

Blu-ray discs carry their own identity: an AACS content id, a disc id
in the certificate, and usually a title in the disc library metadata.
All three are read directly; nothing is hashed.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

_TITLE_PATTERNS = (
    re.compile(r"<(?:di:)?name>([^<]+)</(?:di:)?name>", re.IGNORECASE),
    re.compile(r"<name[^>]*>([^<]+)</name>", re.IGNORECASE),
)
_CONTENT_ID_PATTERN = re.compile(
    r"contentID\s*=\s*[\"']([A-Fa-f0-9]{32})[\"']", re.IGNORECASE
)

# CERTIFICATE/id.bdmv layout
_ORG_ID_SLICE = slice(40, 44)
_DISC_ID_SLICE = slice(44, 60)


@dataclass
class BlurayFingerprint:
    content_id: str | None = None
    disc_id: str | None = None
    organization_id: str | None = None
    embedded_title: str | None = None
    error: str | None = None

    @property
    def found_anything(self) -> bool:
        return bool(self.content_id or self.disc_id or self.embedded_title)


def is_bluray_structure(root: Path) -> bool:
    """Return True if root holds BDMV with a PLAYLIST or STREAM folder."""
    bdmv = root / "BDMV"
    return (bdmv / "PLAYLIST").exists() or (bdmv / "STREAM").exists()


def parse_disc_title(content: str) -> str | None:
    """Extract the disc title from a bdmt_*.xml document."""
    for pattern in _TITLE_PATTERNS:
        match = pattern.search(content)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return None


def extract_embedded_title(root: Path) -> str | None:
    """Read the title from BDMV/META/DL, preferring English metadata."""
    meta_dir = root / "BDMV" / "META" / "DL"
    if not meta_dir.is_dir():
        logger.debug("META/DL folder not found")
        return None
    try:
        names = os.listdir(meta_dir)
    except OSError as e:
        logger.warning("Failed to read META/DL: %s", e)
        return None

    candidates = [
        n for n in names if n.lower().startswith("bdmt_") and n.lower().endswith(".xml")
    ]
    # Stable sort: English first, original order otherwise
    candidates.sort(key=lambda n: "eng" not in n.lower())

    for name in candidates:
        try:
            content = (meta_dir / name).read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.debug("Failed to read %s: %s", name, e)
            continue
        title = parse_disc_title(content)
        if title:
            logger.debug("Found title in %s: %r", name, title)
            return title
    return None


def extract_content_id(root: Path) -> str | None:
    """Read the 32-hex-digit content id from AACS/mcmf.xml, upper-cased."""
    mcmf = root / "AACS" / "mcmf.xml"
    if not mcmf.exists():
        logger.debug("AACS/mcmf.xml not found")
        return None
    try:
        content = mcmf.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.warning("Failed to read mcmf.xml: %s", e)
        return None
    match = _CONTENT_ID_PATTERN.search(content)
    return match.group(1).upper() if match else None


def extract_disc_ids(root: Path) -> tuple[str, str] | None:
    """Read (organization_id, disc_id) from CERTIFICATE/id.bdmv."""
    id_file = root / "CERTIFICATE" / "id.bdmv"
    if not id_file.exists():
        logger.debug("CERTIFICATE/id.bdmv not found")
        return None
    try:
        data = id_file.read_bytes()
    except OSError as e:
        logger.warning("Failed to read id.bdmv: %s", e)
        return None
    if len(data) < _DISC_ID_SLICE.stop:
        logger.warning("id.bdmv file too small (%d bytes)", len(data))
        return None
    return data[_ORG_ID_SLICE].hex().upper(), data[_DISC_ID_SLICE].hex().upper()


def generate_bluray_fingerprint(root: Path) -> BlurayFingerprint:
    """Collect every identity signal present on the Blu-ray at root."""
    if not (root / "BDMV").is_dir():
        return BlurayFingerprint(error="BDMV folder not found")

    result = BlurayFingerprint(
        embedded_title=extract_embedded_title(root),
        content_id=extract_content_id(root),
    )
    ids = extract_disc_ids(root)
    if ids is not None:
        result.organization_id, result.disc_id = ids

    if result.found_anything:
        logger.info(
            "Blu-ray fingerprint: title=%r content_id=%s disc_id=%s",
            result.embedded_title,
            result.content_id,
            result.disc_id,
        )
    else:
        logger.warning("No Blu-ray metadata found")
        result.error = "No embedded metadata found"
    return result
