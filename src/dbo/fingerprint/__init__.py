"""Disc fingerprint capture and title matching."""

from dbo.fingerprint.arm import ArmCacheFile, ArmDatabase, CacheStats, SyncResult
from dbo.fingerprint.capture import (
    FingerprintCapture,
    capture_fingerprint,
    detect_disc_structure,
    get_best_identifier,
    get_search_hint,
)
from dbo.fingerprint.models import ArmMatch, DiscStructure, Fingerprint, FingerprintType

__all__ = [
    "ArmCacheFile",
    "ArmDatabase",
    "ArmMatch",
    "CacheStats",
    "DiscStructure",
    "Fingerprint",
    "FingerprintCapture",
    "FingerprintType",
    "SyncResult",
    "capture_fingerprint",
    "detect_disc_structure",
    "get_best_identifier",
    "get_search_hint",
]
