"""Data models for disc fingerprints."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class FingerprintType(str, Enum):
    """Strongest identifying signal found on a disc.

    Ordered by preference: a Blu-ray content id beats a disc id, which beats
    an embedded title. crc64 is the only DVD signal.
    """

    CONTENT_ID = "content-id"
    DISC_ID = "disc-id"
    EMBEDDED_TITLE = "embedded-title"
    CRC64 = "crc64"
    UNKNOWN = "unknown"


class DiscStructure(str, Enum):
    """Filesystem layout found at a drive root."""

    DVD = "dvd"
    BLURAY = "bluray"
    UNKNOWN = "unknown"


def utc_now_iso() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class ArmMatch:
    """A title matched from the fingerprint-match cache.

    Attributes:
        title: Matched title.
        year: Release year, if known.
        media_type: "movie" or "series".
        source: "local" for entries added here, "arm" for synced entries.
        confidence: 0.0-1.0; exact CRC64 matches are 0.99.
    """

    title: str
    year: int | None = None
    media_type: str = "movie"
    source: str = "local"
    confidence: float = 0.99

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "year": self.year,
            "type": self.media_type,
            "source": self.source,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ArmMatch:
        return cls(
            title=str(data.get("title", "")),
            year=data.get("year"),
            media_type=data.get("type") or data.get("media_type") or "movie",
            source=data.get("source") or "local",
            confidence=float(data.get("confidence", 0.99)),
        )


@dataclass
class Fingerprint:
    """Identity evidence captured from a disc before extraction."""

    type: FingerprintType = FingerprintType.UNKNOWN
    captured_at: str = field(default_factory=utc_now_iso)
    crc64: str | None = None
    content_id: str | None = None
    disc_id: str | None = None
    organization_id: str | None = None
    embedded_title: str | None = None
    volume_label: str | None = None
    arm_match: ArmMatch | None = None
    error: str | None = None

    @property
    def is_useful(self) -> bool:
        """True if the fingerprint carries any identifying signal."""
        return self.type is not FingerprintType.UNKNOWN and bool(
            self.crc64 or self.content_id or self.disc_id or self.embedded_title
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize with camelCase keys, as stored in metadata.json."""
        return {
            "type": self.type.value,
            "capturedAt": self.captured_at,
            "crc64": self.crc64,
            "contentId": self.content_id,
            "discId": self.disc_id,
            "organizationId": self.organization_id,
            "embeddedTitle": self.embedded_title,
            "volumeLabel": self.volume_label,
            "armMatch": self.arm_match.to_dict() if self.arm_match else None,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Fingerprint:
        try:
            fp_type = FingerprintType(data.get("type", "unknown"))
        except ValueError:
            fp_type = FingerprintType.UNKNOWN
        arm = data.get("armMatch")
        return cls(
            type=fp_type,
            captured_at=data.get("capturedAt") or utc_now_iso(),
            crc64=data.get("crc64"),
            content_id=data.get("contentId"),
            disc_id=data.get("discId"),
            organization_id=data.get("organizationId"),
            embedded_title=data.get("embeddedTitle"),
            volume_label=data.get("volumeLabel"),
            arm_match=ArmMatch.from_dict(arm) if isinstance(arm, dict) else None,
            error=data.get("error"),
        )

    @classmethod
    def unknown(cls, error: str | None = None, **kwargs: Any) -> Fingerprint:
        """Build a degraded fingerprint."""
        return cls(type=FingerprintType.UNKNOWN, error=error, **kwargs)
