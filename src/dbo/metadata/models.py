"""Pydantic models for the per-backup metadata.json document.

The orchestrator only owns the ``fingerprint`` field. Everything else
belongs to the identification pipeline, so unknown fields are preserved
verbatim on a load/save round trip.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from dbo.fingerprint.models import utc_now_iso

SCHEMA_VERSION = 1


class MetadataStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    MANUAL = "manual"
    ERROR = "error"
    EXPORTED = "exported"


class DiscInfoModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    volume_label: str = Field(default="Unknown", alias="volumeLabel")
    type: str = "unknown"
    total_size: int = Field(default=0, alias="totalSize")
    main_feature_duration: int | None = Field(
        default=None, alias="mainFeatureDuration"
    )
    title_count: int = Field(default=0, alias="titleCount")


class FinalInfoModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    title: str | None = None
    year: int | None = None
    sort_title: str | None = Field(default=None, alias="sortTitle")
    suggested_folder_name: str | None = Field(
        default=None, alias="suggestedFolderName"
    )


class DiscMetadata(BaseModel):
    """Contents of a backup's metadata.json."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    version: int = SCHEMA_VERSION
    status: MetadataStatus = MetadataStatus.PENDING
    created_at: str = Field(default_factory=utc_now_iso, alias="createdAt")
    updated_at: str = Field(default_factory=utc_now_iso, alias="updatedAt")
    disc: DiscInfoModel = Field(default_factory=DiscInfoModel)
    fingerprint: dict[str, Any] | None = None
    final: FinalInfoModel = Field(default_factory=FinalInfoModel)

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def create_empty_metadata(
    volume_label: str | None = None,
    disc_type: str | None = None,
    total_size: int = 0,
) -> DiscMetadata:
    """Create the metadata for a backup that has none yet."""
    return DiscMetadata(
        disc=DiscInfoModel(
            volume_label=volume_label or "Unknown",
            type=disc_type or "unknown",
            total_size=total_size or 0,
        )
    )
