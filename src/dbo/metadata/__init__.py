"""Per-backup metadata documents."""

from dbo.metadata.models import (
    SCHEMA_VERSION,
    DiscMetadata,
    MetadataStatus,
    create_empty_metadata,
)
from dbo.metadata.store import METADATA_FILENAME, JsonMetadataStore

__all__ = [
    "METADATA_FILENAME",
    "SCHEMA_VERSION",
    "DiscMetadata",
    "JsonMetadataStore",
    "MetadataStatus",
    "create_empty_metadata",
]
