"""Backup orchestration: registry of in-flight backups, events and
collaborator seams."""

from dbo.backup.events import EventBus
from dbo.backup.exceptions import (
    BackupCancelledError,
    BackupError,
    BackupProcessingError,
    ToolNotFoundError,
)
from dbo.backup.interfaces import (
    DiscIdentifier,
    ExtractionAdapter,
    FingerprintMatchCache,
    IdentifyResult,
    LoggingNotifier,
    MetadataStore,
    Notifier,
)
from dbo.backup.models import (
    BackupEvent,
    BackupHandle,
    BackupProgress,
    BackupResult,
    BackupState,
    StartBackupResult,
)
from dbo.backup.orchestrator import BackupOrchestrator

__all__ = [
    "BackupCancelledError",
    "BackupError",
    "BackupEvent",
    "BackupHandle",
    "BackupOrchestrator",
    "BackupProcessingError",
    "BackupProgress",
    "BackupResult",
    "BackupState",
    "DiscIdentifier",
    "EventBus",
    "ExtractionAdapter",
    "FingerprintMatchCache",
    "IdentifyResult",
    "LoggingNotifier",
    "MetadataStore",
    "Notifier",
    "StartBackupResult",
    "ToolNotFoundError",
]
