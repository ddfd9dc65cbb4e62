"""Wiring of the production components.

Both the CLI and the HTTP service run on the same object graph: one
platform, mapper and enumerator, one ARM cache shared by fingerprint
capture and the orchestrator, and one event bus.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from dbo.backup.events import EventBus
from dbo.backup.interfaces import AdapterFactory, LoggingNotifier, Notifier
from dbo.backup.orchestrator import BackupOrchestrator
from dbo.config.models import DBOConfig
from dbo.drives.detector import DriveEnumerator
from dbo.drives.mapping import DiscIndexMapper
from dbo.drives.platform import DrivePlatform, WindowsPlatform
from dbo.fingerprint.arm import ArmDatabase
from dbo.fingerprint.capture import FingerprintCapture
from dbo.makemkv.adapter import MakeMKVAdapterFactory
from dbo.metadata.store import JsonMetadataStore

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """The assembled components of a running DBO instance."""

    config: DBOConfig
    enumerator: DriveEnumerator
    arm_database: ArmDatabase
    fingerprint_capture: FingerprintCapture
    event_bus: EventBus
    orchestrator: BackupOrchestrator


def build_runtime(
    config: DBOConfig,
    *,
    platform: DrivePlatform | None = None,
    mapper: DiscIndexMapper | None = None,
    adapter_factory: AdapterFactory | None = None,
    notifier: Notifier | None = None,
) -> Runtime:
    """Assemble the components described by config.

    Args:
        config: Loaded configuration.
        platform: OS drive access; WindowsPlatform when None.
        mapper: Disc index mapper; built from config when None.
        adapter_factory: Extraction adapter factory; built from config when None.
        notifier: User notifications; logged when None.

    Returns:
        Runtime with every component wired together.
    """
    detection = config.detection
    platform = platform or WindowsPlatform(timeout=detection.command_timeout)
    mapper = mapper or DiscIndexMapper(
        config.tools.makemkvcon,
        timeout=detection.mapping_timeout,
        cache_ttl=detection.mapping_cache_ttl,
    )
    enumerator = DriveEnumerator(platform, mapper)

    assert config.arm.cache_file is not None
    arm_database = ArmDatabase(
        config.arm.cache_file,
        database_url=config.arm.database_url,
        sync_timeout=config.arm.sync_timeout,
    )
    capture = FingerprintCapture(
        timeout=detection.fingerprint_timeout,
        match_cache=arm_database,
        root_path=platform.root_path,
    )
    event_bus = EventBus()
    orchestrator = BackupOrchestrator(
        adapter_factory or MakeMKVAdapterFactory(config),
        fingerprint_capture=capture,
        event_bus=event_bus,
        metadata_store=JsonMetadataStore(),
        match_cache=arm_database,
        notifier=notifier or LoggingNotifier(),
        mapper=mapper,
        eject=enumerator.eject_drive,
        eject_after_backup=config.backup.eject_after_backup,
    )
    logger.debug(
        "Runtime assembled",
        extra={
            "base_dir": str(config.paths.base_dir),
            "arm_cache": str(config.arm.cache_file),
        },
    )
    return Runtime(
        config=config,
        enumerator=enumerator,
        arm_database=arm_database,
        fingerprint_capture=capture,
        event_bus=event_bus,
        orchestrator=orchestrator,
    )
