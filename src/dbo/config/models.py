"""Configuration data models.

This module defines dataclasses for DBO configuration options.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

PERFORMANCE_PRESETS = ("fast", "balanced", "compatibility", "4k-bluray")


@dataclass
class ToolPathsConfig:
    """Configuration for external tool paths.

    All paths are optional. If not specified, tools are looked up in PATH
    and in the default install locations.
    """

    makemkvcon: Path | None = None
    seven_zip: Path | None = None


@dataclass
class PathsConfig:
    """Configuration for backup storage locations."""

    # Root folder; temp/ and backup/ are created beneath it
    base_dir: Path = field(default_factory=lambda: Path.home() / "DiscBackups")

    @property
    def temp_dir(self) -> Path:
        """Folder that holds in-progress extractions."""
        return self.base_dir / "temp"

    @property
    def backup_dir(self) -> Path:
        """Folder that holds finished backups."""
        return self.base_dir / "backup"


@dataclass
class BackupConfig:
    """Configuration for backup behavior."""

    # Eject the disc after a successful backup
    eject_after_backup: bool = False

    # full_backup copies the whole disc structure, smart_extract skips
    # titles shorter than min_title_length_minutes
    extraction_mode: Literal["full_backup", "smart_extract"] = "full_backup"

    min_title_length_minutes: int = 10

    performance_preset: str = "balanced"

    # Split output files at this size (0 = no splitting)
    split_size_mb: int = 0

    def __post_init__(self) -> None:
        """Validate configuration."""
        valid_modes = {"full_backup", "smart_extract"}
        if self.extraction_mode not in valid_modes:
            raise ValueError(
                f"extraction_mode must be one of {valid_modes}, "
                f"got {self.extraction_mode}"
            )
        if self.performance_preset not in PERFORMANCE_PRESETS:
            raise ValueError(
                f"performance_preset must be one of {PERFORMANCE_PRESETS}, "
                f"got {self.performance_preset}"
            )
        if self.min_title_length_minutes < 0:
            raise ValueError("min_title_length_minutes must be non-negative")
        if self.split_size_mb < 0:
            raise ValueError("split_size_mb must be non-negative")


@dataclass
class DetectionConfig:
    """Configuration for drive detection and disc identification."""

    # Timeout for the makemkvcon disc index query, in seconds
    mapping_timeout: float = 30.0

    # How long a disc index mapping stays fresh, in seconds
    mapping_cache_ttl: float = 300.0

    # Timeout for individual OS queries (volume label, size, ...)
    command_timeout: float = 10.0

    # Upper bound for fingerprint capture, in seconds
    fingerprint_timeout: float = 60.0

    def __post_init__(self) -> None:
        """Validate configuration."""
        for name in (
            "mapping_timeout",
            "mapping_cache_ttl",
            "command_timeout",
            "fingerprint_timeout",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")


@dataclass
class ArmConfig:
    """Configuration for the DVD CRC64 match cache."""

    # None means <data_dir>/arm-cache/dvd-crc64.json
    cache_file: Path | None = None

    database_url: str = (
        "https://raw.githubusercontent.com/automatic-ripping-machine/"
        "dvd-crc64-database/main/database.json"
    )

    sync_timeout: float = 30.0

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not self.database_url.startswith(("http://", "https://")):
            raise ValueError("database_url must start with http:// or https://")
        if self.sync_timeout <= 0:
            raise ValueError("sync_timeout must be positive")


@dataclass
class LoggingConfig:
    """Configuration for structured logging."""

    # Log level: debug, info, warning, error
    level: str = "info"

    # Log file path (None = stderr only)
    file: Path | None = None

    # Log format: text or json
    format: str = "text"

    # Also log to stderr when file is set
    include_stderr: bool = False

    # Rotation threshold in bytes (default 10MB)
    max_bytes: int = 10_485_760

    # Number of rotated files to keep
    backup_count: int = 5

    def __post_init__(self) -> None:
        """Validate configuration."""
        valid_levels = {"debug", "info", "warning", "error"}
        if self.level.lower() not in valid_levels:
            raise ValueError(f"level must be one of {valid_levels}, got {self.level}")
        valid_formats = {"text", "json"}
        if self.format.lower() not in valid_formats:
            raise ValueError(
                f"format must be one of {valid_formats}, got {self.format}"
            )
        if self.max_bytes <= 0:
            raise ValueError("max_bytes must be positive")
        if self.backup_count < 0:
            raise ValueError("backup_count must be non-negative")


@dataclass
class ServerConfig:
    """Configuration for the HTTP event service."""

    bind: str = "127.0.0.1"
    port: int = 8322
    shutdown_timeout: float = 30.0

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not 1 <= self.port <= 65535:
            raise ValueError(f"port must be 1-65535, got {self.port}")
        if self.shutdown_timeout < 0:
            raise ValueError("shutdown_timeout must be non-negative")


@dataclass
class DBOConfig:
    """Main configuration aggregating all sections."""

    tools: ToolPathsConfig = field(default_factory=ToolPathsConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    arm: ArmConfig = field(default_factory=ArmConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
