"""Configuration builder with explicit layering.

ConfigBuilder composes DBOConfig from several ConfigSource layers. Each
layer only overrides the values it actually specifies.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from dbo.config.env import EnvReader
from dbo.config.models import (
    ArmConfig,
    BackupConfig,
    DBOConfig,
    DetectionConfig,
    LoggingConfig,
    PathsConfig,
    ServerConfig,
    ToolPathsConfig,
)


@dataclass
class ConfigSource:
    """Configuration values from a single source.

    None means "not specified here" and never overrides a value from a
    lower-precedence source.
    """

    # Tool paths
    makemkvcon_path: Path | None = None
    seven_zip_path: Path | None = None

    # Storage
    base_dir: Path | None = None

    # Backup behavior
    eject_after_backup: bool | None = None
    extraction_mode: str | None = None
    min_title_length_minutes: int | None = None
    performance_preset: str | None = None
    split_size_mb: int | None = None

    # Detection
    mapping_timeout: float | None = None
    mapping_cache_ttl: float | None = None
    command_timeout: float | None = None
    fingerprint_timeout: float | None = None

    # Match cache
    arm_cache_file: Path | None = None
    arm_database_url: str | None = None
    arm_sync_timeout: float | None = None

    # Logging
    logging_level: str | None = None
    logging_file: Path | None = None
    logging_format: str | None = None
    logging_include_stderr: bool | None = None
    logging_max_bytes: int | None = None
    logging_backup_count: int | None = None

    # Server
    server_bind: str | None = None
    server_port: int | None = None
    server_shutdown_timeout: float | None = None


class ConfigBuilder:
    """Builds DBOConfig by layering ConfigSources.

    Example:
        builder = ConfigBuilder()
        builder.apply(source_from_file(file_config))
        builder.apply(source_from_env(EnvReader()))
        builder.apply(cli_source)
        config = builder.build()
    """

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}
        self._origins: dict[str, str] = {}

    def apply(self, source: ConfigSource, source_name: str = "unknown") -> None:
        """Apply a source; its non-None values override earlier ones.

        Args:
            source: Configuration source to apply.
            source_name: Label recorded as the origin of each value.
        """
        for field_obj in fields(source):
            value = getattr(source, field_obj.name)
            if value is not None:
                self._values[field_obj.name] = value
                self._origins[field_obj.name] = source_name

    def origin_of(self, key: str) -> str:
        """Return which source supplied key ("default" when none did)."""
        return self._origins.get(key, "default")

    def _get(self, key: str, default: Any) -> Any:
        return self._values.get(key, default)

    def build(self) -> DBOConfig:
        """Build the final DBOConfig, filling unset values with defaults.

        Raises:
            ValueError: If a layered value fails section validation.
        """
        tools = ToolPathsConfig(
            makemkvcon=self._get("makemkvcon_path", None),
            seven_zip=self._get("seven_zip_path", None),
        )

        paths = PathsConfig()
        if "base_dir" in self._values:
            paths = PathsConfig(base_dir=self._values["base_dir"])

        backup = BackupConfig(
            eject_after_backup=self._get("eject_after_backup", False),
            extraction_mode=self._get("extraction_mode", "full_backup"),
            min_title_length_minutes=self._get("min_title_length_minutes", 10),
            performance_preset=self._get("performance_preset", "balanced"),
            split_size_mb=self._get("split_size_mb", 0),
        )

        detection = DetectionConfig(
            mapping_timeout=self._get("mapping_timeout", 30.0),
            mapping_cache_ttl=self._get("mapping_cache_ttl", 300.0),
            command_timeout=self._get("command_timeout", 10.0),
            fingerprint_timeout=self._get("fingerprint_timeout", 60.0),
        )

        arm_defaults = ArmConfig()
        arm = ArmConfig(
            cache_file=self._get("arm_cache_file", None),
            database_url=self._get("arm_database_url", arm_defaults.database_url),
            sync_timeout=self._get("arm_sync_timeout", arm_defaults.sync_timeout),
        )

        logging_config = LoggingConfig(
            level=self._get("logging_level", "info"),
            file=self._get("logging_file", None),
            format=self._get("logging_format", "text"),
            include_stderr=self._get("logging_include_stderr", False),
            max_bytes=self._get("logging_max_bytes", 10_485_760),
            backup_count=self._get("logging_backup_count", 5),
        )

        server = ServerConfig(
            bind=self._get("server_bind", "127.0.0.1"),
            port=self._get("server_port", 8322),
            shutdown_timeout=self._get("server_shutdown_timeout", 30.0),
        )

        return DBOConfig(
            tools=tools,
            paths=paths,
            backup=backup,
            detection=detection,
            arm=arm,
            logging=logging_config,
            server=server,
        )


def _optional_path(value: Any) -> Path | None:
    return Path(value).expanduser() if value else None


def source_from_file(file_config: dict[str, Any]) -> ConfigSource:
    """Create a ConfigSource from a parsed TOML document.

    Expected sections: [tools], [paths], [backup], [detection], [arm],
    [logging], [server]. Unknown keys are ignored.
    """
    tools = file_config.get("tools", {})
    paths = file_config.get("paths", {})
    backup = file_config.get("backup", {})
    detection = file_config.get("detection", {})
    arm = file_config.get("arm", {})
    logging_conf = file_config.get("logging", {})
    server = file_config.get("server", {})

    return ConfigSource(
        makemkvcon_path=_optional_path(tools.get("makemkvcon")),
        seven_zip_path=_optional_path(tools.get("seven_zip")),
        base_dir=_optional_path(paths.get("base_dir")),
        eject_after_backup=backup.get("eject_after_backup"),
        extraction_mode=backup.get("extraction_mode"),
        min_title_length_minutes=backup.get("min_title_length_minutes"),
        performance_preset=backup.get("performance_preset"),
        split_size_mb=backup.get("split_size_mb"),
        mapping_timeout=detection.get("mapping_timeout"),
        mapping_cache_ttl=detection.get("mapping_cache_ttl"),
        command_timeout=detection.get("command_timeout"),
        fingerprint_timeout=detection.get("fingerprint_timeout"),
        arm_cache_file=_optional_path(arm.get("cache_file")),
        arm_database_url=arm.get("database_url"),
        arm_sync_timeout=arm.get("sync_timeout"),
        logging_level=logging_conf.get("level"),
        logging_file=_optional_path(logging_conf.get("file")),
        logging_format=logging_conf.get("format"),
        logging_include_stderr=logging_conf.get("include_stderr"),
        logging_max_bytes=logging_conf.get("max_bytes"),
        logging_backup_count=logging_conf.get("backup_count"),
        server_bind=server.get("bind"),
        server_port=server.get("port"),
        server_shutdown_timeout=server.get("shutdown_timeout"),
    )


def source_from_env(reader: EnvReader) -> ConfigSource:
    """Create a ConfigSource from DBO_* environment variables."""
    return ConfigSource(
        makemkvcon_path=reader.get_path("DBO_MAKEMKVCON_PATH", must_exist=True),
        seven_zip_path=reader.get_path("DBO_SEVEN_ZIP_PATH", must_exist=True),
        base_dir=reader.get_path("DBO_BASE_DIR"),
        eject_after_backup=reader.get_bool("DBO_EJECT_AFTER_BACKUP"),
        extraction_mode=reader.get_str("DBO_EXTRACTION_MODE"),
        min_title_length_minutes=reader.get_int("DBO_MIN_TITLE_LENGTH"),
        performance_preset=reader.get_str("DBO_PERFORMANCE_PRESET"),
        split_size_mb=reader.get_int("DBO_SPLIT_SIZE_MB"),
        mapping_timeout=reader.get_float("DBO_MAPPING_TIMEOUT"),
        mapping_cache_ttl=reader.get_float("DBO_MAPPING_CACHE_TTL"),
        command_timeout=reader.get_float("DBO_COMMAND_TIMEOUT"),
        fingerprint_timeout=reader.get_float("DBO_FINGERPRINT_TIMEOUT"),
        arm_cache_file=reader.get_path("DBO_ARM_CACHE_FILE"),
        arm_database_url=reader.get_str("DBO_ARM_DATABASE_URL"),
        arm_sync_timeout=reader.get_float("DBO_ARM_SYNC_TIMEOUT"),
        logging_level=reader.get_str("DBO_LOG_LEVEL"),
        logging_file=reader.get_path("DBO_LOG_FILE"),
        logging_format=reader.get_str("DBO_LOG_FORMAT"),
        server_bind=reader.get_str("DBO_SERVER_BIND"),
        server_port=reader.get_int("DBO_SERVER_PORT"),
        server_shutdown_timeout=reader.get_float("DBO_SERVER_SHUTDOWN_TIMEOUT"),
    )
