"""Tests for config/models.py and config/logging_factory.py."""

from pathlib import Path

import pytest

from dbo.config.logging_factory import build_logging_config
from dbo.config.models import (
    ArmConfig,
    BackupConfig,
    DetectionConfig,
    LoggingConfig,
    ServerConfig,
)


class TestValidation:
    """Each section rejects values it cannot work with."""

    def test_unknown_preset(self) -> None:
        with pytest.raises(ValueError, match="performance_preset"):
            BackupConfig(performance_preset="turbo")

    def test_unknown_extraction_mode(self) -> None:
        with pytest.raises(ValueError, match="extraction_mode"):
            BackupConfig(extraction_mode="everything")

    def test_negative_split_size(self) -> None:
        with pytest.raises(ValueError, match="split_size_mb"):
            BackupConfig(split_size_mb=-1)

    @pytest.mark.parametrize(
        "field", ["mapping_timeout", "mapping_cache_ttl", "command_timeout"]
    )
    def test_detection_timeouts_positive(self, field: str) -> None:
        with pytest.raises(ValueError, match=field):
            DetectionConfig(**{field: 0})

    def test_arm_url_scheme(self) -> None:
        with pytest.raises(ValueError, match="database_url"):
            ArmConfig(database_url="ftp://example.invalid/db.json")

    def test_server_port_range(self) -> None:
        with pytest.raises(ValueError, match="port"):
            ServerConfig(port=70000)

    def test_logging_level(self) -> None:
        with pytest.raises(ValueError, match="level"):
            LoggingConfig(level="verbose")
        assert LoggingConfig(level="DEBUG").level == "DEBUG"


class TestBuildLoggingConfig:
    """Tests for merging CLI logging overrides."""

    def test_overrides_applied(self) -> None:
        base = LoggingConfig(level="info", file=Path("/var/log/dbo.log"))

        merged = build_logging_config(base, level="debug", format="json")

        assert merged.level == "debug"
        assert merged.format == "json"
        assert merged.file == Path("/var/log/dbo.log")
        assert merged.max_bytes == base.max_bytes

    def test_no_overrides_keeps_base(self) -> None:
        base = LoggingConfig(include_stderr=True)
        assert build_logging_config(base) == base

    def test_invalid_override(self) -> None:
        with pytest.raises(ValueError):
            build_logging_config(LoggingConfig(), format="xml")
