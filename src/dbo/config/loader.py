"""Configuration loader with precedence handling.

Configuration is loaded with the following precedence (highest to lowest):
1. CLI arguments (passed directly to get_config)
2. Environment variables (DBO_*)
3. Config file (~/.dbo/config.toml)
4. Default values

Environment variables:
- DBO_CONFIG_PATH: Path to config file (overrides default location)
- DBO_DATA_DIR: Path to DBO data directory (overrides ~/.dbo/)
- DBO_MAKEMKVCON_PATH / DBO_SEVEN_ZIP_PATH: Tool executables
- DBO_BASE_DIR: Backup root (temp/ and backup/ live beneath it)
- DBO_EJECT_AFTER_BACKUP, DBO_PERFORMANCE_PRESET, DBO_EXTRACTION_MODE
- DBO_LOG_LEVEL, DBO_LOG_FILE, DBO_LOG_FORMAT
- DBO_SERVER_BIND, DBO_SERVER_PORT
"""

from __future__ import annotations

import logging
import os
import threading
import tomllib
from pathlib import Path

from dbo.config.builder import (
    ConfigBuilder,
    ConfigSource,
    source_from_env,
    source_from_file,
)
from dbo.config.env import EnvReader
from dbo.config.models import DBOConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".dbo"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.toml"

# path -> (parsed dict, mtime)
_config_cache: dict[Path, tuple[dict, float]] = {}
_config_cache_lock = threading.Lock()


class ConfigFileError(Exception):
    """Raised when a config file exists but cannot be parsed."""


def get_default_config_path() -> Path:
    """Return the config file path, honoring DBO_CONFIG_PATH."""
    env_path = os.environ.get("DBO_CONFIG_PATH")
    if env_path:
        return Path(env_path).expanduser()
    return get_data_dir() / "config.toml"


def get_data_dir() -> Path:
    """Return the DBO data directory (~/.dbo by default).

    Holds config.toml and the arm-cache/ folder. Can be overridden with
    DBO_DATA_DIR.
    """
    env_path = os.environ.get("DBO_DATA_DIR")
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_DIR


def _read_toml(path: Path, *, strict: bool) -> dict:
    if not path.exists():
        logger.debug("Config file not found: %s", path)
        return {}
    try:
        with path.open("rb") as f:
            result = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        if strict:
            raise ConfigFileError(f"Failed to parse {path}: {e}") from e
        logger.warning("Failed to load config file %s: %s", path, e)
        return {}
    logger.debug("Loaded config from %s", path)
    return result


def load_config_file(path: Path | None = None, *, strict: bool = False) -> dict:
    """Load configuration from a TOML file.

    Results are cached and reloaded when the file's mtime changes.

    Args:
        path: Path to config file. If None, uses the default location.
        strict: Raise ConfigFileError on parse failures instead of
            returning an empty dict.

    Returns:
        Parsed configuration dict. Empty dict if the file doesn't exist.
    """
    if path is None:
        path = get_default_config_path()

    try:
        current_mtime = path.stat().st_mtime
    except FileNotFoundError:
        current_mtime = 0.0

    with _config_cache_lock:
        cached = _config_cache.get(path)
        if cached is not None and cached[1] == current_mtime:
            return cached[0]

        result = _read_toml(path, strict=strict)
        _config_cache[path] = (result, current_mtime)
        return result


def clear_config_cache() -> None:
    """Drop all cached config files. Primarily useful for testing."""
    with _config_cache_lock:
        _config_cache.clear()


def get_config(
    config_path: Path | None = None,
    # CLI overrides (highest precedence)
    makemkvcon_path: Path | None = None,
    base_dir: Path | None = None,
    performance_preset: str | None = None,
    eject_after_backup: bool | None = None,
    # Optional dependency injection for testing
    env_reader: EnvReader | None = None,
    *,
    strict: bool = False,
) -> DBOConfig:
    """Get DBO configuration with full precedence handling.

    Args:
        config_path: Path to config file (overrides DBO_CONFIG_PATH).
        makemkvcon_path: CLI override for the makemkvcon executable.
        base_dir: CLI override for the backup root folder.
        performance_preset: CLI override for the extraction preset.
        eject_after_backup: CLI override for eject-on-success.
        env_reader: EnvReader to use instead of os.environ.
        strict: Raise ConfigFileError on unparseable config files.

    Returns:
        DBOConfig with merged configuration.
    """
    reader = env_reader or EnvReader()
    file_config = load_config_file(config_path, strict=strict)

    cli_source = ConfigSource(
        makemkvcon_path=makemkvcon_path,
        base_dir=base_dir,
        performance_preset=performance_preset,
        eject_after_backup=eject_after_backup,
    )

    builder = ConfigBuilder()
    builder.apply(source_from_file(file_config), source_name="file")
    builder.apply(source_from_env(reader), source_name="env")
    builder.apply(cli_source, source_name="cli")
    config = builder.build()

    if config.arm.cache_file is None:
        config.arm.cache_file = get_data_dir() / "arm-cache" / "dvd-crc64.json"
    return config
