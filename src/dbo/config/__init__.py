"""Configuration for DBO.

Precedence: CLI > environment (DBO_*) > ~/.dbo/config.toml > defaults.
"""

from dbo.config.loader import (
    ConfigFileError,
    clear_config_cache,
    get_config,
    get_data_dir,
    get_default_config_path,
    load_config_file,
)
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

__all__ = [
    "ArmConfig",
    "BackupConfig",
    "ConfigFileError",
    "DBOConfig",
    "DetectionConfig",
    "LoggingConfig",
    "PathsConfig",
    "ServerConfig",
    "ToolPathsConfig",
    "clear_config_cache",
    "get_config",
    "get_data_dir",
    "get_default_config_path",
    "load_config_file",
]
