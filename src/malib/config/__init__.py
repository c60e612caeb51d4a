"""Configuration loading for malib.

Usage:
    from malib.config import get_config

    config = get_config()
    config.storage.store_path
"""

from malib.config.env import EnvReader
from malib.config.loader import (
    DEFAULT_DATA_DIR,
    get_config,
    get_data_dir,
    get_default_config_path,
    load_config_file,
)
from malib.config.logging_factory import build_logging_config
from malib.config.models import (
    BackupConfig,
    ConfigError,
    LoggingConfig,
    MalibConfig,
    StorageConfig,
)

__all__ = [
    "DEFAULT_DATA_DIR",
    "BackupConfig",
    "ConfigError",
    "EnvReader",
    "LoggingConfig",
    "MalibConfig",
    "StorageConfig",
    "build_logging_config",
    "get_config",
    "get_data_dir",
    "get_default_config_path",
    "load_config_file",
]
