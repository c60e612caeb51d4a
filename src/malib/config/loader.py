"""Configuration loader with precedence handling.

Configuration is loaded with the following precedence (highest to lowest):
1. CLI arguments (passed directly to get_config)
2. Environment variables (MALIB_*)
3. Config file (<data_dir>/config.toml)
4. Default values

Environment variables:
- MALIB_DATA_DIR: Data directory (overrides ~/.malib/)
- MALIB_CONFIG_PATH: Config file (overrides <data_dir>/config.toml)
- MALIB_STORE_NAME: Store base filename (default mal.store)
- MALIB_BACKUP_DIR: Directory new backup archives are written to
- MALIB_ALLOW_SAME_VERSION: Accept same-version archives on restore (true/false)
- MALIB_LOG_LEVEL: debug, info, warning or error
- MALIB_LOG_FORMAT: text or json
"""

from __future__ import annotations

import logging
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from malib.config.env import EnvReader
from malib.config.models import (
    DEFAULT_STORE_NAME,
    BackupConfig,
    ConfigError,
    LoggingConfig,
    MalibConfig,
    StorageConfig,
)

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / ".malib"
CONFIG_FILENAME = "config.toml"


def get_data_dir(env: Mapping[str, str] | None = None) -> Path:
    """Get the malib data directory (``MALIB_DATA_DIR`` or ``~/.malib``)."""
    return EnvReader(env).get_path("MALIB_DATA_DIR") or DEFAULT_DATA_DIR


def get_default_config_path(
    data_dir: Path | None = None, env: Mapping[str, str] | None = None
) -> Path:
    """Get the config file path (``MALIB_CONFIG_PATH`` or under the data dir)."""
    env_path = EnvReader(env).get_path("MALIB_CONFIG_PATH")
    if env_path:
        return env_path
    return (data_dir or get_data_dir(env)) / CONFIG_FILENAME


def load_config_file(path: Path) -> dict[str, Any]:
    """Load configuration from a TOML file.

    Returns:
        Parsed configuration dict. Empty dict if the file doesn't exist.

    Raises:
        ConfigError: If the file exists but cannot be read or parsed.
    """
    if not path.exists():
        logger.debug("Config file not found: %s", path)
        return {}
    try:
        with path.open("rb") as f:
            config = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Failed to load config file {path}: {e}") from e
    logger.debug("Loaded config from %s", path)
    return config


def _section(file_config: dict[str, Any], name: str) -> dict[str, Any]:
    section = file_config.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{name}] must be a table")
    return section


def _optional_path(value: Any) -> Path | None:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ConfigError(f"Expected a path string, got {value!r}")
    return Path(value).expanduser()


def _typed(section: dict[str, Any], key: str, kind: type, default: Any) -> Any:
    value = section.get(key, default)
    # bool is an int subclass; reject it where an int is expected
    if isinstance(value, bool) and kind is not bool:
        raise ConfigError(f"{key} must be {kind.__name__}, got {value!r}")
    if not isinstance(value, kind):
        raise ConfigError(f"{key} must be {kind.__name__}, got {value!r}")
    return value


def get_config(
    config_path: Path | None = None,
    *,
    # CLI overrides (highest precedence)
    data_dir: Path | None = None,
    backup_dir: Path | None = None,
    allow_same_version: bool | None = None,
    env: Mapping[str, str] | None = None,
) -> MalibConfig:
    """Get malib configuration with full precedence handling.

    Args:
        config_path: Path to config file (overrides MALIB_CONFIG_PATH).
        data_dir: CLI override for the data directory.
        backup_dir: CLI override for the backup output directory.
        allow_same_version: CLI override for same-version restores.
        env: Environment mapping (defaults to os.environ).

    Returns:
        MalibConfig with merged configuration.

    Raises:
        ConfigError: If any source holds an invalid value.
    """
    reader = EnvReader(env)
    bootstrap_dir = data_dir or reader.get_path("MALIB_DATA_DIR")
    path = config_path or get_default_config_path(bootstrap_dir, env)
    file_config = load_config_file(path)

    storage_file = _section(file_config, "storage")
    storage = StorageConfig(
        data_dir=(
            bootstrap_dir
            or _optional_path(storage_file.get("data_dir"))
            or DEFAULT_DATA_DIR
        ),
        store_name=reader.get_str(
            "MALIB_STORE_NAME",
            _typed(storage_file, "store_name", str, DEFAULT_STORE_NAME),
        ),
    )

    backup_file = _section(file_config, "backup")
    backup = BackupConfig(
        output_dir=(
            backup_dir
            or reader.get_path("MALIB_BACKUP_DIR")
            or _optional_path(backup_file.get("output_dir"))
        ),
        allow_same_version=(
            allow_same_version
            if allow_same_version is not None
            else reader.get_bool(
                "MALIB_ALLOW_SAME_VERSION",
                _typed(backup_file, "allow_same_version", bool, False),
            )
        ),
    )

    logging_file = _section(file_config, "logging")
    defaults = LoggingConfig()
    logging_config = LoggingConfig(
        level=reader.get_str(
            "MALIB_LOG_LEVEL", _typed(logging_file, "level", str, defaults.level)
        ),
        file=_optional_path(logging_file.get("file")),
        format=reader.get_str(
            "MALIB_LOG_FORMAT", _typed(logging_file, "format", str, defaults.format)
        ),
        include_stderr=_typed(
            logging_file, "include_stderr", bool, defaults.include_stderr
        ),
        max_bytes=_typed(logging_file, "max_bytes", int, defaults.max_bytes),
        backup_count=_typed(logging_file, "backup_count", int, defaults.backup_count),
    )

    return MalibConfig(
        storage=storage,
        backup=backup,
        logging=logging_config,
        config_path=path if file_config else None,
    )
