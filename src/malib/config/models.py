"""Configuration data models for malib.

Each section of ``config.toml`` maps onto one dataclass. Validation runs in
``__post_init__`` and raises :class:`ConfigError`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_STORE_NAME = "mal.store"
SETTINGS_FILENAME = "settings.json"
STORE_DIRNAME = "store"
BACKUPS_DIRNAME = "backups"


class ConfigError(ValueError):
    """Invalid configuration value."""


@dataclass
class StorageConfig:
    """Where the record store and settings live.

    Layout under ``data_dir``::

        store/mal.store[-wal|-shm]
        settings.json
        backups/
        config.toml
    """

    data_dir: Path = field(default_factory=lambda: Path.home() / ".malib")

    # Base filename shared by the store file and its -wal/-shm side files
    store_name: str = DEFAULT_STORE_NAME

    def __post_init__(self) -> None:
        """Validate configuration."""
        self.data_dir = Path(self.data_dir).expanduser()
        if not self.store_name or self.store_name.strip() != self.store_name:
            raise ConfigError(
                f"store_name must be a plain filename, got {self.store_name!r}"
            )
        if "/" in self.store_name or "\\" in self.store_name:
            raise ConfigError(
                f"store_name must not contain path separators: {self.store_name!r}"
            )

    @property
    def store_dir(self) -> Path:
        return self.data_dir / STORE_DIRNAME

    @property
    def store_path(self) -> Path:
        return self.store_dir / self.store_name

    @property
    def settings_path(self) -> Path:
        return self.data_dir / SETTINGS_FILENAME


@dataclass
class BackupConfig:
    """Backup and restore behavior."""

    # Directory new archives are written to (None = <data_dir>/backups)
    output_dir: Path | None = None

    # Admit archives stamped with the running schema version on restore
    allow_same_version: bool = False

    def __post_init__(self) -> None:
        if self.output_dir is not None:
            self.output_dir = Path(self.output_dir).expanduser()


LOG_LEVELS = ("debug", "info", "warning", "error")
LOG_FORMATS = ("text", "json")


@dataclass
class LoggingConfig:
    """Where log records go and how they are rendered."""

    # One of LOG_LEVELS
    level: str = "info"

    # Rotating log file; records go to stderr when unset
    file: Path | None = None

    # One of LOG_FORMATS
    format: str = "text"

    # Write to stderr as well as the log file
    include_stderr: bool = False

    # Size at which the log file rotates (10 MiB)
    max_bytes: int = 10 * 1024 * 1024

    # Rotated files kept beside the active one
    backup_count: int = 5

    def __post_init__(self) -> None:
        if self.level.lower() not in LOG_LEVELS:
            raise ConfigError(
                f"log level must be one of {', '.join(LOG_LEVELS)}, got {self.level!r}"
            )
        if self.format.lower() not in LOG_FORMATS:
            raise ConfigError(
                f"log format must be one of {', '.join(LOG_FORMATS)}, "
                f"got {self.format!r}"
            )
        if self.max_bytes <= 0:
            raise ConfigError(f"max_bytes must be positive, got {self.max_bytes}")
        if self.backup_count < 0:
            raise ConfigError(
                f"backup_count must be non-negative, got {self.backup_count}"
            )


@dataclass
class MalibConfig:
    """Main configuration container for malib."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Config file the values were read from, if any
    config_path: Path | None = None

    @property
    def backup_dir(self) -> Path:
        """Directory new backup archives are written to."""
        return self.backup.output_dir or self.storage.data_dir / BACKUPS_DIRNAME
