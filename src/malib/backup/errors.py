"""Backup and restore error hierarchy.

Every failure mode of the packager and the restore gate has its own type so
callers can report it precisely. All derive from :class:`BackupError`.
"""

from __future__ import annotations

from pathlib import Path

from malib.schema.version import SchemaVersion


class BackupError(Exception):
    """Base class for backup/restore errors."""


class BackupInProgressError(BackupError):
    """Another backup or restore is already running in this process."""


class BackupNotFoundError(BackupError):
    """The archive to restore or inspect does not exist."""

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"Backup file not found: {path}")


# Packager failures


class StagingDirectoryError(BackupError):
    """The temporary staging directory could not be created."""


class VersionStampError(BackupError):
    """The schema version stamp could not be written."""


class SettingsSerializationError(BackupError):
    """The settings snapshot could not be serialized."""


class StoreFilesError(BackupError):
    """The store files could not be enumerated or copied."""


class ArchiveCreationError(BackupError):
    """The staging directory could not be compressed into an archive."""


# Restore failures


class ArchiveExtractionError(BackupError):
    """The archive could not be decompressed."""


class BackupContentsError(BackupError):
    """The archive does not have the expected layout or member contents."""


class SchemaIncompatibleError(BackupError):
    """The archive was produced by a generation the live store cannot accept."""

    def __init__(self, archive_version: SchemaVersion, live_version: SchemaVersion):
        self.archive_version = archive_version
        self.live_version = live_version
        super().__init__(
            f"Backup schema version {archive_version} is incompatible with the "
            f"current schema version {live_version}"
        )


class RestoreFailedError(BackupError):
    """Settings or store files could not be replaced."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Restore failed: {reason}")
