"""Backup and restore of the record store and user preferences.

Usage:
    from malib.backup import create_backup, restore_backup, list_backups

    result = create_backup(manager, settings, output_dir=backup_dir)
    restore_backup(result.path, manager, settings)
"""

from malib.backup.archive import (
    BACKUP_EXTENSION,
    BackupInfo,
    BackupListing,
    inspect_backup,
    list_backups,
)
from malib.backup.errors import (
    ArchiveCreationError,
    ArchiveExtractionError,
    BackupContentsError,
    BackupError,
    BackupInProgressError,
    BackupNotFoundError,
    RestoreFailedError,
    SchemaIncompatibleError,
    SettingsSerializationError,
    StagingDirectoryError,
    StoreFilesError,
    VersionStampError,
)
from malib.backup.packager import BackupResult, create_backup
from malib.backup.restore import RestoreResult, check_version_gate, restore_backup

__all__ = [
    "BACKUP_EXTENSION",
    "BackupInfo",
    "BackupListing",
    "inspect_backup",
    "list_backups",
    "ArchiveCreationError",
    "ArchiveExtractionError",
    "BackupContentsError",
    "BackupError",
    "BackupInProgressError",
    "BackupNotFoundError",
    "RestoreFailedError",
    "SchemaIncompatibleError",
    "SettingsSerializationError",
    "StagingDirectoryError",
    "StoreFilesError",
    "VersionStampError",
    "BackupResult",
    "create_backup",
    "RestoreResult",
    "check_version_gate",
    "restore_backup",
]
