"""Backup packager: store files, settings and version stamp into one archive.

Usage:
    from malib.backup import create_backup

    result = create_backup(manager, settings, output_dir=backup_dir)
"""

from __future__ import annotations

import logging
import shutil
import tarfile
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path

from malib.backup.archive import (
    BACKUP_EXTENSION,
    SCHEMA_STAMP_NAME,
    SETTINGS_SNAPSHOT_NAME,
    UserSettingsSnapshot,
    encode_version_stamp,
    exclusive_operation,
    generate_archive_name,
)
from malib.backup.errors import (
    ArchiveCreationError,
    SettingsSerializationError,
    StagingDirectoryError,
    StoreFilesError,
    VersionStampError,
)
from malib.logging.context import operation_context
from malib.schema.version import SchemaVersion
from malib.settings import PREFERENCE_KEYS, SettingsStore
from malib.store.manager import StoreManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackupResult:
    """Result of a backup operation."""

    path: Path
    """Path to the created archive."""

    archive_size_bytes: int
    """Size of the compressed archive."""

    schema_version: SchemaVersion
    """Version stamped into the archive."""

    settings_keys: tuple[str, ...]
    """Preference keys included in the snapshot."""

    store_files: tuple[str, ...]
    """Names of the store files included."""

    duration_seconds: float
    """Time taken to create the archive."""


def _write_stamp(root: Path, version: SchemaVersion) -> None:
    try:
        (root / SCHEMA_STAMP_NAME).write_text(
            encode_version_stamp(version), encoding="utf-8"
        )
    except OSError as e:
        raise VersionStampError(f"Failed to write schema version stamp: {e}") from e


def _write_settings(root: Path, settings: SettingsStore) -> tuple[str, ...]:
    try:
        snapshot = UserSettingsSnapshot(settings.snapshot(PREFERENCE_KEYS))
        text = snapshot.to_json_text()
    except (ValueError, TypeError) as e:
        raise SettingsSerializationError(
            f"Failed to serialize user settings: {e}"
        ) from e
    try:
        (root / SETTINGS_SNAPSHOT_NAME).write_text(text, encoding="utf-8")
    except OSError as e:
        raise SettingsSerializationError(f"Failed to write user settings: {e}") from e
    return tuple(sorted(snapshot.root))


def _copy_store_files(root: Path, manager: StoreManager) -> tuple[str, ...]:
    if manager.in_memory:
        raise StoreFilesError("An in-memory store has no files to back up")
    try:
        manager.checkpoint()
        files = manager.store_files()
        if not files:
            raise StoreFilesError(f"No store files found for {manager.store_path}")
        for path in files:
            shutil.copy2(path, root / path.name)
    except OSError as e:
        raise StoreFilesError(f"Failed to copy store files: {e}") from e
    return tuple(path.name for path in files)


def _compress(staging: Path, root: Path, destination: Path) -> None:
    """Compress ``root`` into ``destination``, replacing any existing file."""
    temp_archive = staging / f"archive{BACKUP_EXTENSION}"
    try:
        with tarfile.open(temp_archive, "w:gz") as tf:
            tf.add(root, arcname=root.name)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.unlink(missing_ok=True)
        shutil.move(str(temp_archive), str(destination))
    except (tarfile.TarError, OSError) as e:
        destination.unlink(missing_ok=True)
        raise ArchiveCreationError(f"Failed to create archive: {e}") from e


def create_backup(
    manager: StoreManager,
    settings: SettingsStore,
    output_dir: Path | None = None,
    archive_name: str | None = None,
) -> BackupResult:
    """Create a backup archive of the store and its preferences.

    Args:
        manager: Manager of the store to back up. The store is checkpointed
            so the main file holds every committed change.
        settings: Settings store; only allow-listed keys are included.
        output_dir: Directory for the archive (defaults to the system
            temporary directory).
        archive_name: Archive base name without extension (defaults to a
            timestamped ``MyAnimeList_Backup_...`` name).

    Returns:
        BackupResult describing the archive.

    Raises:
        BackupInProgressError: If another backup or restore is running.
        StagingDirectoryError: If the staging directory cannot be created.
        VersionStampError: If the version stamp cannot be written.
        SettingsSerializationError: If the settings cannot be serialized.
        StoreFilesError: If the store files cannot be found or copied.
        ArchiveCreationError: If compression or the final move fails.
    """
    start_time = time.monotonic()
    name = archive_name or generate_archive_name()
    output_dir = Path(output_dir) if output_dir else Path(tempfile.gettempdir())
    output_path = output_dir / f"{name}{BACKUP_EXTENSION}"
    version = manager.schema_version

    with exclusive_operation(), operation_context("backup", output_path):
        logger.info(
            "Starting backup",
            extra={"store": str(manager.store_path), "output": str(output_path)},
        )
        try:
            staging_dir = tempfile.TemporaryDirectory(prefix="malib-backup-")
        except OSError as e:
            raise StagingDirectoryError(
                f"Failed to create staging directory: {e}"
            ) from e

        with staging_dir as temp_dir:
            staging = Path(temp_dir)
            root = staging / name
            try:
                root.mkdir()
            except OSError as e:
                raise StagingDirectoryError(
                    f"Failed to create backup folder: {e}"
                ) from e

            _write_stamp(root, version)
            settings_keys = _write_settings(root, settings)
            store_files = _copy_store_files(root, manager)
            _compress(staging, root, output_path)

        archive_size = output_path.stat().st_size
        duration = time.monotonic() - start_time
        logger.info(
            "Backup complete",
            extra={
                "output": str(output_path),
                "archive_size": archive_size,
                "schema_version": str(version),
                "settings_count": len(settings_keys),
                "duration_seconds": round(duration, 2),
            },
        )

    return BackupResult(
        path=output_path,
        archive_size_bytes=archive_size,
        schema_version=version,
        settings_keys=settings_keys,
        store_files=store_files,
        duration_seconds=duration,
    )
