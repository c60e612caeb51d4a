"""Restore gate: validate an archive against the live store and swap it in.

Settings are applied before the version gate and before any store file is
touched. If a later step fails the settings stay updated; there is no
rollback for them.
"""

from __future__ import annotations

import logging
import shutil
import sqlite3
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path

from malib.backup.archive import (
    exclusive_operation,
    extract_archive,
    find_backup_root,
    is_store_file,
    read_settings_snapshot,
    read_version_stamp,
)
from malib.backup.errors import (
    BackupContentsError,
    BackupNotFoundError,
    RestoreFailedError,
    SchemaIncompatibleError,
    StagingDirectoryError,
)
from malib.logging.context import operation_context
from malib.schema.plan import (
    MigrationError,
    MigrationPlan,
    SchemaTooNewError,
)
from malib.schema.version import SchemaVersion, get_schema_version
from malib.settings import PREFERENCE_KEYS, SettingsError, SettingsStore, SettingValue
from malib.store.manager import StoreInitializationError, StoreManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RestoreResult:
    """Result of a restore operation."""

    source_path: Path
    """Archive that was restored."""

    archive_version: SchemaVersion | None
    """Stamped version, or None for a legacy archive."""

    settings_restored: tuple[str, ...]
    """Preference keys written to the settings store."""

    settings_skipped: tuple[str, ...]
    """Keys in the snapshot outside the preference allow-list."""

    store_files: tuple[str, ...]
    """Store files copied into place."""

    duration_seconds: float
    """Time taken to restore."""

    restart_recommended: bool = True
    """Always true: views over the old store should be rebuilt."""


def check_version_gate(
    archive_version: SchemaVersion | None,
    live_version: SchemaVersion,
    allow_same_version: bool = False,
) -> None:
    """Reject archives the live generation must not be overwritten with.

    An archive must be strictly older than the live generation; with
    ``allow_same_version`` an equal version passes too. Unstamped (legacy)
    archives always pass.

    Raises:
        SchemaIncompatibleError: Naming both versions.
    """
    if archive_version is None:
        return
    if archive_version < live_version:
        return
    if allow_same_version and archive_version == live_version:
        return
    raise SchemaIncompatibleError(archive_version, live_version)


def _apply_settings(
    snapshot: dict[str, SettingValue], settings: SettingsStore
) -> tuple[tuple[str, ...], tuple[str, ...]]:
    allowed = set(PREFERENCE_KEYS)
    applied = {k: v for k, v in snapshot.items() if k in allowed}
    skipped = tuple(sorted(k for k in snapshot if k not in allowed))
    for key in skipped:
        logger.warning("Skipping unknown setting %s from backup", key)
    settings.update(applied)
    return tuple(sorted(applied)), skipped


def _incoming_store_files(root: Path, store_name: str) -> list[Path]:
    return sorted(
        p for p in root.iterdir() if p.is_file() and is_store_file(p.name, store_name)
    )


def verify_staged_store(path: Path, plan: MigrationPlan) -> SchemaVersion | None:
    """Check that an extracted store opens and that ``plan`` can migrate it.

    Returns the store's own version: its stamp, or the generation detected
    from its layout when unstamped (None for a store with no entry tables).

    Raises:
        SchemaIncompatibleError: If the store is newer than the plan.
        RestoreFailedError: If the store is missing, unreadable or at an
            unknown version.
    """
    if not path.is_file():
        raise RestoreFailedError("backup contains no store files")
    try:
        conn = sqlite3.connect(str(path))
    except sqlite3.Error as e:
        raise RestoreFailedError(f"backup store cannot be opened: {e}") from e
    try:
        version = get_schema_version(conn)
        if version is None:
            generation = plan.detect_generation(conn)
            return generation.version if generation else None
        plan.generation(version)
        return version
    except SchemaTooNewError as e:
        raise SchemaIncompatibleError(e.on_disk, e.current) from e
    except (MigrationError, sqlite3.Error, ValueError) as e:
        raise RestoreFailedError(f"backup store is not usable: {e}") from e
    finally:
        conn.close()


def _move_live_files_aside(manager: StoreManager) -> Path:
    """Move the live store files into a hidden directory beside them."""
    store_dir = manager.store_dir
    store_dir.mkdir(parents=True, exist_ok=True)
    aside = Path(tempfile.mkdtemp(prefix=".restore-", dir=store_dir))
    try:
        for path in manager.store_files():
            path.replace(aside / path.name)
    except OSError:
        _put_back_live_files(manager, aside, discard_current=False)
        raise
    return aside


def _put_back_live_files(
    manager: StoreManager, aside: Path, *, discard_current: bool = True
) -> None:
    if discard_current:
        for path in manager.store_files():
            path.unlink()
    for path in aside.iterdir():
        path.replace(manager.store_dir / path.name)
    aside.rmdir()


def _replace_store_files(incoming: list[Path], manager: StoreManager) -> None:
    """Swap the incoming files in and open them, or put the live files back.

    The live files are moved aside rather than deleted, so a store that
    fails to open after the copy leaves the previous store in place.
    """
    was_open = manager.is_open
    manager.close()
    try:
        aside = _move_live_files_aside(manager)
    except OSError as e:
        raise RestoreFailedError(f"could not move live store files: {e}") from e

    try:
        for path in incoming:
            shutil.copy2(path, manager.store_dir / path.name)
        manager.open()
    except (OSError, StoreInitializationError) as e:
        manager.close()
        try:
            _put_back_live_files(manager, aside)
        except OSError as put_back_error:
            logger.error(
                "Could not put back the previous store files; they remain in %s: %s",
                aside,
                put_back_error,
            )
            raise RestoreFailedError(
                f"restored store could not be opened ({e}); previous store "
                f"files left in {aside}"
            ) from e
        logger.warning("Restore rolled back, previous store files put back")
        if was_open:
            try:
                manager.open()
            except StoreInitializationError as reopen_error:
                logger.error("Previous store could not be reopened: %s", reopen_error)
        raise RestoreFailedError(f"restored store could not be opened: {e}") from e

    shutil.rmtree(aside, ignore_errors=True)


def restore_backup(
    archive_path: Path,
    manager: StoreManager,
    settings: SettingsStore,
    allow_same_version: bool = False,
) -> RestoreResult:
    """Restore settings and store files from a backup archive.

    Steps: extract to a staging directory, locate the backup folder, apply
    allow-listed settings, check the version gate, check that the staged
    store opens at a known version, swap the store files in and open them.
    The live files are moved aside during the swap and put back if the
    restored store cannot be opened.

    Args:
        archive_path: ``.mallib`` archive to restore.
        manager: Manager of the live store. Its handle is closed and
            re-opened; handles obtained earlier become stale.
        settings: Live settings store.
        allow_same_version: Also accept archives stamped with the live version.

    Returns:
        RestoreResult describing what was restored.

    Raises:
        BackupInProgressError: If another backup or restore is running.
        BackupNotFoundError: If the archive does not exist.
        StagingDirectoryError: If the staging directory cannot be created.
        ArchiveExtractionError: If the archive cannot be decompressed.
        BackupContentsError: If the archive layout or members are invalid.
        SchemaIncompatibleError: If the archive, or the store inside it, fails
            the version gate. The store files are left untouched.
        RestoreFailedError: If settings or store files cannot be replaced,
            or the restored store cannot be opened. The previous store files
            are put back.
    """
    start_time = time.monotonic()
    archive_path = Path(archive_path)
    if manager.in_memory:
        raise RestoreFailedError("cannot restore into an in-memory store")

    with exclusive_operation(), operation_context("restore", archive_path):
        if not archive_path.is_file():
            raise BackupNotFoundError(archive_path)
        logger.info(
            "Starting restore",
            extra={"backup": str(archive_path), "store": str(manager.store_path)},
        )
        try:
            staging_dir = tempfile.TemporaryDirectory(prefix="malib-restore-")
        except OSError as e:
            raise StagingDirectoryError(
                f"Failed to create staging directory: {e}"
            ) from e

        with staging_dir as temp_dir:
            staging = Path(temp_dir)
            extract_archive(archive_path, staging)
            root = find_backup_root(staging)
            archive_version = read_version_stamp(root)

            try:
                snapshot = read_settings_snapshot(root)
                restored, skipped = _apply_settings(snapshot, settings)
            except BackupContentsError as e:
                raise RestoreFailedError(str(e)) from e
            except (SettingsError, TypeError) as e:
                raise RestoreFailedError(f"could not write settings: {e}") from e

            check_version_gate(
                archive_version, manager.schema_version, allow_same_version
            )

            verify_staged_store(root / manager.store_name, manager.plan)
            incoming = _incoming_store_files(root, manager.store_name)
            _replace_store_files(incoming, manager)
            store_files = tuple(path.name for path in incoming)

        duration = time.monotonic() - start_time
        logger.info(
            "Restore complete",
            extra={
                "backup": str(archive_path),
                "archive_version": str(archive_version or "legacy"),
                "settings_restored": len(restored),
                "duration_seconds": round(duration, 2),
            },
        )

    return RestoreResult(
        source_path=archive_path,
        archive_version=archive_version,
        settings_restored=restored,
        settings_skipped=skipped,
        store_files=store_files,
        duration_seconds=duration,
    )
