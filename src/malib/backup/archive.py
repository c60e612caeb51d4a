"""Backup archive format, shared helpers and inspection.

Archive format:
    MyAnimeList_Backup_{timestamp}.mallib      (gzip-compressed tar)
    └── MyAnimeList_Backup_{timestamp}/
        ├── SchemaVersion.json                 # [major, minor, patch]
        ├── UserSettings.json                  # {"key": scalar, ...}
        ├── mal.store
        ├── mal.store-wal                      # when present
        └── mal.store-shm                      # when present

Older archives may carry ``SchemaVersion.txt`` (same JSON) or no stamp at
all; both are accepted.

Usage:
    from malib.backup.archive import inspect_backup, list_backups

    info = inspect_backup(path)
    backups = list_backups(backup_dir)
"""

from __future__ import annotations

import json
import logging
import re
import tarfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath
from typing import IO

from pydantic import RootModel, ValidationError

from malib.backup.errors import (
    ArchiveExtractionError,
    BackupContentsError,
    BackupError,
    BackupInProgressError,
    BackupNotFoundError,
)
from malib.core.datetime_utils import backup_timestamp
from malib.schema.version import SchemaVersion
from malib.settings import SettingValue

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

#: Extension (and type tag) of backup archives
BACKUP_EXTENSION = ".mallib"

#: Prefix of archive and root-folder names
BACKUP_NAME_PREFIX = "MyAnimeList_Backup_"

#: Version stamp member
SCHEMA_STAMP_NAME = "SchemaVersion.json"

#: Version stamp member written by older releases
LEGACY_SCHEMA_STAMP_NAME = "SchemaVersion.txt"

#: Settings snapshot member
SETTINGS_SNAPSHOT_NAME = "UserSettings.json"

_TIMESTAMP_PATTERN = re.compile(
    rf"^{BACKUP_NAME_PREFIX}(\d{{4}}-\d{{2}}-\d{{2}})T(\d{{2}})(\d{{2}})(\d{{2}})Z"
)

# =============================================================================
# Member models
# =============================================================================


class UserSettingsSnapshot(RootModel[dict[str, str | int | float | bool | None]]):
    """Flat JSON object of preference keys to scalar values."""

    @classmethod
    def from_json_bytes(cls, raw: bytes | str) -> UserSettingsSnapshot:
        """Decode a settings member.

        Raises:
            BackupContentsError: If it is not a flat object of scalars.
        """
        try:
            return cls.model_validate_json(raw)
        except ValidationError as e:
            raise BackupContentsError(
                f"Invalid {SETTINGS_SNAPSHOT_NAME}: {e.error_count()} error(s)"
            ) from e

    def to_json_text(self) -> str:
        return json.dumps(self.root, indent=2, sort_keys=True)


def encode_version_stamp(version: SchemaVersion) -> str:
    return json.dumps(version.to_json())


def decode_version_stamp(raw: bytes | str) -> SchemaVersion:
    """Decode a version stamp member.

    Raises:
        BackupContentsError: If the member is not a valid version.
    """
    try:
        return SchemaVersion.from_json(json.loads(raw))
    except (ValueError, TypeError) as e:
        raise BackupContentsError(f"Invalid schema version stamp: {e}") from e


# =============================================================================
# Data Types
# =============================================================================


@dataclass(frozen=True)
class BackupInfo:
    """Contents of a backup archive, read without extracting store files."""

    path: Path
    """Full path to the archive."""

    root_name: str
    """Name of the single top-level folder."""

    schema_version: SchemaVersion | None
    """Stamped version, or None for a legacy archive without a stamp."""

    settings: dict[str, SettingValue]
    """Settings snapshot (empty when the member is missing)."""

    store_files: tuple[str, ...]
    """Names of the store files in the archive."""

    store_size_bytes: int
    """Uncompressed size of the store files."""

    @property
    def is_legacy(self) -> bool:
        return self.schema_version is None


@dataclass(frozen=True)
class BackupListing:
    """One archive found in a backup directory."""

    path: Path
    """Full path to the archive."""

    filename: str
    """Archive filename."""

    created_at: datetime
    """Timestamp from the filename, else the file modification time."""

    archive_size_bytes: int
    """Size of the compressed archive."""

    info: BackupInfo | None
    """Archive contents if readable, else None."""


# =============================================================================
# Helper Functions
# =============================================================================

_operation_lock = threading.Lock()


@contextmanager
def exclusive_operation() -> Iterator[None]:
    """Hold the process-wide backup/restore lock.

    Raises:
        BackupInProgressError: If another backup or restore holds it.
    """
    if not _operation_lock.acquire(blocking=False):
        raise BackupInProgressError("A backup or restore is already in progress")
    try:
        yield
    finally:
        _operation_lock.release()


def generate_archive_name(now: datetime | None = None) -> str:
    """Return an archive base name like ``MyAnimeList_Backup_2026-02-05T143022Z``."""
    return f"{BACKUP_NAME_PREFIX}{backup_timestamp(now)}"


def is_store_file(name: str, store_name: str) -> bool:
    """Whether ``name`` is the store file or one of its side files."""
    return name.startswith(store_name)


def extract_archive(archive_path: Path, destination: Path) -> None:
    """Decompress an archive into ``destination``.

    Member paths are sanitized with tarfile's ``data`` filter, which rejects
    absolute paths, links out of the destination and special files.

    Raises:
        ArchiveExtractionError: If the archive is unreadable or unsafe.
    """
    try:
        with tarfile.open(archive_path, "r:gz") as tf:
            tf.extractall(destination, filter="data")
    except (tarfile.TarError, OSError, EOFError) as e:
        raise ArchiveExtractionError(f"Failed to extract {archive_path}: {e}") from e


def find_backup_root(staging: Path) -> Path:
    """Locate the single top-level folder of an extracted archive.

    Raises:
        BackupContentsError: If there is no top-level folder or more than one.
    """
    folders = [
        p for p in staging.iterdir() if p.is_dir() and not p.name.startswith(".")
    ]
    if not folders:
        raise BackupContentsError("Backup archive contains no backup folder")
    if len(folders) > 1:
        names = ", ".join(sorted(p.name for p in folders))
        raise BackupContentsError(f"Backup archive contains several folders: {names}")
    return folders[0]


def read_version_stamp(root: Path) -> SchemaVersion | None:
    """Read the stamp from an extracted backup folder (None if absent)."""
    for name in (SCHEMA_STAMP_NAME, LEGACY_SCHEMA_STAMP_NAME):
        path = root / name
        if path.is_file():
            return decode_version_stamp(path.read_bytes())
    return None


def read_settings_snapshot(root: Path) -> dict[str, SettingValue]:
    """Read the settings snapshot from an extracted backup folder."""
    path = root / SETTINGS_SNAPSHOT_NAME
    if not path.is_file():
        logger.warning("Backup has no %s; no settings restored", SETTINGS_SNAPSHOT_NAME)
        return {}
    return UserSettingsSnapshot.from_json_bytes(path.read_bytes()).root


def _created_at(path: Path) -> datetime:
    match = _TIMESTAMP_PATTERN.match(path.name)
    if match:
        day, hour, minute, second = match.groups()
        try:
            return datetime.fromisoformat(f"{day}T{hour}:{minute}:{second}+00:00")
        except ValueError:
            logger.debug("Ignoring invalid timestamp in %s", path.name)
    return datetime.fromtimestamp(path.stat().st_mtime, UTC)


def _read_member(tf: tarfile.TarFile, member: tarfile.TarInfo) -> bytes:
    f: IO[bytes] | None = tf.extractfile(member)
    if f is None:
        raise BackupContentsError(f"Failed to read {member.name} from archive")
    with f:
        return f.read()


# =============================================================================
# Public API
# =============================================================================


def inspect_backup(path: Path, store_name: str = "mal.store") -> BackupInfo:
    """Read an archive's stamp, settings and file list without extracting it.

    Args:
        path: Archive to inspect.
        store_name: Store base filename used to recognize store files.

    Raises:
        BackupNotFoundError: If the archive does not exist.
        ArchiveExtractionError: If it is not a readable gzip tar.
        BackupContentsError: If its layout or members are invalid.
    """
    path = Path(path)
    if not path.is_file():
        raise BackupNotFoundError(path)

    try:
        with tarfile.open(path, "r:gz") as tf:
            members = tf.getmembers()
            roots = {
                PurePosixPath(m.name).parts[0]
                for m in members
                if PurePosixPath(m.name).parts
            }
            roots = {r for r in roots if not r.startswith(".")}
            if len(roots) != 1:
                raise BackupContentsError(
                    f"Expected one backup folder in {path.name}, found {len(roots)}"
                )
            root_name = roots.pop()

            files: dict[str, tarfile.TarInfo] = {}
            for member in members:
                parts = PurePosixPath(member.name).parts
                if member.isfile() and len(parts) == 2 and parts[0] == root_name:
                    files[parts[1]] = member

            schema_version = None
            for stamp_name in (SCHEMA_STAMP_NAME, LEGACY_SCHEMA_STAMP_NAME):
                if stamp_name in files:
                    schema_version = decode_version_stamp(
                        _read_member(tf, files[stamp_name])
                    )
                    break

            settings: dict[str, SettingValue] = {}
            if SETTINGS_SNAPSHOT_NAME in files:
                settings = UserSettingsSnapshot.from_json_bytes(
                    _read_member(tf, files[SETTINGS_SNAPSHOT_NAME])
                ).root
    except (tarfile.TarError, OSError, EOFError) as e:
        raise ArchiveExtractionError(f"Failed to read {path}: {e}") from e

    store_members = sorted(
        (name, m) for name, m in files.items() if is_store_file(name, store_name)
    )
    return BackupInfo(
        path=path,
        root_name=root_name,
        schema_version=schema_version,
        settings=settings,
        store_files=tuple(name for name, _ in store_members),
        store_size_bytes=sum(m.size for _, m in store_members),
    )


def list_backups(directory: Path, store_name: str = "mal.store") -> list[BackupListing]:
    """List ``.mallib`` archives in ``directory``, newest first.

    Archives that cannot be read are listed with ``info=None``. A missing
    directory lists as empty.
    """
    directory = Path(directory)
    if not directory.is_dir():
        return []

    listings: list[BackupListing] = []
    for path in directory.glob(f"*{BACKUP_EXTENSION}"):
        try:
            archive_size = path.stat().st_size
        except OSError as e:
            logger.warning("Failed to read backup file %s: %s", path, e)
            continue

        info: BackupInfo | None = None
        try:
            info = inspect_backup(path, store_name)
        except BackupError as e:
            logger.debug("Failed to inspect %s: %s", path, e)

        listings.append(
            BackupListing(
                path=path,
                filename=path.name,
                created_at=_created_at(path),
                archive_size_bytes=archive_size,
                info=info,
            )
        )

    listings.sort(key=lambda b: (b.created_at, b.filename), reverse=True)
    return listings
