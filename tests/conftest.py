"""Shared test fixtures for malib."""

import logging
import shutil
import sqlite3
import tarfile
import tempfile
from collections.abc import Callable
from pathlib import Path

import pytest
from click.testing import CliRunner

from malib.schema.generations import ENTRY_TABLE, GENERATIONS, Generation
from malib.schema.version import SchemaVersion, set_schema_version
from malib.settings import MemorySettingsStore
from malib.store import StoreManager


@pytest.fixture(autouse=True)
def _restore_root_logging():
    """Undo handler changes made by configure_logging (CLI tests call it)."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test isolation."""
    dir_path = tempfile.mkdtemp()
    yield Path(dir_path)
    shutil.rmtree(dir_path, ignore_errors=True)


@pytest.fixture
def data_dir(temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point MALIB_DATA_DIR at an empty directory and clear other overrides."""
    for var in (
        "MALIB_CONFIG_PATH",
        "MALIB_STORE_NAME",
        "MALIB_BACKUP_DIR",
        "MALIB_ALLOW_SAME_VERSION",
        "MALIB_LOG_LEVEL",
        "MALIB_LOG_FORMAT",
    ):
        monkeypatch.delenv(var, raising=False)
    path = temp_dir / "malib-data"
    monkeypatch.setenv("MALIB_DATA_DIR", str(path))
    return path


@pytest.fixture
def store_path(temp_dir: Path) -> Path:
    """Path of a store file that does not exist yet."""
    return temp_dir / "store" / "mal.store"


@pytest.fixture
def manager(store_path: Path):
    """File-backed store manager, closed after the test."""
    mgr = StoreManager(store_path)
    yield mgr
    mgr.close()


@pytest.fixture
def settings() -> MemorySettingsStore:
    return MemorySettingsStore()


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def _generation_for(version: str) -> Generation:
    wanted = SchemaVersion.parse(version)
    for generation in GENERATIONS:
        if generation.version == wanted:
            return generation
    raise LookupError(version)


@pytest.fixture
def legacy_store() -> Callable[..., Path]:
    """Factory building a store file at an older generation.

    Usage:
        path = legacy_store(path, "2.0.1", [{"tmdb_id": 1, ...}])
    """

    def build(
        path: Path,
        version: str,
        rows: list[dict] | None = None,
        *,
        stamp: bool = True,
    ) -> Path:
        generation = _generation_for(version)
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(path))
        try:
            for statement in generation.create_statements():
                conn.execute(statement)
            for row in rows or []:
                columns = ", ".join(row)
                placeholders = ", ".join("?" for _ in row)
                conn.execute(
                    f"INSERT INTO {ENTRY_TABLE} ({columns}) VALUES ({placeholders})",
                    list(row.values()),
                )
            if stamp:
                set_schema_version(conn, generation.version)
            conn.commit()
        finally:
            conn.close()
        return path

    return build


@pytest.fixture
def make_archive() -> Callable[..., Path]:
    """Factory writing a ``.mallib`` archive from a mapping of member files.

    Usage:
        make_archive(path, "MyAnimeList_Backup_x", {"mal.store": b"..."})
    """

    def build(
        archive_path: Path,
        root_name: str,
        members: dict[str, bytes | str | Path],
    ) -> Path:
        staging = Path(tempfile.mkdtemp())
        try:
            root = staging / root_name
            root.mkdir()
            for name, content in members.items():
                target = root / name
                if isinstance(content, Path):
                    shutil.copy2(content, target)
                elif isinstance(content, str):
                    target.write_text(content, encoding="utf-8")
                else:
                    target.write_bytes(content)
            archive_path.parent.mkdir(parents=True, exist_ok=True)
            with tarfile.open(archive_path, "w:gz") as tf:
                tf.add(root, arcname=root_name)
        finally:
            shutil.rmtree(staging, ignore_errors=True)
        return archive_path

    return build
