"""Tests for restore_backup() and the version gate."""

import hashlib
import json
import logging
import sqlite3
import tarfile
from pathlib import Path

import pytest

from malib.backup import (
    ArchiveExtractionError,
    BackupContentsError,
    BackupNotFoundError,
    RestoreFailedError,
    SchemaIncompatibleError,
    check_version_gate,
    create_backup,
    restore_backup,
)
from malib.domain import AnimeEntry, AnimeType, WatchStatus
from malib.schema import CURRENT_SCHEMA_VERSION, SchemaVersion
from malib.schema.version import set_schema_version
from malib.settings import API_KEY_FLAG, MemorySettingsStore
from malib.store import StoreClosedError, StoreManager, create_preview_manager


def _digests(manager: StoreManager) -> dict[str, str]:
    return {
        p.name: hashlib.sha256(p.read_bytes()).hexdigest()
        for p in manager.store_files()
    }


def _stamp(version: str) -> str:
    return json.dumps(SchemaVersion.parse(version).to_json())


@pytest.fixture
def live(manager: StoreManager) -> StoreManager:
    """Live store holding one series."""
    manager.open().new_entry(
        AnimeEntry(tmdb_id=209867, name="Frieren", type=AnimeType.series())
    )
    return manager


@pytest.fixture
def old_store(temp_dir: Path, legacy_store) -> Path:
    """A 2.2.0 store file holding one watched movie."""
    return legacy_store(
        temp_dir / "old" / "mal.store",
        "2.2.0",
        [
            {
                "tmdb_id": 378064,
                "name": "Koe no katachi",
                "type": '{"movie":{}}',
                "date_saved": "2024-01-15T10:30:00+00:00",
                "date_started": "2024-01-16T10:30:00+00:00",
                "date_finished": "2024-01-17T10:30:00+00:00",
                "notes": "cried",
            }
        ],
    )


class TestVersionGate:
    """Tests for check_version_gate()."""

    def test_older_accepted(self) -> None:
        check_version_gate(SchemaVersion(2, 3, 2), SchemaVersion(2, 4, 1))

    def test_unstamped_accepted(self) -> None:
        check_version_gate(None, SchemaVersion(2, 4, 1))

    def test_same_rejected_by_default(self) -> None:
        with pytest.raises(SchemaIncompatibleError) as exc_info:
            check_version_gate(SchemaVersion(2, 4, 1), SchemaVersion(2, 4, 1))
        assert "2.4.1" in str(exc_info.value)
        assert exc_info.value.archive_version == SchemaVersion(2, 4, 1)

    def test_same_accepted_when_allowed(self) -> None:
        check_version_gate(
            SchemaVersion(2, 4, 1), SchemaVersion(2, 4, 1), allow_same_version=True
        )

    def test_newer_always_rejected(self) -> None:
        with pytest.raises(SchemaIncompatibleError, match="2.5.0"):
            check_version_gate(
                SchemaVersion(2, 5, 0), SchemaVersion(2, 4, 1), allow_same_version=True
            )


class TestRoundTrip:
    """Backup then restore into the same build."""

    def test_round_trip_restores_entries_and_settings(
        self, live: StoreManager, temp_dir: Path
    ) -> None:
        settings = MemorySettingsStore({"PreferredAnimeInfoLanguage": "ja-JP"})
        backup = create_backup(live, settings, output_dir=temp_dir / "backups")

        old_handle = live.handle
        old_handle.delete_entry(209867)
        old_handle.new_entry(
            AnimeEntry(tmdb_id=1, name="Added later", type=AnimeType.movie())
        )
        settings.set("PreferredAnimeInfoLanguage", "en-US")

        result = restore_backup(backup.path, live, settings, allow_same_version=True)

        assert result.archive_version == CURRENT_SCHEMA_VERSION
        assert result.settings_restored == ("PreferredAnimeInfoLanguage",)
        assert result.restart_recommended
        assert settings.get("PreferredAnimeInfoLanguage") == "ja-JP"
        assert [e.tmdb_id for e in live.handle.fetch_all()] == [209867]
        with pytest.raises(StoreClosedError):
            old_handle.count()

    def test_same_version_rejected_without_opt_in(
        self, live: StoreManager, temp_dir: Path
    ) -> None:
        """A rejected restore leaves the store files byte-identical."""
        settings = MemorySettingsStore({"LibraryViewStyle": "grid"})
        backup = create_backup(live, settings, output_dir=temp_dir)
        live.close()
        before = _digests(live)
        settings.set("LibraryViewStyle", "list")

        with pytest.raises(SchemaIncompatibleError):
            restore_backup(backup.path, live, settings)

        assert _digests(live) == before
        assert not live.is_open
        # Preferences are applied before the version gate runs
        assert settings.get("LibraryViewStyle") == "grid"


class TestOlderArchives:
    """Archives from older builds are accepted and migrated forward."""

    def test_older_archive_migrated(
        self, live: StoreManager, temp_dir: Path, old_store: Path, make_archive
    ) -> None:
        archive = make_archive(
            temp_dir / "old.mallib",
            "MyAnimeList_Backup_2024-01-20T120000Z",
            {
                "SchemaVersion.json": _stamp("2.2.0"),
                "UserSettings.json": json.dumps({"LibrarySortStrategy": "name"}),
                "mal.store": old_store,
            },
        )
        settings = MemorySettingsStore()

        result = restore_backup(archive, live, settings)

        assert result.archive_version == SchemaVersion(2, 2, 0)
        assert live.stored_version() == CURRENT_SCHEMA_VERSION
        assert live.last_report.from_version == SchemaVersion(2, 2, 0)
        entries = live.handle.fetch_all()
        assert [e.tmdb_id for e in entries] == [378064]
        assert entries[0].watch_status is WatchStatus.WATCHED
        assert entries[0].notes == "cried"
        assert settings.get("LibrarySortStrategy") == "name"

    def test_legacy_text_stamp_accepted(
        self, live: StoreManager, temp_dir: Path, old_store: Path, make_archive
    ) -> None:
        archive = make_archive(
            temp_dir / "old.mallib",
            "MyAnimeList_Backup_2024-01-20T120000Z",
            {"SchemaVersion.txt": _stamp("2.2.0"), "mal.store": old_store},
        )

        result = restore_backup(archive, live, MemorySettingsStore())

        assert result.archive_version == SchemaVersion(2, 2, 0)
        assert live.handle.count() == 1

    def test_unstamped_archive_accepted(
        self, live: StoreManager, temp_dir: Path, old_store: Path, make_archive
    ) -> None:
        archive = make_archive(
            temp_dir / "legacy.mallib",
            "MyAnimeList_Backup",
            {"mal.store": old_store},
        )

        result = restore_backup(archive, live, MemorySettingsStore())

        assert result.archive_version is None
        assert result.settings_restored == ()
        assert [e.tmdb_id for e in live.handle.fetch_all()] == [378064]

    def test_unknown_settings_skipped(
        self,
        live: StoreManager,
        temp_dir: Path,
        old_store: Path,
        make_archive,
        caplog,
    ) -> None:
        archive = make_archive(
            temp_dir / "old.mallib",
            "MyAnimeList_Backup_2024-01-20T120000Z",
            {
                "SchemaVersion.json": _stamp("2.2.0"),
                "UserSettings.json": json.dumps(
                    {
                        "SearchTMDbLanguage": "ja-JP",
                        API_KEY_FLAG: True,
                        "FutureSetting": 3,
                    }
                ),
                "mal.store": old_store,
            },
        )
        settings = MemorySettingsStore()

        with caplog.at_level(logging.WARNING):
            result = restore_backup(archive, live, settings)

        assert result.settings_restored == ("SearchTMDbLanguage",)
        assert result.settings_skipped == ("FutureSetting", API_KEY_FLAG)
        assert settings.as_dict() == {"SearchTMDbLanguage": "ja-JP"}
        assert "FutureSetting" in caplog.text


class TestRestoreFailures:
    """Tests for restore error paths."""

    def test_missing_archive(self, live: StoreManager, temp_dir: Path) -> None:
        with pytest.raises(BackupNotFoundError):
            restore_backup(temp_dir / "nope.mallib", live, MemorySettingsStore())

    def test_not_an_archive(self, live: StoreManager, temp_dir: Path) -> None:
        bogus = temp_dir / "bogus.mallib"
        bogus.write_bytes(b"definitely not gzip")
        with pytest.raises(ArchiveExtractionError):
            restore_backup(bogus, live, MemorySettingsStore())
        assert live.handle.count() == 1

    def test_several_root_folders(self, live: StoreManager, temp_dir: Path) -> None:
        staging = temp_dir / "staging"
        (staging / "a").mkdir(parents=True)
        (staging / "b").mkdir()
        archive = temp_dir / "two.mallib"
        with tarfile.open(archive, "w:gz") as tf:
            tf.add(staging / "a", arcname="a")
            tf.add(staging / "b", arcname="b")

        with pytest.raises(BackupContentsError, match="several folders"):
            restore_backup(archive, live, MemorySettingsStore())

    def test_archive_without_store_files(
        self, live: StoreManager, temp_dir: Path, make_archive
    ) -> None:
        archive = make_archive(
            temp_dir / "empty.mallib",
            "MyAnimeList_Backup_2024-01-20T120000Z",
            {"SchemaVersion.json": _stamp("2.2.0")},
        )

        with pytest.raises(RestoreFailedError, match="no store files"):
            restore_backup(archive, live, MemorySettingsStore())

        assert live.handle.count() == 1

    def test_invalid_settings_member(
        self, live: StoreManager, temp_dir: Path, make_archive, old_store: Path
    ) -> None:
        archive = make_archive(
            temp_dir / "bad.mallib",
            "MyAnimeList_Backup_2024-01-20T120000Z",
            {
                "SchemaVersion.json": _stamp("2.2.0"),
                "UserSettings.json": json.dumps({"LibraryViewStyle": ["nested"]}),
                "mal.store": old_store,
            },
        )

        with pytest.raises(RestoreFailedError, match="UserSettings.json"):
            restore_backup(archive, live, MemorySettingsStore())

    def test_in_memory_store_rejected(self, temp_dir: Path) -> None:
        manager = create_preview_manager()
        try:
            with pytest.raises(RestoreFailedError, match="in-memory"):
                restore_backup(
                    temp_dir / "any.mallib", manager, MemorySettingsStore()
                )
        finally:
            manager.close()


class TestRestoreKeepsLiveStore:
    """A rejected or failed restore leaves the live store usable."""

    def _assert_live_intact(self, live: StoreManager) -> None:
        assert live.is_open
        assert live.handle.get(209867).name == "Frieren"
        assert not list(live.store_dir.glob(".restore-*"))
        with StoreManager(live.store_path) as other:
            assert other.handle.get(209867).name == "Frieren"

    def test_corrupt_unstamped_store(
        self, live: StoreManager, temp_dir: Path, make_archive
    ) -> None:
        archive = make_archive(
            temp_dir / "corrupt.mallib",
            "MyAnimeList_Backup_2024-01-20T120000Z",
            {"mal.store": b"not a sqlite file" * 100},
        )
        before = _digests(live)

        with pytest.raises(RestoreFailedError):
            restore_backup(archive, live, MemorySettingsStore())

        assert _digests(live).keys() == before.keys()
        self._assert_live_intact(live)

    def test_unstamped_archive_with_newer_store(
        self, live: StoreManager, temp_dir: Path, make_archive
    ) -> None:
        newer = temp_dir / "newer" / "mal.store"
        newer.parent.mkdir()
        conn = sqlite3.connect(str(newer))
        set_schema_version(conn, SchemaVersion(3, 0, 0))
        conn.commit()
        conn.close()
        archive = make_archive(
            temp_dir / "newer.mallib",
            "MyAnimeList_Backup_2024-01-20T120000Z",
            {"mal.store": newer},
        )

        with pytest.raises(SchemaIncompatibleError, match="3.0.0") as exc_info:
            restore_backup(archive, live, MemorySettingsStore())

        assert exc_info.value.archive_version == SchemaVersion(3, 0, 0)
        self._assert_live_intact(live)

    def test_unknown_layout_rejected(
        self, live: StoreManager, temp_dir: Path, make_archive
    ) -> None:
        odd = temp_dir / "odd" / "mal.store"
        odd.parent.mkdir()
        conn = sqlite3.connect(str(odd))
        conn.execute("CREATE TABLE anime_entries (tmdb_id INTEGER, mystery TEXT)")
        conn.commit()
        conn.close()
        archive = make_archive(
            temp_dir / "odd.mallib",
            "MyAnimeList_Backup_2024-01-20T120000Z",
            {"mal.store": odd},
        )

        with pytest.raises(RestoreFailedError, match="not usable"):
            restore_backup(archive, live, MemorySettingsStore())

        self._assert_live_intact(live)

    def test_failed_migration_puts_live_files_back(
        self,
        live: StoreManager,
        temp_dir: Path,
        make_archive,
        legacy_store,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        broken = legacy_store(
            temp_dir / "broken" / "mal.store",
            "2.0.1",
            [
                {
                    "tmdb_id": 35033,
                    "name": "Shingeki no Kyojin",
                    "entry_type": "tvSeason",
                    "parent_series_id": 1429,
                    "date_saved": "2024-01-15T10:30:00+00:00",
                }
            ],
        )
        archive = make_archive(
            temp_dir / "broken.mallib",
            "MyAnimeList_Backup_2024-01-20T120000Z",
            {"SchemaVersion.json": _stamp("2.0.1"), "mal.store": broken},
        )

        with caplog.at_level(logging.WARNING, logger="malib.backup.restore"):
            with pytest.raises(RestoreFailedError, match="could not be opened"):
                restore_backup(archive, live, MemorySettingsStore())

        assert "rolled back" in caplog.text
        assert live.stored_version() == CURRENT_SCHEMA_VERSION
        self._assert_live_intact(live)
