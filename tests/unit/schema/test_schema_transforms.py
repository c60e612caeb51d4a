"""Tests for the custom-stage row transforms."""

import sqlite3

import pytest

from malib.domain import AnimeType, WatchStatus
from malib.schema.generations import ENTRY_TABLE, V2_2_1, V2_3_0
from malib.schema.stages import MigrationContext
from malib.schema.transforms import (
    anime_type_from_flat_kind,
    row_transform_hooks,
    tagged_type_row,
    watch_status_row,
)


class TestAnimeTypeFromFlatKind:
    """Tests for mapping the flat kind columns to AnimeType."""

    def test_movie(self) -> None:
        assert anime_type_from_flat_kind("movie", None, None) == AnimeType.movie()

    def test_series(self) -> None:
        assert anime_type_from_flat_kind("tvSeries", None, None) == AnimeType.series()

    def test_season(self) -> None:
        """A season keeps its number and parent series id."""
        anime_type = anime_type_from_flat_kind("tvSeason", 1, 24835)
        assert anime_type == AnimeType.season(1, 24835)
        assert anime_type.to_json() == {
            "season": {"seasonNumber": 1, "parentSeriesID": 24835}
        }

    def test_season_without_payload_rejected(self) -> None:
        with pytest.raises(ValueError, match="missing"):
            anime_type_from_flat_kind("tvSeason", None, 24835)

    def test_unknown_kind_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown entry type"):
            anime_type_from_flat_kind("ova", None, None)


class TestTaggedTypeRow:
    """Tests for tagged_type_row()."""

    def test_replaces_flat_columns(self) -> None:
        row = {
            "tmdb_id": 35033,
            "name": "CLANNAD Season 1",
            "entry_type": "tvSeason",
            "season_number": 1,
            "parent_series_id": 24835,
            "use_series_poster": 0,
        }

        converted = tagged_type_row(row)

        assert "entry_type" not in converted
        assert "season_number" not in converted
        assert "parent_series_id" not in converted
        assert converted["use_series_poster"] == 0
        assert AnimeType.decode(converted["type"]) == AnimeType.season(1, 24835)

    def test_error_names_the_entry(self) -> None:
        row = {"tmdb_id": 5, "entry_type": "bogus"}
        with pytest.raises(ValueError, match="Entry 5"):
            tagged_type_row(row)


class TestWatchStatusRow:
    """Tests for watch_status_row()."""

    @pytest.mark.parametrize(
        "started,finished,expected",
        [
            (None, None, WatchStatus.PLAN_TO_WATCH),
            ("2024-01-01T00:00:00+00:00", None, WatchStatus.WATCHING),
            (
                "2024-01-01T00:00:00+00:00",
                "2024-02-01T00:00:00+00:00",
                WatchStatus.WATCHED,
            ),
            (None, "2024-02-01T00:00:00+00:00", WatchStatus.WATCHED),
        ],
    )
    def test_status_from_dates(self, started, finished, expected) -> None:
        row = {"tmdb_id": 1, "date_started": started, "date_finished": finished}
        assert watch_status_row(row)["watch_status"] == expected.value

    def test_leaves_input_untouched(self) -> None:
        row = {"tmdb_id": 1, "date_started": None, "date_finished": None}
        watch_status_row(row)
        assert "watch_status" not in row


class TestRowTransformHooks:
    """Tests for the will_migrate / did_migrate pair."""

    def test_hooks_stage_then_upsert(self) -> None:
        conn = sqlite3.connect(":memory:")
        for statement in V2_2_1.create_statements():
            conn.execute(statement)
        conn.execute(
            f"INSERT INTO {ENTRY_TABLE} (tmdb_id, name, type, date_saved, "
            "date_started) VALUES (1, 'A', '{\"movie\":{}}', "
            "'2024-01-01T00:00:00+00:00', '2024-01-02T00:00:00+00:00')"
        )
        will_migrate, did_migrate = row_transform_hooks(watch_status_row)
        context = MigrationContext(conn=conn, source=V2_2_1, target=V2_3_0)

        will_migrate(context)
        assert conn.execute(f"SELECT COUNT(*) FROM {ENTRY_TABLE}").fetchone()[0] == 0
        assert len(context.staged_rows[ENTRY_TABLE]) == 1

        conn.execute(
            f"ALTER TABLE {ENTRY_TABLE} ADD COLUMN watch_status TEXT NOT NULL "
            "DEFAULT 'planToWatch'"
        )
        did_migrate(context)

        status = conn.execute(
            f"SELECT watch_status FROM {ENTRY_TABLE} WHERE tmdb_id = 1"
        ).fetchone()[0]
        assert status == "watching"
        assert context.rows_read == 1
        assert context.rows_written == 1
