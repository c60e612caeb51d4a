"""Tests for generation diffing, lightweight stages and table rebuilds."""

import sqlite3

import pytest

from malib.schema.generations import (
    ENTRY_TABLE,
    GENERATIONS,
    V1_0_0,
    V2_0_0,
    V2_0_1,
    V2_1_0,
    V2_1_1,
    V2_4_0,
    V2_4_1,
    ColumnSpec,
    Generation,
    IndexSpec,
    TableSpec,
)
from malib.schema.stages import (
    AddColumn,
    CreateIndex,
    CreateTable,
    DropColumn,
    DropTable,
    LightweightStage,
    MigrationStage,
    RenameColumn,
    StageDefinitionError,
    StageKind,
    diff_generations,
    rebuild_table,
    table_columns,
    table_exists,
)
from malib.schema.version import SchemaVersion


def _build(conn: sqlite3.Connection, generation: Generation) -> None:
    for statement in generation.create_statements():
        conn.execute(statement)


def _index_names(conn: sqlite3.Connection) -> set[str]:
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'index' AND sql IS NOT NULL"
    ).fetchall()
    return {row[0] for row in rows}


class TestGenerations:
    """Tests for the registered generation chain."""

    def test_versions_strictly_increase(self) -> None:
        versions = [g.version for g in GENERATIONS]
        assert versions == sorted(versions)
        assert len(set(versions)) == len(versions)

    def test_first_and_current(self) -> None:
        assert GENERATIONS[0].version == SchemaVersion(1, 0, 0)
        assert GENERATIONS[-1].version == SchemaVersion(2, 4, 1)

    def test_every_generation_defines_entry_table(self) -> None:
        for generation in GENERATIONS:
            assert generation.table(ENTRY_TABLE) is not None
            assert "AnimeEntry" in generation.record_types

    def test_evolve_marks_renames(self) -> None:
        column = V2_0_0.table(ENTRY_TABLE).column("tmdb_id")
        assert column is not None
        assert column.original_name == "id"
        assert V2_0_0.table(ENTRY_TABLE).column("id") is None


class TestDiffGenerations:
    """Tests for diff_generations()."""

    def test_rename(self) -> None:
        changes = diff_generations(V1_0_0, V2_0_0)
        assert changes == [RenameColumn(ENTRY_TABLE, "id", "tmdb_id")]

    def test_add_column(self) -> None:
        changes = diff_generations(V2_0_0, V2_0_1)
        assert len(changes) == 1
        assert isinstance(changes[0], AddColumn)
        assert changes[0].column.name == "use_series_poster"

    def test_drop_column(self) -> None:
        changes = diff_generations(V2_1_0, V2_1_1)
        assert changes == [DropColumn(ENTRY_TABLE, "use_series_poster")]

    def test_add_index(self) -> None:
        changes = diff_generations(V2_4_0, V2_4_1)
        assert len(changes) == 1
        assert isinstance(changes[0], CreateIndex)

    def test_not_null_without_default_cannot_be_added(self) -> None:
        """The tagged type column needs a custom stage."""
        with pytest.raises(StageDefinitionError, match="cannot be added in place"):
            diff_generations(V2_0_1, V2_1_0)

    def test_changed_declaration_rejected(self) -> None:
        table = TableSpec("t", "T", (ColumnSpec("a", "INTEGER"),))
        changed = TableSpec("t", "T", (ColumnSpec("a", "TEXT"),))
        source = Generation(SchemaVersion(1, 0, 0), (table,))
        target = Generation(SchemaVersion(1, 0, 1), (changed,))
        with pytest.raises(StageDefinitionError, match="changes declaration"):
            diff_generations(source, target)

    def test_table_create_and_drop_ordering(self) -> None:
        """New tables come first and removed tables last."""
        kept = TableSpec("kept", "Kept", (ColumnSpec("id", "INTEGER PRIMARY KEY"),))
        old = TableSpec("old", "Old", (ColumnSpec("id", "INTEGER PRIMARY KEY"),))
        new = TableSpec("new", "New", (ColumnSpec("id", "INTEGER PRIMARY KEY"),))
        source = Generation(SchemaVersion(1, 0, 0), (kept, old))
        target = Generation(SchemaVersion(1, 1, 0), (kept, new))

        changes = diff_generations(source, target)

        assert changes == [CreateTable(new), DropTable("old")]


class TestLightweightStage:
    """Tests for applying lightweight stages."""

    def test_kind_and_changes(self) -> None:
        stage = LightweightStage(V1_0_0, V2_0_0)
        assert stage.kind is StageKind.LIGHTWEIGHT
        assert repr(stage) == "LightweightStage(1.0.0 -> 2.0.0)"

    def test_base_stage_is_abstract(self) -> None:
        with pytest.raises(TypeError):
            MigrationStage(V1_0_0, V2_0_0)

    def test_stage_must_move_forward(self) -> None:
        with pytest.raises(StageDefinitionError):
            LightweightStage(V2_0_0, V1_0_0)

    def test_apply_rename(self) -> None:
        conn = sqlite3.connect(":memory:")
        _build(conn, V1_0_0)

        result = LightweightStage(V1_0_0, V2_0_0).apply(conn)

        assert "tmdb_id" in table_columns(conn, ENTRY_TABLE)
        assert "id" not in table_columns(conn, ENTRY_TABLE)
        assert result.changes == (f"rename {ENTRY_TABLE}.id to tmdb_id",)

    @pytest.mark.parametrize(
        "source,target",
        [(V1_0_0, V2_0_0), (V2_0_0, V2_0_1), (V2_1_0, V2_1_1), (V2_4_0, V2_4_1)],
    )
    def test_reapplying_is_a_no_op(self, source, target) -> None:
        """A stage applied twice leaves the target layout unchanged."""
        conn = sqlite3.connect(":memory:")
        _build(conn, source)
        stage = LightweightStage(source, target)

        stage.apply(conn)
        after_first = (table_columns(conn, ENTRY_TABLE), _index_names(conn))
        stage.apply(conn)
        after_second = (table_columns(conn, ENTRY_TABLE), _index_names(conn))

        assert after_first == after_second
        assert set(after_first[0]) == set(target.table(ENTRY_TABLE).column_names)

    def test_added_column_gets_default_for_existing_rows(self) -> None:
        conn = sqlite3.connect(":memory:")
        _build(conn, V2_0_0)
        conn.execute(
            f"INSERT INTO {ENTRY_TABLE} (tmdb_id, name, entry_type, date_saved) "
            "VALUES (1, 'A', 'movie', '2024-01-01T00:00:00+00:00')"
        )

        LightweightStage(V2_0_0, V2_0_1).apply(conn)

        value = conn.execute(
            f"SELECT use_series_poster FROM {ENTRY_TABLE} WHERE tmdb_id = 1"
        ).fetchone()[0]
        assert value == 0


class TestRebuildTable:
    """Tests for rebuild_table()."""

    def test_rebuild_keeps_shared_columns(self) -> None:
        conn = sqlite3.connect(":memory:")
        _build(conn, V2_0_1)
        conn.execute(
            f"INSERT INTO {ENTRY_TABLE} (tmdb_id, name, entry_type, date_saved) "
            "VALUES (7, 'Seven', 'movie', '2024-01-01T00:00:00+00:00')"
        )
        target = V2_1_1.table(ENTRY_TABLE)
        # type is NOT NULL without a default; give it one for this rebuild
        relaxed = TableSpec(
            target.name,
            target.record_type,
            tuple(
                ColumnSpec(c.name, "TEXT") if c.name == "type" else c
                for c in target.columns
            ),
            (IndexSpec("idx_name", "name"),),
        )

        rebuild_table(conn, relaxed)

        assert table_columns(conn, ENTRY_TABLE) == list(relaxed.column_names)
        row = conn.execute(f"SELECT tmdb_id, name, type FROM {ENTRY_TABLE}").fetchone()
        assert row == (7, "Seven", None)
        assert not table_exists(conn, f"{ENTRY_TABLE}__rebuild")
        assert "idx_name" in _index_names(conn)

    def test_rebuild_creates_missing_table(self) -> None:
        conn = sqlite3.connect(":memory:")
        rebuild_table(conn, V2_4_1.table(ENTRY_TABLE))
        assert table_exists(conn, ENTRY_TABLE)
        assert "idx_anime_entries_display_saved" in _index_names(conn)
