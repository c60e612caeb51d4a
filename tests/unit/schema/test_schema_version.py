"""Tests for the schema version descriptor and _meta helpers."""

import sqlite3

import pytest

from malib.schema.version import (
    SchemaVersion,
    get_schema_version,
    set_schema_version,
)


class TestSchemaVersion:
    """Tests for SchemaVersion ordering and parsing."""

    def test_ordering_is_lexicographic(self) -> None:
        """Major outranks minor, minor outranks patch."""
        assert SchemaVersion(2, 3, 0) < SchemaVersion(2, 3, 2)
        assert SchemaVersion(2, 3, 2) < SchemaVersion(2, 4, 0)
        assert SchemaVersion(1, 9, 9) < SchemaVersion(2, 0, 0)
        assert SchemaVersion(2, 4, 1) == SchemaVersion(2, 4, 1)

    def test_str_and_parse(self) -> None:
        version = SchemaVersion.parse("2.4.1")
        assert version == SchemaVersion(2, 4, 1)
        assert str(version) == "2.4.1"

    @pytest.mark.parametrize("text", ["2.4", "2.4.1.0", "a.b.c", "", "2.-1.0"])
    def test_parse_rejects_malformed(self, text: str) -> None:
        with pytest.raises(ValueError):
            SchemaVersion.parse(text)

    def test_rejects_negative_components(self) -> None:
        with pytest.raises(ValueError):
            SchemaVersion(1, -1, 0)

    def test_rejects_non_int_components(self) -> None:
        with pytest.raises(TypeError):
            SchemaVersion(1, True, 0)

    def test_json_forms(self) -> None:
        """Array, object and string forms all decode to the same version."""
        expected = SchemaVersion(2, 4, 1)
        assert expected.to_json() == [2, 4, 1]
        assert SchemaVersion.from_json([2, 4, 1]) == expected
        assert SchemaVersion.from_json({"major": 2, "minor": 4, "patch": 1}) == expected
        assert SchemaVersion.from_json("2.4.1") == expected

    @pytest.mark.parametrize("data", [[2, 4], {"major": 2}, 241, None, ["2", 4, 1]])
    def test_from_json_rejects_invalid(self, data) -> None:
        with pytest.raises(ValueError):
            SchemaVersion.from_json(data)


class TestStoredVersion:
    """Tests for reading and writing the _meta version stamp."""

    def test_unstamped_store_has_no_version(self) -> None:
        conn = sqlite3.connect(":memory:")
        assert get_schema_version(conn) is None

    def test_set_then_get(self) -> None:
        conn = sqlite3.connect(":memory:")
        set_schema_version(conn, SchemaVersion(2, 0, 1))
        assert get_schema_version(conn) == SchemaVersion(2, 0, 1)

        set_schema_version(conn, SchemaVersion(2, 1, 0))
        assert get_schema_version(conn) == SchemaVersion(2, 1, 0)
        count = conn.execute("SELECT COUNT(*) FROM _meta").fetchone()[0]
        assert count == 1

    def test_invalid_stored_value_raises(self) -> None:
        conn = sqlite3.connect(":memory:")
        conn.execute("CREATE TABLE _meta (key TEXT PRIMARY KEY, value TEXT NOT NULL)")
        conn.execute("INSERT INTO _meta VALUES ('schema_version', 'garbage')")
        with pytest.raises(ValueError, match="Invalid schema version"):
            get_schema_version(conn)
