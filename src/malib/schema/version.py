"""Schema version descriptor and stored-version helpers.

A store records the generation it was last written by in the ``_meta``
table under the ``schema_version`` key, as ``"major.minor.patch"`` text.
"""

from __future__ import annotations

import re
import sqlite3
from dataclasses import dataclass
from typing import Any

_VERSION_PATTERN = re.compile(r"^\s*(\d+)\.(\d+)\.(\d+)\s*$")


@dataclass(frozen=True, order=True)
class SchemaVersion:
    """Three-part schema generation number, ordered lexicographically."""

    major: int
    minor: int
    patch: int

    def __post_init__(self) -> None:
        """Validate components."""
        for part in (self.major, self.minor, self.patch):
            if isinstance(part, bool) or not isinstance(part, int):
                raise TypeError(f"Version components must be int, got {part!r}")
            if part < 0:
                raise ValueError(f"Version components must be non-negative: {self}")

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"

    @classmethod
    def parse(cls, text: str) -> SchemaVersion:
        """Parse a ``"major.minor.patch"`` string.

        Raises:
            ValueError: If the text is not a three-part version.
        """
        match = _VERSION_PATTERN.match(text)
        if match is None:
            raise ValueError(f"Invalid schema version: {text!r}")
        return cls(*(int(group) for group in match.groups()))

    def to_json(self) -> list[int]:
        """Return the JSON form written into backup archives."""
        return [self.major, self.minor, self.patch]

    @classmethod
    def from_json(cls, data: Any) -> SchemaVersion:
        """Decode any of the accepted JSON forms.

        Accepts ``[2, 4, 1]``, ``{"major": 2, "minor": 4, "patch": 1}``
        and ``"2.4.1"``.

        Raises:
            ValueError: If the value is not a recognizable version.
        """
        if isinstance(data, str):
            return cls.parse(data)
        if isinstance(data, list | tuple) and len(data) == 3:
            try:
                return cls(*data)
            except TypeError as e:
                raise ValueError(str(e)) from e
        if isinstance(data, dict):
            try:
                return cls(data["major"], data["minor"], data["patch"])
            except (KeyError, TypeError) as e:
                raise ValueError(f"Invalid schema version object: {data!r}") from e
        raise ValueError(f"Invalid schema version value: {data!r}")


def ensure_meta_table(conn: sqlite3.Connection) -> None:
    """Create the ``_meta`` key/value table if it does not exist."""
    conn.execute(
        "CREATE TABLE IF NOT EXISTS _meta (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
    )


def get_schema_version(conn: sqlite3.Connection) -> SchemaVersion | None:
    """Get the stored schema version.

    Args:
        conn: An open database connection.

    Returns:
        The stored version, or None for a store that was never stamped.

    Raises:
        ValueError: If the stored value is not a valid version string.
    """
    try:
        cursor = conn.execute("SELECT value FROM _meta WHERE key = 'schema_version'")
        row = cursor.fetchone()
    except sqlite3.OperationalError:
        # Table doesn't exist
        return None
    return SchemaVersion.parse(row[0]) if row else None


def set_schema_version(conn: sqlite3.Connection, version: SchemaVersion) -> None:
    """Stamp the store with ``version``. Does not commit."""
    ensure_meta_table(conn)
    conn.execute(
        "INSERT INTO _meta (key, value) VALUES ('schema_version', ?) "
        "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
        (str(version),),
    )
