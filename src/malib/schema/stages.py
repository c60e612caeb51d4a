"""Migration stages between adjacent schema generations.

A lightweight stage carries no code: its structural changes are derived by
diffing the source and target table definitions, and every change is
idempotent (each one checks ``PRAGMA table_info`` or uses ``IF [NOT]
EXISTS`` before altering anything), so re-applying a stage is a no-op.

A custom stage carries two hooks. ``will_migrate`` reads the source rows,
computes the target rows into the :class:`MigrationContext` and deletes the
source rows; the engine then rebuilds the table to the target shape and
``did_migrate`` inserts the staged rows.

Stages never commit. The plan runs each stage inside one ``BEGIN
IMMEDIATE`` transaction together with the version stamp.
"""

from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from malib.schema.generations import ColumnSpec, Generation, IndexSpec, TableSpec

logger = logging.getLogger(__name__)


class StageKind(Enum):
    """How a stage moves a store from its source to its target generation."""

    LIGHTWEIGHT = "lightweight"
    CUSTOM = "custom"


class StageDefinitionError(ValueError):
    """A stage cannot be derived from the generations it joins."""


# =============================================================================
# Introspection helpers
# =============================================================================


def table_exists(conn: sqlite3.Connection, table: str) -> bool:
    cursor = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (table,)
    )
    return cursor.fetchone() is not None


def table_columns(conn: sqlite3.Connection, table: str) -> list[str]:
    """Return the column names of ``table`` in declaration order."""
    cursor = conn.execute(f"PRAGMA table_info({table})")
    return [row[1] for row in cursor.fetchall()]


# =============================================================================
# Structural changes
# =============================================================================


@dataclass(frozen=True)
class CreateTable:
    table: TableSpec

    def apply(self, conn: sqlite3.Connection) -> None:
        conn.execute(self.table.create_sql())
        for index in self.table.indexes:
            conn.execute(index.create_sql(self.table.name))

    def describe(self) -> str:
        return f"create table {self.table.name}"


@dataclass(frozen=True)
class DropTable:
    name: str

    def apply(self, conn: sqlite3.Connection) -> None:
        conn.execute(f"DROP TABLE IF EXISTS {self.name}")

    def describe(self) -> str:
        return f"drop table {self.name}"


@dataclass(frozen=True)
class RenameColumn:
    table: str
    old: str
    new: str

    def apply(self, conn: sqlite3.Connection) -> None:
        columns = table_columns(conn, self.table)
        if self.old in columns and self.new not in columns:
            conn.execute(
                f"ALTER TABLE {self.table} RENAME COLUMN {self.old} TO {self.new}"
            )

    def describe(self) -> str:
        return f"rename {self.table}.{self.old} to {self.new}"


@dataclass(frozen=True)
class AddColumn:
    table: str
    column: ColumnSpec

    def apply(self, conn: sqlite3.Connection) -> None:
        if self.column.name not in table_columns(conn, self.table):
            conn.execute(f"ALTER TABLE {self.table} ADD COLUMN {self.column.sql}")

    def describe(self) -> str:
        return f"add column {self.table}.{self.column.name}"


@dataclass(frozen=True)
class DropColumn:
    table: str
    name: str

    def apply(self, conn: sqlite3.Connection) -> None:
        if self.name in table_columns(conn, self.table):
            conn.execute(f"ALTER TABLE {self.table} DROP COLUMN {self.name}")

    def describe(self) -> str:
        return f"drop column {self.table}.{self.name}"


@dataclass(frozen=True)
class CreateIndex:
    table: str
    index: IndexSpec

    def apply(self, conn: sqlite3.Connection) -> None:
        conn.execute(self.index.create_sql(self.table))

    def describe(self) -> str:
        return f"create index {self.index.name}"


@dataclass(frozen=True)
class DropIndex:
    name: str

    def apply(self, conn: sqlite3.Connection) -> None:
        conn.execute(f"DROP INDEX IF EXISTS {self.name}")

    def describe(self) -> str:
        return f"drop index {self.name}"


SchemaChange = (
    CreateTable
    | DropTable
    | RenameColumn
    | AddColumn
    | DropColumn
    | CreateIndex
    | DropIndex
)


def _column_addable(column: ColumnSpec) -> bool:
    """Whether ``ALTER TABLE ADD COLUMN`` accepts this declaration."""
    decl = column.decl.upper()
    if "PRIMARY KEY" in decl or "UNIQUE" in decl:
        return False
    return "NOT NULL" not in decl or "DEFAULT" in decl


def diff_generations(source: Generation, target: Generation) -> list[SchemaChange]:
    """Derive the structural changes that turn ``source`` into ``target``.

    Changes are ordered so that they can be applied one after another:
    new tables, renames, index drops, column drops, column adds, index
    creates, and finally table drops.

    Raises:
        StageDefinitionError: If the difference cannot be expressed as
            in-place structural changes (changed column declarations or
            columns that ``ADD COLUMN`` rejects).
    """
    creates: list[SchemaChange] = []
    renames: list[SchemaChange] = []
    index_drops: list[SchemaChange] = []
    column_drops: list[SchemaChange] = []
    column_adds: list[SchemaChange] = []
    index_creates: list[SchemaChange] = []
    table_drops: list[SchemaChange] = []

    for target_table in target.tables:
        source_table = source.table(target_table.name)
        if source_table is None:
            creates.append(CreateTable(target_table))
            continue

        name = target_table.name
        source_columns = {c.name: c for c in source_table.columns}
        consumed: set[str] = set()
        for column in target_table.columns:
            if column.name in source_columns:
                consumed.add(column.name)
                if source_columns[column.name].decl != column.decl:
                    raise StageDefinitionError(
                        f"{name}.{column.name} changes declaration between "
                        f"{source.version} and {target.version}"
                    )
                continue
            if column.original_name and column.original_name in source_columns:
                consumed.add(column.original_name)
                renames.append(RenameColumn(name, column.original_name, column.name))
                continue
            if not _column_addable(column):
                raise StageDefinitionError(
                    f"{name}.{column.name} ({column.decl}) cannot be added in place"
                )
            column_adds.append(AddColumn(name, column))

        for column_name in source_columns:
            if column_name not in consumed:
                column_drops.append(DropColumn(name, column_name))

        source_indexes = {i.name: i for i in source_table.indexes}
        target_indexes = {i.name: i for i in target_table.indexes}
        for index_name, index in source_indexes.items():
            if target_indexes.get(index_name) != index:
                index_drops.append(DropIndex(index_name))
        for index_name, index in target_indexes.items():
            if source_indexes.get(index_name) != index:
                index_creates.append(CreateIndex(name, index))

    for source_table in source.tables:
        if target.table(source_table.name) is None:
            table_drops.append(DropTable(source_table.name))

    return (
        creates
        + renames
        + index_drops
        + column_drops
        + column_adds
        + index_creates
        + table_drops
    )


def rebuild_table(conn: sqlite3.Connection, table: TableSpec) -> None:
    """Rebuild ``table`` to exactly the given definition.

    Creates the new table under a temporary name, copies the columns shared
    with the live table, drops the live table and renames the new one into
    place, then recreates the indexes. Foreign key enforcement must be off
    while this runs.
    """
    temp_name = f"{table.name}__rebuild"
    conn.execute(f"DROP TABLE IF EXISTS {temp_name}")
    conn.execute(table.create_sql(temp_name))
    if table_exists(conn, table.name):
        live = set(table_columns(conn, table.name))
        shared = [name for name in table.column_names if name in live]
        if shared:
            col_list = ", ".join(shared)
            conn.execute(
                f"INSERT INTO {temp_name} ({col_list}) "
                f"SELECT {col_list} FROM {table.name}"
            )
        conn.execute(f"DROP TABLE {table.name}")
    conn.execute(f"ALTER TABLE {temp_name} RENAME TO {table.name}")
    for index in table.indexes:
        conn.execute(index.create_sql(table.name))


# =============================================================================
# Stages
# =============================================================================


@dataclass
class MigrationContext:
    """State handed from a custom stage's ``will_migrate`` to ``did_migrate``.

    Attributes:
        conn: Connection inside the stage transaction.
        source: Generation the store is being migrated from.
        target: Generation the store is being migrated to.
        staged_rows: Target rows computed by ``will_migrate``, per table.
        rows_read: Source rows read so far.
        rows_written: Target rows written so far.
    """

    conn: sqlite3.Connection
    source: Generation
    target: Generation
    staged_rows: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    rows_read: int = 0
    rows_written: int = 0

    def fetch_rows(self, table: str) -> list[dict[str, Any]]:
        """Read every row of ``table`` as plain dicts (empty if absent)."""
        if not table_exists(self.conn, table):
            return []
        cursor = self.conn.execute(f"SELECT * FROM {table}")
        names = [d[0] for d in cursor.description]
        rows = [dict(zip(names, row, strict=True)) for row in cursor.fetchall()]
        self.rows_read += len(rows)
        return rows

    def delete_rows(self, table: str) -> int:
        if not table_exists(self.conn, table):
            return 0
        return self.conn.execute(f"DELETE FROM {table}").rowcount

    def stage_rows(self, table: str, rows: list[dict[str, Any]]) -> None:
        self.staged_rows.setdefault(table, []).extend(rows)

    def upsert_rows(self, table: str, rows: list[dict[str, Any]], key: str) -> int:
        """Insert ``rows``, replacing any existing row with the same ``key``."""
        written = 0
        for row in rows:
            columns = list(row)
            placeholders = ", ".join("?" for _ in columns)
            updates = ", ".join(
                f"{name} = excluded.{name}" for name in columns if name != key
            )
            sql = (
                f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
            )
            if updates:
                sql += f" ON CONFLICT({key}) DO UPDATE SET {updates}"
            else:
                sql += f" ON CONFLICT({key}) DO NOTHING"
            self.conn.execute(sql, [row[name] for name in columns])
            written += 1
        self.rows_written += written
        return written


StageHook = Callable[[MigrationContext], None]


@dataclass(frozen=True)
class StageResult:
    """Outcome of applying one stage."""

    source: str
    target: str
    kind: StageKind
    changes: tuple[str, ...] = ()
    rows_read: int = 0
    rows_written: int = 0


class MigrationStage(ABC):
    """Base class for a stage joining two adjacent generations."""

    kind: StageKind

    def __init__(self, source: Generation, target: Generation) -> None:
        if not source.version < target.version:
            raise StageDefinitionError(
                f"Stage must move forward: {source.version} -> {target.version}"
            )
        self.source = source
        self.target = target

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.source.version} -> {self.target.version})"
        )

    @abstractmethod
    def apply(self, conn: sqlite3.Connection) -> StageResult:
        """Apply the stage inside the caller's transaction."""


class LightweightStage(MigrationStage):
    """Stage whose changes are inferred from the two table definitions."""

    kind = StageKind.LIGHTWEIGHT

    def __init__(self, source: Generation, target: Generation) -> None:
        super().__init__(source, target)
        self.changes: tuple[SchemaChange, ...] = tuple(
            diff_generations(source, target)
        )

    def apply(self, conn: sqlite3.Connection) -> StageResult:
        for change in self.changes:
            logger.debug("Applying %s", change.describe())
            change.apply(conn)
        return StageResult(
            source=str(self.source.version),
            target=str(self.target.version),
            kind=self.kind,
            changes=tuple(change.describe() for change in self.changes),
        )


class CustomStage(MigrationStage):
    """Stage that transforms rows through explicit hooks."""

    kind = StageKind.CUSTOM

    def __init__(
        self,
        source: Generation,
        target: Generation,
        will_migrate: StageHook,
        did_migrate: StageHook,
    ) -> None:
        super().__init__(source, target)
        self.will_migrate = will_migrate
        self.did_migrate = did_migrate

    def apply(self, conn: sqlite3.Connection) -> StageResult:
        context = MigrationContext(conn=conn, source=self.source, target=self.target)
        self.will_migrate(context)

        changes: list[str] = []
        for table in self.target.tables:
            rebuild_table(conn, table)
            changes.append(f"rebuild table {table.name}")
        for table in self.source.tables:
            if self.target.table(table.name) is None:
                DropTable(table.name).apply(conn)
                changes.append(f"drop table {table.name}")

        self.did_migrate(context)
        return StageResult(
            source=str(self.source.version),
            target=str(self.target.version),
            kind=self.kind,
            changes=tuple(changes),
            rows_read=context.rows_read,
            rows_written=context.rows_written,
        )
