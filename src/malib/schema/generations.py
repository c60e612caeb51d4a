"""Record schema generations for the malib store.

Every historical release of the record schema is described here as a
:class:`Generation`: its version number and the exact table layout it
defines. Generations are data, not code; the migration plan diffs adjacent
generations to derive lightweight structural changes and runs explicit
transforms for the custom ones.

Generation history (table ``anime_entries``, one row per tracked item):

- 1.0.0: initial layout, catalog id stored in ``id``, flat entry kind
- 2.0.0: ``id`` renamed to ``tmdb_id``
- 2.0.1: ``use_series_poster`` flag
- 2.1.0: flat kind columns replaced by the tagged ``type`` column
- 2.1.1: ``use_series_poster`` removed
- 2.2.0: ``notes``
- 2.2.1: ``using_custom_poster``
- 2.3.0: explicit ``watch_status`` derived from the watch dates
- 2.3.1: ``parent_series_entry_id`` weak self-reference
- 2.3.2: ``on_display`` visibility flag
- 2.4.0: ``name_translations`` / ``overview_translations`` locale maps
- 2.4.1: index on ``(on_display, date_saved)``
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace

from malib.schema.version import SchemaVersion

ENTRY_TABLE = "anime_entries"
ENTRY_RECORD_TYPE = "AnimeEntry"


@dataclass(frozen=True)
class ColumnSpec:
    """One column of a table definition.

    ``original_name`` marks a rename: when the source generation has a
    column called ``original_name`` and no column called ``name``, the
    migration renames it instead of dropping and re-adding it.
    """

    name: str
    decl: str
    original_name: str | None = None

    @property
    def sql(self) -> str:
        return f"{self.name} {self.decl}"


@dataclass(frozen=True)
class IndexSpec:
    """A secondary index on one table."""

    name: str
    columns: str

    def create_sql(self, table: str) -> str:
        return f"CREATE INDEX IF NOT EXISTS {self.name} ON {table}({self.columns})"


@dataclass(frozen=True)
class TableSpec:
    """Full definition of one record table at one generation."""

    name: str
    record_type: str
    columns: tuple[ColumnSpec, ...]
    indexes: tuple[IndexSpec, ...] = ()

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(column.name for column in self.columns)

    def column(self, name: str) -> ColumnSpec | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def create_sql(self, table_name: str | None = None) -> str:
        """Return the CREATE TABLE statement, optionally under another name."""
        body = ",\n    ".join(column.sql for column in self.columns)
        return f"CREATE TABLE IF NOT EXISTS {table_name or self.name} (\n    {body}\n)"

    def evolve(
        self,
        *,
        add: tuple[ColumnSpec, ...] = (),
        drop: tuple[str, ...] = (),
        rename: dict[str, str] | None = None,
        add_indexes: tuple[IndexSpec, ...] = (),
    ) -> TableSpec:
        """Derive the next generation's table definition.

        Args:
            add: Columns appended to the table.
            drop: Names of columns removed from the table.
            rename: Mapping of old column name to new column name.
            add_indexes: Indexes added to the table.
        """
        rename = rename or {}
        columns: list[ColumnSpec] = []
        for column in self.columns:
            if column.name in drop:
                continue
            if column.name in rename:
                column = ColumnSpec(
                    rename[column.name], column.decl, original_name=column.name
                )
            columns.append(column)
        columns.extend(add)
        return replace(
            self,
            columns=tuple(columns),
            indexes=self.indexes + add_indexes,
        )


@dataclass(frozen=True)
class Generation:
    """One schema generation: a version and the tables it defines."""

    version: SchemaVersion
    tables: tuple[TableSpec, ...]
    description: str = ""
    record_types: frozenset[str] = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "record_types", frozenset(t.record_type for t in self.tables)
        )

    def table(self, name: str) -> TableSpec | None:
        for table in self.tables:
            if table.name == name:
                return table
        return None

    def create_statements(self) -> list[str]:
        """Return every statement needed to build this generation from scratch."""
        statements: list[str] = []
        for table in self.tables:
            statements.append(table.create_sql())
            statements.extend(index.create_sql(table.name) for index in table.indexes)
        return statements


def _generation(
    version: str, table: TableSpec, description: str
) -> Generation:
    return Generation(
        version=SchemaVersion.parse(version),
        tables=(table,),
        description=description,
    )


_ENTRIES_V1_0_0 = TableSpec(
    name=ENTRY_TABLE,
    record_type=ENTRY_RECORD_TYPE,
    columns=(
        ColumnSpec("id", "INTEGER PRIMARY KEY"),
        ColumnSpec("name", "TEXT NOT NULL"),
        ColumnSpec("overview", "TEXT"),
        ColumnSpec("on_air_date", "TEXT"),
        # 'movie', 'tvSeries' or 'tvSeason'
        ColumnSpec("entry_type", "TEXT NOT NULL"),
        ColumnSpec("season_number", "INTEGER"),
        ColumnSpec("parent_series_id", "INTEGER"),
        ColumnSpec("link_to_details", "TEXT"),
        ColumnSpec("poster_url", "TEXT"),
        ColumnSpec("backdrop_url", "TEXT"),
        ColumnSpec("date_saved", "TEXT NOT NULL"),
        ColumnSpec("date_started", "TEXT"),
        ColumnSpec("date_finished", "TEXT"),
        ColumnSpec("favorite", "INTEGER NOT NULL DEFAULT 0"),
    ),
)

_ENTRIES_V2_0_0 = _ENTRIES_V1_0_0.evolve(rename={"id": "tmdb_id"})

_ENTRIES_V2_0_1 = _ENTRIES_V2_0_0.evolve(
    add=(ColumnSpec("use_series_poster", "INTEGER NOT NULL DEFAULT 0"),)
)

_ENTRIES_V2_1_0 = _ENTRIES_V2_0_1.evolve(
    drop=("entry_type", "season_number", "parent_series_id"),
    # JSON-encoded AnimeType: {"movie": {}}, {"series": {}} or
    # {"season": {"seasonNumber": n, "parentSeriesID": id}}
    add=(ColumnSpec("type", "TEXT NOT NULL"),),
)

_ENTRIES_V2_1_1 = _ENTRIES_V2_1_0.evolve(drop=("use_series_poster",))

_ENTRIES_V2_2_0 = _ENTRIES_V2_1_1.evolve(
    add=(ColumnSpec("notes", "TEXT NOT NULL DEFAULT ''"),)
)

_ENTRIES_V2_2_1 = _ENTRIES_V2_2_0.evolve(
    add=(ColumnSpec("using_custom_poster", "INTEGER NOT NULL DEFAULT 0"),)
)

_ENTRIES_V2_3_0 = _ENTRIES_V2_2_1.evolve(
    add=(ColumnSpec("watch_status", "TEXT NOT NULL DEFAULT 'planToWatch'"),)
)

_ENTRIES_V2_3_1 = _ENTRIES_V2_3_0.evolve(
    add=(
        ColumnSpec(
            "parent_series_entry_id",
            f"INTEGER REFERENCES {ENTRY_TABLE}(tmdb_id) ON DELETE SET NULL",
        ),
    )
)

_ENTRIES_V2_3_2 = _ENTRIES_V2_3_1.evolve(
    add=(ColumnSpec("on_display", "INTEGER NOT NULL DEFAULT 1"),)
)

_ENTRIES_V2_4_0 = _ENTRIES_V2_3_2.evolve(
    add=(
        ColumnSpec("name_translations", "TEXT NOT NULL DEFAULT '{}'"),
        ColumnSpec("overview_translations", "TEXT NOT NULL DEFAULT '{}'"),
    )
)

_ENTRIES_V2_4_1 = _ENTRIES_V2_4_0.evolve(
    add_indexes=(
        IndexSpec(
            "idx_anime_entries_display_saved", "on_display, date_saved DESC"
        ),
    )
)

V1_0_0 = _generation("1.0.0", _ENTRIES_V1_0_0, "Initial layout")
V2_0_0 = _generation("2.0.0", _ENTRIES_V2_0_0, "Catalog id column renamed")
V2_0_1 = _generation("2.0.1", _ENTRIES_V2_0_1, "Series poster preference")
V2_1_0 = _generation("2.1.0", _ENTRIES_V2_1_0, "Tagged anime type")
V2_1_1 = _generation("2.1.1", _ENTRIES_V2_1_1, "Series poster preference removed")
V2_2_0 = _generation("2.2.0", _ENTRIES_V2_2_0, "Entry notes")
V2_2_1 = _generation("2.2.1", _ENTRIES_V2_2_1, "Custom poster flag")
V2_3_0 = _generation("2.3.0", _ENTRIES_V2_3_0, "Explicit watch status")
V2_3_1 = _generation("2.3.1", _ENTRIES_V2_3_1, "Parent series reference")
V2_3_2 = _generation("2.3.2", _ENTRIES_V2_3_2, "Display flag")
V2_4_0 = _generation("2.4.0", _ENTRIES_V2_4_0, "Localized names and overviews")
V2_4_1 = _generation("2.4.1", _ENTRIES_V2_4_1, "Library listing index")

GENERATIONS: tuple[Generation, ...] = (
    V1_0_0,
    V2_0_0,
    V2_0_1,
    V2_1_0,
    V2_1_1,
    V2_2_0,
    V2_2_1,
    V2_3_0,
    V2_3_1,
    V2_3_2,
    V2_4_0,
    V2_4_1,
)

CURRENT_GENERATION = GENERATIONS[-1]
