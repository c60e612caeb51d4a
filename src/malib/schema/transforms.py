"""Row transforms for the custom migration stages.

- 2.0.1 -> 2.1.0: the flat kind columns (``entry_type``, ``season_number``,
  ``parent_series_id``) collapse into the tagged ``type`` column.
- 2.2.1 -> 2.3.0: ``watch_status`` is derived from the watch dates.

Each transform is a pure row function; :func:`row_transform_hooks` turns it
into the ``will_migrate`` / ``did_migrate`` pair a custom stage runs.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from malib.domain import AnimeType, WatchStatus
from malib.schema.generations import ENTRY_TABLE
from malib.schema.stages import MigrationContext, StageHook

Row = dict[str, Any]
RowTransform = Callable[[Row], Row]

# Flat kind values written by 1.x / 2.0.x stores.
FLAT_MOVIE = "movie"
FLAT_SERIES = "tvSeries"
FLAT_SEASON = "tvSeason"

_FLAT_KIND_COLUMNS = ("entry_type", "season_number", "parent_series_id")


def anime_type_from_flat_kind(
    entry_type: str, season_number: int | None, parent_series_id: int | None
) -> AnimeType:
    """Map the flat kind representation onto :class:`AnimeType`.

    Raises:
        ValueError: For an unknown kind or a season missing its payload.
    """
    if entry_type == FLAT_MOVIE:
        return AnimeType.movie()
    if entry_type == FLAT_SERIES:
        return AnimeType.series()
    if entry_type == FLAT_SEASON:
        if season_number is None or parent_series_id is None:
            raise ValueError(
                "tvSeason entry is missing its season number or parent series id"
            )
        return AnimeType.season(int(season_number), int(parent_series_id))
    raise ValueError(f"Unknown entry type: {entry_type!r}")


def tagged_type_row(row: Row) -> Row:
    """Convert one 2.0.1 row into a 2.1.0 row."""
    converted = {k: v for k, v in row.items() if k not in _FLAT_KIND_COLUMNS}
    try:
        anime_type = anime_type_from_flat_kind(
            row["entry_type"], row.get("season_number"), row.get("parent_series_id")
        )
    except ValueError as e:
        raise ValueError(f"Entry {row.get('tmdb_id')}: {e}") from e
    converted["type"] = anime_type.encode()
    return converted


def watch_status_row(row: Row) -> Row:
    """Convert one 2.2.1 row into a 2.3.0 row."""
    converted = dict(row)
    status = WatchStatus.from_dates(row.get("date_started"), row.get("date_finished"))
    converted["watch_status"] = status.value
    return converted


def row_transform_hooks(
    transform: RowTransform, table: str = ENTRY_TABLE, key: str = "tmdb_id"
) -> tuple[StageHook, StageHook]:
    """Build the hook pair for a one-table row transform.

    ``will_migrate`` reads every source row, stages the converted rows in the
    context and deletes the source rows. ``did_migrate`` upserts the staged
    rows into the rebuilt table, keyed on ``key``.
    """

    def will_migrate(context: MigrationContext) -> None:
        rows = context.fetch_rows(table)
        context.stage_rows(table, [transform(row) for row in rows])
        context.delete_rows(table)

    def did_migrate(context: MigrationContext) -> None:
        target_table = context.target.table(table)
        allowed = set(target_table.column_names) if target_table else set()
        rows = [
            {k: v for k, v in row.items() if k in allowed}
            for row in context.staged_rows.get(table, [])
        ]
        context.upsert_rows(table, rows, key)

    return will_migrate, did_migrate
