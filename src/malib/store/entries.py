"""CRUD handle over the ``anime_entries`` table.

:class:`EntryStore` owns one connection and serializes every call with a
lock held for the whole read-modify-write-commit, so calls from many threads
never interleave. Operations on an unknown catalog id log a warning and
return without touching the store.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from malib.core.datetime_utils import (
    format_optional_date,
    format_optional_timestamp,
    format_timestamp,
    parse_iso_timestamp,
    parse_optional_date,
    parse_optional_timestamp,
    utc_now,
)
from malib.domain import AnimeEntry, AnimeType, UserEntryInfo, WatchStatus
from malib.schema.generations import ENTRY_TABLE

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base class for record store errors."""


class SaveError(StoreError):
    """A change could not be committed to the store."""


class StoreClosedError(StoreError):
    """The handle was closed, typically by a reload after restore."""


# Columns of the current generation, in insert order.
ENTRY_COLUMNS: tuple[str, ...] = (
    "tmdb_id",
    "name",
    "overview",
    "on_air_date",
    "type",
    "link_to_details",
    "poster_url",
    "backdrop_url",
    "date_saved",
    "date_started",
    "date_finished",
    "favorite",
    "notes",
    "using_custom_poster",
    "watch_status",
    "parent_series_entry_id",
    "on_display",
    "name_translations",
    "overview_translations",
)

_IMMUTABLE_COLUMNS = frozenset({"tmdb_id", "date_saved"})
_UPDATE_COLUMNS = tuple(c for c in ENTRY_COLUMNS if c not in _IMMUTABLE_COLUMNS)


def entry_to_row(entry: AnimeEntry) -> dict[str, Any]:
    """Convert an entry to column values."""
    return {
        "tmdb_id": entry.tmdb_id,
        "name": entry.name,
        "overview": entry.overview,
        "on_air_date": format_optional_date(entry.on_air_date),
        "type": entry.type.encode(),
        "link_to_details": entry.link_to_details,
        "poster_url": entry.poster_url,
        "backdrop_url": entry.backdrop_url,
        "date_saved": format_timestamp(entry.date_saved),
        "date_started": format_optional_timestamp(entry.date_started),
        "date_finished": format_optional_timestamp(entry.date_finished),
        "favorite": int(entry.favorite),
        "notes": entry.notes,
        "using_custom_poster": int(entry.using_custom_poster),
        "watch_status": entry.watch_status.value,
        "parent_series_entry_id": entry.parent_series_entry_id,
        "on_display": int(entry.on_display),
        "name_translations": json.dumps(entry.name_translations, sort_keys=True),
        "overview_translations": json.dumps(
            entry.overview_translations, sort_keys=True
        ),
    }


def row_to_entry(row: sqlite3.Row) -> AnimeEntry:
    """Convert a current-generation row to an entry."""
    return AnimeEntry(
        tmdb_id=row["tmdb_id"],
        name=row["name"],
        type=AnimeType.decode(row["type"]),
        overview=row["overview"],
        name_translations=json.loads(row["name_translations"] or "{}"),
        overview_translations=json.loads(row["overview_translations"] or "{}"),
        on_air_date=parse_optional_date(row["on_air_date"]),
        link_to_details=row["link_to_details"],
        poster_url=row["poster_url"],
        backdrop_url=row["backdrop_url"],
        parent_series_entry_id=row["parent_series_entry_id"],
        on_display=bool(row["on_display"]),
        date_saved=parse_iso_timestamp(row["date_saved"]),
        watch_status=WatchStatus(row["watch_status"]),
        date_started=parse_optional_timestamp(row["date_started"]),
        date_finished=parse_optional_timestamp(row["date_finished"]),
        favorite=bool(row["favorite"]),
        notes=row["notes"] or "",
        using_custom_poster=bool(row["using_custom_poster"]),
    )


class EntryStore:
    """Thread-safe CRUD over tracked entries, keyed by TMDb id.

    Args:
        conn: Connection to a store at the current generation. The store
            takes ownership and closes it in :meth:`close`.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = threading.Lock()
        self._closed = False

    # =========================================================================
    # Connection plumbing
    # =========================================================================

    @property
    def is_closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Close the connection; any later call raises StoreClosedError."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._conn.close()

    def _require_open(self) -> sqlite3.Connection:
        """Must be called with ``_lock`` held."""
        if self._closed:
            raise StoreClosedError("Entry store handle is closed; reload the store")
        return self._conn

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            yield self._require_open()

    @contextmanager
    def _writing(self) -> Iterator[sqlite3.Connection]:
        """Hold the lock for a read-modify-write and commit at the end."""
        with self._lock:
            conn = self._require_open()
            try:
                yield conn
                conn.commit()
            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.rollback()
                raise SaveError(f"Failed to save changes: {e}") from e
            except Exception:
                if conn.in_transaction:
                    conn.rollback()
                raise

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Borrow the connection with the lock held (maintenance use)."""
        with self._reading() as conn:
            yield conn

    # =========================================================================
    # Queries
    # =========================================================================

    @staticmethod
    def _select(conn: sqlite3.Connection, tmdb_id: int) -> AnimeEntry | None:
        row = conn.execute(
            f"SELECT * FROM {ENTRY_TABLE} WHERE tmdb_id = ?", (tmdb_id,)
        ).fetchone()
        return row_to_entry(row) if row else None

    def get(self, tmdb_id: int) -> AnimeEntry | None:
        with self._reading() as conn:
            return self._select(conn, tmdb_id)

    def fetch_all(
        self,
        predicate: Callable[[AnimeEntry], bool] | None = None,
        *,
        displayed_only: bool = False,
    ) -> list[AnimeEntry]:
        """Return entries newest-saved first.

        Args:
            predicate: Optional filter applied to each entry.
            displayed_only: Skip entries hidden from the library listing
                (such as parent-series placeholders).
        """
        sql = f"SELECT * FROM {ENTRY_TABLE}"
        if displayed_only:
            sql += " WHERE on_display = 1"
        sql += " ORDER BY date_saved DESC, tmdb_id"
        with self._reading() as conn:
            entries = [row_to_entry(row) for row in conn.execute(sql).fetchall()]
        if predicate is not None:
            entries = [entry for entry in entries if predicate(entry)]
        return entries

    def count(self) -> int:
        with self._reading() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {ENTRY_TABLE}").fetchone()[0]

    # =========================================================================
    # Writes
    # =========================================================================

    def new_entry(self, entry: AnimeEntry) -> int:
        """Insert ``entry`` unless its catalog id is already tracked.

        Re-adding a tracked id inserts nothing and returns the existing id;
        if the new entry is meant for display, a hidden existing entry (a
        parent-series placeholder) is made visible. A season is linked to its
        parent series when that series is already tracked.

        Returns:
            The catalog id of the stored entry.
        """
        with self._writing() as conn:
            existing = self._select(conn, entry.tmdb_id)
            if existing is not None:
                if entry.on_display and not existing.on_display:
                    conn.execute(
                        f"UPDATE {ENTRY_TABLE} SET on_display = 1 WHERE tmdb_id = ?",
                        (entry.tmdb_id,),
                    )
                return existing.tmdb_id

            row = entry_to_row(entry)
            if (
                entry.is_season
                and row["parent_series_entry_id"] is None
                and self._select(conn, entry.parent_series_id) is not None
            ):
                row["parent_series_entry_id"] = entry.parent_series_id
            columns = ", ".join(ENTRY_COLUMNS)
            placeholders = ", ".join("?" for _ in ENTRY_COLUMNS)
            conn.execute(
                f"INSERT INTO {ENTRY_TABLE} ({columns}) VALUES ({placeholders})",
                [row[c] for c in ENTRY_COLUMNS],
            )
            logger.debug("Added entry %d (%s)", entry.tmdb_id, entry.name)
            return entry.tmdb_id

    @staticmethod
    def _write_back(conn: sqlite3.Connection, entry: AnimeEntry) -> None:
        row = entry_to_row(entry)
        assignments = ", ".join(f"{c} = ?" for c in _UPDATE_COLUMNS)
        conn.execute(
            f"UPDATE {ENTRY_TABLE} SET {assignments} WHERE tmdb_id = ?",
            [row[c] for c in _UPDATE_COLUMNS] + [entry.tmdb_id],
        )

    def update_entry_with(
        self, tmdb_id: int, mutator: Callable[[AnimeEntry], None]
    ) -> AnimeEntry | None:
        """Apply ``mutator`` to the stored entry and save it.

        The catalog id and ``date_saved`` survive any change the mutator
        makes to them.

        Returns:
            The saved entry, or None when ``tmdb_id`` is not tracked.
        """
        with self._writing() as conn:
            entry = self._select(conn, tmdb_id)
            if entry is None:
                logger.warning("No entry with id %d; update ignored", tmdb_id)
                return None
            date_saved = entry.date_saved
            mutator(entry)
            entry.tmdb_id = tmdb_id
            entry.date_saved = date_saved
            self._write_back(conn, entry)
            return entry

    def update_entry(self, tmdb_id: int, entry: AnimeEntry) -> AnimeEntry | None:
        """Replace every field of the stored entry except id and save date."""
        return self.update_entry_with(tmdb_id, lambda stored: stored.update_from(entry))

    def delete_entry(self, tmdb_id: int) -> bool:
        """Delete one entry. Seasons pointing at it lose their parent link.

        Returns:
            True if an entry was deleted.
        """
        with self._writing() as conn:
            cursor = conn.execute(
                f"DELETE FROM {ENTRY_TABLE} WHERE tmdb_id = ?", (tmdb_id,)
            )
            if cursor.rowcount == 0:
                logger.warning("No entry with id %d; delete ignored", tmdb_id)
                return False
            return True

    def delete_all_entries(self) -> int:
        """Delete every entry; returns how many were removed."""
        with self._writing() as conn:
            return conn.execute(f"DELETE FROM {ENTRY_TABLE}").rowcount

    # =========================================================================
    # User-info helpers
    # =========================================================================

    def _set_status(self, tmdb_id: int, status: WatchStatus) -> AnimeEntry | None:
        now = utc_now()
        return self.update_entry_with(
            tmdb_id, lambda entry: entry.set_watch_status(status, now)
        )

    def mark_as_plan_to_watch(self, tmdb_id: int) -> AnimeEntry | None:
        return self._set_status(tmdb_id, WatchStatus.PLAN_TO_WATCH)

    def mark_as_watching(self, tmdb_id: int) -> AnimeEntry | None:
        return self._set_status(tmdb_id, WatchStatus.WATCHING)

    def mark_as_watched(self, tmdb_id: int) -> AnimeEntry | None:
        return self._set_status(tmdb_id, WatchStatus.WATCHED)

    def favorite(self, tmdb_id: int) -> AnimeEntry | None:
        return self.update_entry_with(tmdb_id, lambda e: setattr(e, "favorite", True))

    def unfavorite(self, tmdb_id: int) -> AnimeEntry | None:
        return self.update_entry_with(
            tmdb_id, lambda e: setattr(e, "favorite", False)
        )

    def toggle_favorite(self, tmdb_id: int) -> AnimeEntry | None:
        return self.update_entry_with(
            tmdb_id, lambda e: setattr(e, "favorite", not e.favorite)
        )

    def update_user_info(
        self, tmdb_id: int, info: UserEntryInfo
    ) -> AnimeEntry | None:
        return self.update_entry_with(tmdb_id, lambda e: e.apply_user_info(info))

    def link_parent_series(
        self, season_id: int, parent_id: int | None
    ) -> AnimeEntry | None:
        """Point a season at its tracked parent series (None unlinks).

        The link is non-owning: deleting the parent clears it.
        """
        with self._writing() as conn:
            entry = self._select(conn, season_id)
            if entry is None:
                logger.warning("No entry with id %d; link ignored", season_id)
                return None
            if parent_id is not None and self._select(conn, parent_id) is None:
                logger.warning("No parent entry with id %d; link ignored", parent_id)
                return None
            entry.parent_series_entry_id = parent_id
            self._write_back(conn, entry)
            return entry
