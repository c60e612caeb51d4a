"""Sample entries for the in-memory preview store."""

from __future__ import annotations

from malib.domain import AnimeEntry, AnimeType
from malib.store.entries import EntryStore


def preview_entries() -> list[AnimeEntry]:
    """Return fresh copies of the preview entries."""
    return [
        AnimeEntry(
            tmdb_id=209867,
            name="Frieren: Beyond Journey's End",
            type=AnimeType.series(),
        ),
        AnimeEntry(
            tmdb_id=35033,
            name="CLANNAD Season 1",
            type=AnimeType.season(1, 24835),
        ),
        AnimeEntry(
            tmdb_id=378064,
            name="Koe no katachi",
            type=AnimeType.movie(),
        ),
    ]


def seed_preview_entries(store: EntryStore) -> list[int]:
    """Insert the preview entries; returns their catalog ids."""
    return [store.new_entry(entry) for entry in preview_entries()]
