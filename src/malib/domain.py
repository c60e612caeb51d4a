"""Domain types for tracked anime entries.

These types are independent of the storage layer. ``AnimeType`` is the
tagged variant stored (JSON encoded) in the ``type`` column; ``AnimeEntry``
is one row of the current record generation.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from datetime import date, datetime
from enum import Enum
from typing import Any

from malib.core.datetime_utils import (
    format_optional_timestamp,
    parse_optional_timestamp,
    utc_now,
)


class AnimeKind(Enum):
    """Case tag of :class:`AnimeType`."""

    MOVIE = "movie"
    SERIES = "series"
    SEASON = "season"


class WatchStatus(Enum):
    """Watch progress of an entry."""

    PLAN_TO_WATCH = "planToWatch"
    WATCHING = "watching"
    WATCHED = "watched"

    @classmethod
    def from_dates(
        cls, date_started: object | None, date_finished: object | None
    ) -> WatchStatus:
        """Derive the status implied by a start/finish date pair.

        Neither date set means plan to watch, a start without a finish means
        watching, and anything with a finish date is watched.
        """
        if date_started is None and date_finished is None:
            return cls.PLAN_TO_WATCH
        if date_finished is None:
            return cls.WATCHING
        return cls.WATCHED


@dataclass(frozen=True)
class AnimeType:
    """Tagged variant: a movie, a whole series, or one season of a series.

    JSON form::

        {"movie": {}}
        {"series": {}}
        {"season": {"seasonNumber": 1, "parentSeriesID": 24835}}
    """

    kind: AnimeKind
    season_number: int | None = None
    parent_series_id: int | None = None

    def __post_init__(self) -> None:
        if self.kind is AnimeKind.SEASON:
            if self.season_number is None or self.parent_series_id is None:
                raise ValueError(
                    "season requires both season_number and parent_series_id"
                )
        elif self.season_number is not None or self.parent_series_id is not None:
            raise ValueError(f"{self.kind.value} carries no season payload")

    @classmethod
    def movie(cls) -> AnimeType:
        return cls(AnimeKind.MOVIE)

    @classmethod
    def series(cls) -> AnimeType:
        return cls(AnimeKind.SERIES)

    @classmethod
    def season(cls, season_number: int, parent_series_id: int) -> AnimeType:
        return cls(AnimeKind.SEASON, season_number, parent_series_id)

    @property
    def is_season(self) -> bool:
        return self.kind is AnimeKind.SEASON

    def to_json(self) -> dict[str, dict[str, int]]:
        if self.kind is AnimeKind.SEASON:
            return {
                "season": {
                    "seasonNumber": self.season_number,
                    "parentSeriesID": self.parent_series_id,
                }
            }
        return {self.kind.value: {}}

    @classmethod
    def from_json(cls, data: Any) -> AnimeType:
        """Decode the JSON object form.

        Raises:
            ValueError: If ``data`` is not exactly one known case.
        """
        if not isinstance(data, dict) or len(data) != 1:
            raise ValueError(f"Invalid anime type: {data!r}")
        tag, payload = next(iter(data.items()))
        try:
            kind = AnimeKind(tag)
        except ValueError as e:
            raise ValueError(f"Unknown anime type case: {tag!r}") from e
        if kind is not AnimeKind.SEASON:
            return cls(kind)
        if not isinstance(payload, dict):
            raise ValueError(f"Invalid season payload: {payload!r}")
        try:
            return cls.season(
                int(payload["seasonNumber"]), int(payload["parentSeriesID"])
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Invalid season payload: {payload!r}") from e

    def encode(self) -> str:
        """Return the compact JSON text stored in the ``type`` column."""
        return json.dumps(self.to_json(), separators=(",", ":"), sort_keys=True)

    @classmethod
    def decode(cls, text: str) -> AnimeType:
        return cls.from_json(json.loads(text))

    def __str__(self) -> str:
        if self.kind is AnimeKind.SEASON:
            return f"Season {self.season_number}"
        return self.kind.value.capitalize()


@dataclass
class UserEntryInfo:
    """The user-owned part of an entry, copied between entries as a unit."""

    watch_status: WatchStatus = WatchStatus.PLAN_TO_WATCH
    date_started: datetime | None = None
    date_finished: datetime | None = None
    favorite: bool = False
    notes: str = ""
    using_custom_poster: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "watch_status": self.watch_status.value,
            "date_started": format_optional_timestamp(self.date_started),
            "date_finished": format_optional_timestamp(self.date_finished),
            "favorite": self.favorite,
            "notes": self.notes,
            "using_custom_poster": self.using_custom_poster,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserEntryInfo:
        return cls(
            watch_status=WatchStatus(data.get("watch_status", "planToWatch")),
            date_started=parse_optional_timestamp(data.get("date_started")),
            date_finished=parse_optional_timestamp(data.get("date_finished")),
            favorite=bool(data.get("favorite", False)),
            notes=data.get("notes") or "",
            using_custom_poster=bool(data.get("using_custom_poster", False)),
        )


# Fields never overwritten by a full replace.
_IDENTITY_FIELDS = frozenset({"tmdb_id", "date_saved"})


@dataclass
class AnimeEntry:
    """One tracked movie, series or season, keyed by its TMDb id."""

    tmdb_id: int
    name: str
    type: AnimeType
    overview: str | None = None
    name_translations: dict[str, str] = field(default_factory=dict)
    overview_translations: dict[str, str] = field(default_factory=dict)
    on_air_date: date | None = None
    link_to_details: str | None = None
    poster_url: str | None = None
    backdrop_url: str | None = None
    parent_series_entry_id: int | None = None
    on_display: bool = True
    date_saved: datetime = field(default_factory=utc_now)
    watch_status: WatchStatus = WatchStatus.PLAN_TO_WATCH
    date_started: datetime | None = None
    date_finished: datetime | None = None
    favorite: bool = False
    notes: str = ""
    using_custom_poster: bool = False

    @property
    def is_season(self) -> bool:
        return self.type.is_season

    @property
    def parent_series_id(self) -> int | None:
        """Catalog id of the parent series when this entry is a season."""
        return self.type.parent_series_id

    def update_from(self, other: AnimeEntry) -> None:
        """Replace every field except the catalog id and ``date_saved``."""
        for f in fields(self):
            if f.name not in _IDENTITY_FIELDS:
                setattr(self, f.name, getattr(other, f.name))

    @property
    def user_info(self) -> UserEntryInfo:
        return UserEntryInfo(
            watch_status=self.watch_status,
            date_started=self.date_started,
            date_finished=self.date_finished,
            favorite=self.favorite,
            notes=self.notes,
            using_custom_poster=self.using_custom_poster,
        )

    def apply_user_info(self, info: UserEntryInfo) -> None:
        self.watch_status = info.watch_status
        self.date_started = info.date_started
        self.date_finished = info.date_finished
        self.favorite = info.favorite
        self.notes = info.notes
        self.using_custom_poster = info.using_custom_poster

    def set_watch_status(
        self, status: WatchStatus, now: datetime | None = None
    ) -> None:
        """Set the status and the dates it implies together.

        Plan to watch clears both dates. Watching stamps the start and
        clears the finish. Watched stamps the finish and keeps any start.
        """
        now = now or utc_now()
        self.watch_status = status
        if status is WatchStatus.PLAN_TO_WATCH:
            self.date_started = None
            self.date_finished = None
        elif status is WatchStatus.WATCHING:
            self.date_started = now
            self.date_finished = None
        else:
            self.date_finished = now
