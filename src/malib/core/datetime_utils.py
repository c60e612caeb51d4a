"""UTC datetime utilities.

Timestamps are stored as ISO-8601 UTC text and air dates as ISO dates.
"""

from datetime import UTC, date, datetime


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


def parse_iso_timestamp(timestamp: str) -> datetime:
    """Parse ISO-8601 timestamp, handling both Z and +00:00 suffixes.

    Args:
        timestamp: ISO-8601 timestamp string (e.g., "2024-01-15T10:30:00Z").

    Returns:
        Timezone-aware datetime object (always UTC if no offset specified).
    """
    normalized = timestamp.replace("Z", "+00:00")
    dt = datetime.fromisoformat(normalized)
    # Naive timestamps are assumed to be UTC
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def format_timestamp(dt: datetime) -> str:
    """Format a datetime as ISO-8601 UTC text."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat()


def parse_optional_timestamp(value: str | None) -> datetime | None:
    return parse_iso_timestamp(value) if value else None


def format_optional_timestamp(dt: datetime | None) -> str | None:
    return format_timestamp(dt) if dt is not None else None


def parse_optional_date(value: str | None) -> date | None:
    """Parse an ISO date, tolerating full timestamps from older stores."""
    if not value:
        return None
    if "T" in value:
        return parse_iso_timestamp(value).date()
    return date.fromisoformat(value)


def format_optional_date(value: date | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


def backup_timestamp(dt: datetime | None = None) -> str:
    """Return a filename-safe UTC timestamp like ``2026-02-05T143022Z``."""
    return (dt or utc_now()).astimezone(UTC).strftime("%Y-%m-%dT%H%M%SZ")
