"""Human-readable formatting helpers for CLI output."""

from __future__ import annotations

from datetime import datetime

_SIZE_UNITS = ("GB", "MB", "KB")


def format_file_size(size_bytes: int) -> str:
    """Format a byte count with one decimal in the largest fitting unit.

    ``format_file_size(1536)`` is ``"1.5 KB"``; counts under 1 KiB are shown
    as whole bytes (``"512 B"``).
    """
    for power, unit in zip((3, 2, 1), _SIZE_UNITS, strict=True):
        scale = 1024**power
        if size_bytes >= scale:
            return f"{size_bytes / scale:.1f} {unit}"
    return f"{size_bytes} B"


def format_datetime(dt: datetime | None) -> str:
    """Format an aware datetime as ``YYYY-MM-DD HH:MM UTC`` (or ``-``)."""
    if dt is None:
        return "-"
    return dt.strftime("%Y-%m-%d %H:%M UTC")


def truncate(text: str, max_length: int = 40) -> str:
    """Truncate text to ``max_length`` characters with a trailing ellipsis."""
    if len(text) <= max_length:
        return text
    return text[: max_length - 1] + "…"
