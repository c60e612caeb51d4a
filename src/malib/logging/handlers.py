"""JSON log formatting for malib.

One record becomes one JSON object per line::

    {"timestamp": "...", "level": "INFO", "logger": "malib.backup.restore",
     "message": "Restore complete",
     "context": {"operation": "restore", "archive": "...", "duration_seconds": 0.4}}
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

# Attributes every LogRecord carries; anything else came from ``extra``.
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}

# Set by OperationContextFilter, always taken from the active context.
_CONTEXT_ATTRS = ("operation", "archive")
_FILTER_ATTRS = frozenset(_CONTEXT_ATTRS) | {"operation_tag"}


def record_extras(record: logging.LogRecord) -> dict[str, Any]:
    """Return the ``extra`` fields attached to ``record``."""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRS
        and key not in _FILTER_ATTRS
        and not key.startswith("_")
    }


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON objects.

    ``extra`` fields and the operation context are nested under
    ``context``; a caller's ``extra={"archive": ...}`` cannot shadow the
    archive of the running operation.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
        }
        if record.name and record.name != "root":
            entry["logger"] = record.name

        context = record_extras(record)
        context.update(
            (attr, getattr(record, attr))
            for attr in _CONTEXT_ATTRS
            if getattr(record, attr, None)
        )
        if context:
            entry["context"] = context

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)
