"""Install malib's root log handlers from a LoggingConfig."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING

from malib.logging.context import OperationContextFilter
from malib.logging.handlers import JSONFormatter

if TYPE_CHECKING:
    from malib.config.models import LoggingConfig

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(operation_tag)s%(name)s: %(message)s"
TEXT_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


def _formatter(log_format: str) -> logging.Formatter:
    if log_format.casefold() == "json":
        return JSONFormatter()
    return logging.Formatter(TEXT_FORMAT, datefmt=TEXT_DATE_FORMAT)


def _file_handler(config: LoggingConfig) -> logging.Handler | None:
    """Open the rotating log file, or return None (with a warning) if it can't be."""
    path = Path(config.file).expanduser()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        return RotatingFileHandler(
            path,
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
    except OSError as e:
        sys.stderr.write(f"Warning: Could not open log file {path}: {e}\n")
        return None


def configure_logging(config: LoggingConfig) -> list[logging.Handler]:
    """Replace the root handlers according to ``config``.

    Records go to the log file when one is configured and can be opened,
    and to stderr otherwise (or additionally with ``include_stderr``).
    Every handler tags records with the current operation context.

    Returns:
        The handlers installed on the root logger.
    """
    level = logging.getLevelName(config.level.upper())
    handlers: list[logging.Handler] = []

    if config.file:
        file_handler = _file_handler(config)
        if file_handler is not None:
            handlers.append(file_handler)
    if config.include_stderr or not handlers:
        handlers.append(logging.StreamHandler(sys.stderr))

    formatter = _formatter(config.format)
    context_filter = OperationContextFilter()
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(context_filter)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    for handler in handlers:
        root.addHandler(handler)
    return handlers
