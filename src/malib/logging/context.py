"""Operation context for structured logging.

Records emitted while a migration, backup or restore runs are tagged with
the operation name and, where there is one, the archive path.
"""

from __future__ import annotations

import contextvars
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Generator

_operation: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "operation", default=None
)
_archive: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "archive", default=None
)


@contextmanager
def operation_context(
    operation: str, archive: Path | str | None = None
) -> Generator[None, None, None]:
    """Tag log records emitted inside the block.

    Restores the previous context on exit, so contexts nest.

    Example:
        with operation_context("restore", archive_path):
            logger.info("Extracting archive")
    """
    operation_token = _operation.set(operation)
    archive_token = _archive.set(str(archive) if archive is not None else None)
    try:
        yield
    finally:
        _archive.reset(archive_token)
        _operation.reset(operation_token)


def get_operation_context() -> tuple[str | None, str | None]:
    """Return ``(operation, archive)`` for the current context."""
    return _operation.get(), _archive.get()


class OperationContextFilter(logging.Filter):
    """Logging filter that injects the operation context into log records.

    Adds ``operation`` and ``archive`` attributes, plus an ``operation_tag``
    like ``[backup] `` for the text format.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        operation, archive = get_operation_context()
        record.operation = operation
        record.archive = archive
        record.operation_tag = f"[{operation}] " if operation else ""
        return True
