"""SQLite connection management for the record store."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

IN_MEMORY = ":memory:"


def ensure_store_directory(store_path: Path) -> None:
    """Ensure the store directory exists, creating it if necessary."""
    store_path.parent.mkdir(parents=True, exist_ok=True)


def connect_store(
    store_path: Path | None, timeout: float = 30.0
) -> sqlite3.Connection:
    """Open a store connection with the standard PRAGMAs.

    Args:
        store_path: Store file, or None for a private in-memory store.
        timeout: How long to wait for locks (seconds).

    Returns:
        A connection usable from any thread. Callers serialize access.
    """
    if store_path is None:
        target = IN_MEMORY
    else:
        ensure_store_directory(store_path)
        target = str(store_path)

    conn = sqlite3.connect(target, timeout=timeout, check_same_thread=False)
    try:
        conn.execute("PRAGMA foreign_keys = ON")

        # WAL: the store is the main file plus -wal/-shm side files
        conn.execute("PRAGMA journal_mode = WAL")

        # NORMAL is safe with WAL mode
        conn.execute("PRAGMA synchronous = NORMAL")
        conn.execute("PRAGMA busy_timeout = 10000")
        conn.execute("PRAGMA temp_store = MEMORY")
    except sqlite3.Error:
        conn.close()
        raise

    conn.row_factory = sqlite3.Row
    return conn


def checkpoint_wal(conn: sqlite3.Connection) -> None:
    """Fold the write-ahead log into the main store file."""
    if conn.in_transaction:
        conn.commit()
    busy, log_frames, checkpointed = conn.execute(
        "PRAGMA wal_checkpoint(TRUNCATE)"
    ).fetchone()
    if busy:
        logger.warning(
            "WAL checkpoint incomplete: %d of %d frames", checkpointed, log_frames
        )
