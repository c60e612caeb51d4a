"""Store lifecycle: open, migrate, reload and close the record store.

A :class:`StoreManager` owns at most one live :class:`EntryStore`. Opening
runs the migration plan before the handle is published; reloading closes
the live handle (making it stale) and opens a fresh one from the same path.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import TYPE_CHECKING

from malib.logging.context import operation_context
from malib.schema.plan import (
    DEFAULT_PLAN,
    MigrationError,
    MigrationPlan,
    MigrationReport,
)
from malib.schema.version import SchemaVersion, get_schema_version
from malib.store.connection import checkpoint_wal, connect_store
from malib.store.entries import EntryStore
from malib.store.preview import seed_preview_entries

if TYPE_CHECKING:
    from malib.config.models import MalibConfig

logger = logging.getLogger(__name__)


class StoreInitializationError(Exception):
    """The store could not be opened or migrated. There is no degraded mode."""


class StoreManager:
    """Owns the record store at one path.

    Args:
        store_path: Main store file. Its directory holds the ``-wal`` and
            ``-shm`` side files too. Required unless ``in_memory``.
        in_memory: Use a private in-memory store instead of a file.
        plan: Migration plan run on every open.
    """

    def __init__(
        self,
        store_path: Path | None = None,
        *,
        in_memory: bool = False,
        plan: MigrationPlan = DEFAULT_PLAN,
    ) -> None:
        if store_path is None and not in_memory:
            raise ValueError("store_path is required for a persistent store")
        self.store_path = None if in_memory else Path(store_path)
        self.in_memory = in_memory
        self.plan = plan
        self._handle: EntryStore | None = None
        self.last_report: MigrationReport | None = None

    def __repr__(self) -> str:
        where = ":memory:" if self.in_memory else str(self.store_path)
        return f"StoreManager({where})"

    def __enter__(self) -> StoreManager:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def open(self) -> EntryStore:
        """Open the store, run pending migrations and publish the handle.

        Returns the live handle unchanged if the store is already open.

        Raises:
            StoreInitializationError: If connecting or migrating fails.
        """
        if self._handle is not None and not self._handle.is_closed:
            return self._handle

        with operation_context("migrate"):
            try:
                conn = connect_store(self.store_path)
            except (sqlite3.Error, OSError) as e:
                raise StoreInitializationError(
                    f"Failed to open store {self!r}: {e}"
                ) from e
            try:
                report = self.plan.migrate(conn)
            except (MigrationError, sqlite3.Error) as e:
                conn.close()
                logger.error("Store migration failed: %s", e)
                raise StoreInitializationError(
                    f"Failed to migrate store {self!r}: {e}"
                ) from e

        self.last_report = report
        self._handle = EntryStore(conn)
        logger.debug(
            "Opened store",
            extra={
                "store": str(self.store_path or ":memory:"),
                "schema_version": str(report.to_version),
            },
        )
        return self._handle

    @property
    def handle(self) -> EntryStore:
        """The live handle, opened on first use."""
        return self.open()

    @property
    def is_open(self) -> bool:
        return self._handle is not None and not self._handle.is_closed

    def close(self) -> None:
        """Close the live handle. Idempotent."""
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def reload(self) -> EntryStore:
        """Close the live handle and re-open from the same path.

        Handles obtained before the reload raise StoreClosedError on use.
        An in-memory store reloads empty.
        """
        self.close()
        return self.open()

    def checkpoint(self) -> None:
        """Fold the write-ahead log into the main store file."""
        if not self.is_open:
            return
        with self._handle.connection() as conn:
            checkpoint_wal(conn)

    # =========================================================================
    # Introspection
    # =========================================================================

    @property
    def schema_version(self) -> SchemaVersion:
        """The generation this build writes."""
        return self.plan.current_version

    @property
    def store_dir(self) -> Path | None:
        return self.store_path.parent if self.store_path else None

    @property
    def store_name(self) -> str | None:
        return self.store_path.name if self.store_path else None

    def store_files(self) -> list[Path]:
        """Files in the store directory that share the store base filename."""
        if self.store_path is None or not self.store_path.parent.is_dir():
            return []
        prefix = self.store_path.name
        return sorted(
            path
            for path in self.store_path.parent.iterdir()
            if path.is_file() and path.name.startswith(prefix)
        )

    def stored_version(self) -> SchemaVersion | None:
        """Version stamped in the store, without migrating it."""
        if self.is_open:
            with self._handle.connection() as conn:
                return get_schema_version(conn)
        if self.store_path is None or not self.store_path.exists():
            return None
        conn = sqlite3.connect(self.store_path)
        try:
            return get_schema_version(conn)
        finally:
            conn.close()


def create_default_manager(config: MalibConfig) -> StoreManager:
    """Build the persistent manager for the configured data directory."""
    return StoreManager(config.storage.store_path)


def create_preview_manager(*, seed: bool = True) -> StoreManager:
    """Build an in-memory manager, optionally seeded with preview entries."""
    manager = StoreManager(in_memory=True)
    if seed:
        seed_preview_entries(manager.open())
    return manager
