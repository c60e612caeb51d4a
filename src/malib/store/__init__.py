"""Record store: connection setup, lifecycle manager and CRUD handle.

Usage:
    from malib.store import StoreManager

    with StoreManager(path) as manager:
        manager.handle.new_entry(entry)
"""

from malib.store.entries import (
    EntryStore,
    SaveError,
    StoreClosedError,
    StoreError,
)
from malib.store.manager import (
    StoreInitializationError,
    StoreManager,
    create_default_manager,
    create_preview_manager,
)

__all__ = [
    "EntryStore",
    "SaveError",
    "StoreClosedError",
    "StoreError",
    "StoreInitializationError",
    "StoreManager",
    "create_default_manager",
    "create_preview_manager",
]
