"""
tome_store.backends -- The two physical stores behind HybridPersistence.

Submodules
----------
base
    ``MISSING`` sentinel and the storage exception hierarchy.
local_store
    Small synchronous JSON-file store with a browser-style quota.
bulk_store
    Large asynchronous SQLite store (aiosqlite).
"""

from tome_store.backends.base import (
    MISSING,
    BackendUnavailableError,
    PersistenceError,
    QuotaExceededError,
    StorageError,
)
from tome_store.backends.bulk_store import BulkStore
from tome_store.backends.local_store import LocalStore

__all__ = [
    "MISSING",
    "BackendUnavailableError",
    "BulkStore",
    "LocalStore",
    "PersistenceError",
    "QuotaExceededError",
    "StorageError",
]
