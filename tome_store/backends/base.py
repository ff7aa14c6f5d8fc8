"""
tome_store/backends/base.py -- Absence sentinel and storage exceptions.
"""

from __future__ import annotations


class _Missing:
    """Marker for "nothing stored under this key"."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self


MISSING = _Missing()


class StorageError(Exception):
    """Base class for storage failures."""


class QuotaExceededError(StorageError):
    """A write would push the local store past its capacity."""


class BackendUnavailableError(StorageError):
    """The underlying store cannot be opened or used."""


class PersistenceError(StorageError):
    """A key could not be written to any backend."""

    def __init__(self, key: str, message: str = ""):
        self.key = key
        super().__init__(message or f"Could not persist {key!r} to any storage backend.")
