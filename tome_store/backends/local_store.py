"""
tome_store/backends/local_store.py -- Small, synchronous key/value store.

The local store plays the part of the browser's ``localStorage``: a flat
mapping of string keys to JSON text, limited to a few megabytes and
accessed synchronously.  It is backed by a single JSON file that is
rewritten atomically on every change.

Capacity is accounted the way browsers do it: two bytes per character of
every key and value.  The file is re-read whenever it has changed on
disk since this store last read or wrote it, so that another process
sharing the same file (another "tab") counts against the quota too.

Reads never raise.  Missing, unparsable or unreadable values come back as
``MISSING`` (or the caller's default) so that callers only ever see
"nothing here", never a half-parsed value.

Usage::

    from tome_store.backends.local_store import LocalStore

    store = LocalStore("/path/to/local_storage.json")
    store.write("selectedGenres", ["Mystery", "Fantasy"])
    genres = store.read("selectedGenres", default=[])
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any

from tome_store.backends.base import (
    MISSING,
    BackendUnavailableError,
    QuotaExceededError,
)
from tome_store.config import DEFAULT_LOCAL_QUOTA_BYTES
from tome_store.utils import backup_file, safe_write_json

logger = logging.getLogger(__name__)

_BYTES_PER_CHAR = 2


def _entry_size(key: str, text: str) -> int:
    return (len(key) + len(text)) * _BYTES_PER_CHAR


class LocalStore:
    """Quota-limited synchronous JSON store.

    Parameters
    ----------
    path : str or pathlib.Path or None
        File holding the store.  ``None`` keeps everything in memory.
    quota_bytes : int
        Maximum total size of all entries.
    available : bool
        ``False`` makes every operation fail as if storage were disabled.
    backups_dir : str or pathlib.Path, optional
        Where a corrupt store file is copied before it is first
        overwritten.  Defaults to the store file's directory.
    """

    def __init__(
        self,
        path=None,
        *,
        quota_bytes: int = DEFAULT_LOCAL_QUOTA_BYTES,
        available: bool = True,
        backups_dir=None,
    ):
        self.path = Path(path) if path is not None else None
        self.quota_bytes = quota_bytes
        self.available = available
        self.backups_dir = Path(backups_dir) if backups_dir is not None else (
            self.path.parent if self.path is not None else None
        )
        self._lock = threading.RLock()
        self._items: dict[str, str] = {}
        self._corrupt_backed_up = False
        self._file_corrupt = False
        self._signature: tuple[int, int, int] | None = None
        if self.available:
            try:
                self._refresh()
            except BackendUnavailableError as exc:
                logger.warning("%s", exc)

    # ------------------------------------------------------------------
    # File handling
    # ------------------------------------------------------------------

    def _file_signature(self) -> tuple[int, int, int] | None:
        """Identity of the store file on disk, or None if it does not exist."""
        try:
            st = os.stat(self.path)
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise BackendUnavailableError(f"Cannot stat local store {self.path}: {exc}") from exc
        return (st.st_ino, st.st_mtime_ns, st.st_size)

    def _refresh(self) -> None:
        """Reload entries if the file changed since it was last read or written.

        A corrupt file is treated as empty.
        """
        if self.path is None:
            return
        signature = self._file_signature()
        if signature is not None and signature == self._signature:
            return

        self._signature = None
        self._file_corrupt = False
        if signature is None:
            self._items = {}
            return
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.warning("Local store %s is corrupt (%s); treating it as empty", self.path, exc)
            data = None
        except OSError as exc:
            raise BackendUnavailableError(f"Cannot read local store {self.path}: {exc}") from exc

        if data is not None and not isinstance(data, dict):
            logger.warning("Local store %s does not hold an object; treating it as empty", self.path)
            data = None
        if data is None:
            self._items = {}
            self._file_corrupt = True
        else:
            self._items = {k: v for k, v in data.items() if isinstance(k, str) and isinstance(v, str)}
        self._signature = signature

    def _flush(self) -> None:
        if self.path is None:
            return
        if self._file_corrupt and not self._corrupt_backed_up:
            backup = backup_file(self.path, self.backups_dir, suffix=".corrupt")
            logger.warning("Backed up corrupt local store to %s before overwriting", backup)
            self._corrupt_backed_up = True
        try:
            safe_write_json(self.path, self._items, indent=None)
        except OSError as exc:
            raise BackendUnavailableError(f"Cannot write local store {self.path}: {exc}") from exc
        self._file_corrupt = False
        try:
            self._signature = self._file_signature()
        except BackendUnavailableError:
            self._signature = None

    def _require_available(self) -> None:
        if not self.available:
            raise BackendUnavailableError("Local storage is disabled.")

    # ------------------------------------------------------------------
    # Raw string API (raises)
    # ------------------------------------------------------------------

    def get_item(self, key: str) -> str | None:
        """Return the raw stored text for *key*, or None."""
        with self._lock:
            self._require_available()
            self._refresh()
            return self._items.get(key)

    def set_item(self, key: str, text: str) -> None:
        """Store raw *text* under *key*.

        Raises
        ------
        QuotaExceededError
            If the store would exceed ``quota_bytes``.
        BackendUnavailableError
            If the store is disabled or the file cannot be written.
        """
        with self._lock:
            self._require_available()
            self._refresh()
            current = self._items.get(key)
            used = self._usage()
            if current is not None:
                used -= _entry_size(key, current)
            needed = used + _entry_size(key, text)
            if needed > self.quota_bytes:
                raise QuotaExceededError(
                    f"Writing {key!r} needs {needed} bytes; quota is {self.quota_bytes}."
                )
            previous = dict(self._items)
            self._items[key] = text
            try:
                self._flush()
            except BackendUnavailableError:
                self._items = previous
                raise

    def remove_item(self, key: str) -> bool:
        """Delete *key*.  Returns True if something was removed."""
        with self._lock:
            self._require_available()
            self._refresh()
            if key not in self._items:
                return False
            previous = dict(self._items)
            del self._items[key]
            try:
                self._flush()
            except BackendUnavailableError:
                self._items = previous
                raise
            return True

    def keys(self) -> list[str]:
        with self._lock:
            if not self.available:
                return []
            try:
                self._refresh()
            except BackendUnavailableError:
                logger.warning("Local store unavailable while listing keys", exc_info=True)
                return []
            return list(self._items)

    def _usage(self) -> int:
        return sum(_entry_size(k, v) for k, v in self._items.items())

    def usage_bytes(self) -> int:
        """Bytes currently used, as counted against the quota."""
        with self._lock:
            return self._usage()

    # ------------------------------------------------------------------
    # JSON API (never raises)
    # ------------------------------------------------------------------

    def read(self, key: str, default: Any = MISSING) -> Any:
        """Return the parsed JSON value for *key*, or *default*.

        Absent keys, unparsable values and backend errors all yield
        *default*.
        """
        try:
            text = self.get_item(key)
        except BackendUnavailableError as exc:
            logger.warning("Failed to read %r from local storage: %s", key, exc)
            return default
        if text is None:
            return default
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            logger.warning("Failed to parse JSON from local storage key %r: %s", key, exc)
            return default

    def write(self, key: str, value: Any) -> bool:
        """Serialise *value* as JSON and store it.  Returns success."""
        try:
            text = json.dumps(value, ensure_ascii=False, allow_nan=False)
        except (TypeError, ValueError) as exc:
            logger.error("Cannot serialise value for local storage key %r: %s", key, exc)
            return False
        try:
            self.set_item(key, text)
        except QuotaExceededError as exc:
            logger.error("Local storage quota exceeded writing %r: %s", key, exc)
            return False
        except BackendUnavailableError as exc:
            logger.error("Failed to write %r to local storage: %s", key, exc)
            return False
        return True

    def remove(self, key: str) -> bool:
        """Delete *key*; returns True if it existed and was removed."""
        try:
            return self.remove_item(key)
        except BackendUnavailableError as exc:
            logger.error("Failed to remove local storage key %r: %s", key, exc)
            return False

    def __contains__(self, key: str) -> bool:
        try:
            return self.get_item(key) is not None
        except BackendUnavailableError:
            return False

    def __repr__(self) -> str:
        where = str(self.path) if self.path is not None else "memory"
        return f"LocalStore({where!r}, quota_bytes={self.quota_bytes})"
