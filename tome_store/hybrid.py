"""
tome_store/hybrid.py -- One async get/set contract over both stores.

Callers address every value by its storage key and never need to know
which physical store holds it.  Large keys (the unbounded lists and the
book library) live in the bulk store; everything else lives in the local
store.

Before the bulk store existed, large keys were written to the local
store.  A read of a large key that misses the bulk store therefore looks
for that legacy copy and, when found, copies it into the bulk store.  The
legacy copy is left where it is; :meth:`HybridPersistence.cleanup_legacy_large_keys`
removes it later, and only once the bulk store demonstrably holds the same
value.

When the bulk store refuses a write, the value goes to the local store
instead and the key is listed under ``LOCAL_FALLBACK_KEY``.  Reads of a
listed key serve the local copy (it is newer than whatever the bulk store
still holds) and copy it back into the bulk store as soon as that works.

Usage::

    from tome_store.hybrid import HybridPersistence

    hybrid = HybridPersistence(local_store, bulk_store)
    quests = await hybrid.get_state_key("completedQuests", [])
    await hybrid.set_state_key("dustyBlueprints", 3)
"""

from __future__ import annotations

import logging
from typing import Any

from tome_store import storage_keys as keys
from tome_store.backends.base import MISSING, PersistenceError
from tome_store.backends.bulk_store import BulkStore
from tome_store.backends.local_store import LocalStore
from tome_store.utils import deep_equal

logger = logging.getLogger(__name__)


class HybridPersistence:
    """Routes each storage key to the local or the bulk store.

    Parameters
    ----------
    local : LocalStore
        Synchronous, quota-limited store.
    bulk : BulkStore
        Asynchronous large-capacity store.
    large_keys : iterable of str, optional
        Storage keys routed to *bulk*.  Defaults to
        ``storage_keys.LARGE_STORAGE_KEYS``.
    """

    def __init__(self, local: LocalStore, bulk: BulkStore, large_keys=None):
        self.local = local
        self.bulk = bulk
        self.large_keys = frozenset(
            keys.LARGE_STORAGE_KEYS if large_keys is None else large_keys
        )

    def is_large_key(self, key: str) -> bool:
        return key in self.large_keys

    # ------------------------------------------------------------------
    # Local fallback bookkeeping
    # ------------------------------------------------------------------

    def _fallback_keys(self) -> set[str]:
        value = self.local.read(keys.LOCAL_FALLBACK_KEY, default=[])
        if not isinstance(value, list):
            return set()
        return {k for k in value if isinstance(k, str)}

    def _mark_fallback(self, key: str, pending: bool) -> bool:
        """Add *key* to, or drop it from, the local-fallback list."""
        current = self._fallback_keys()
        if (key in current) == pending:
            return True
        if pending:
            current.add(key)
        else:
            current.discard(key)
        if not current:
            return self.local.remove(keys.LOCAL_FALLBACK_KEY)
        return self.local.write(keys.LOCAL_FALLBACK_KEY, sorted(current))

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get_state_key(self, key: str, default: Any = None) -> Any:
        """Return the value stored under *key*, or *default*.

        Never raises.  For a large key whose newest value sits in the local
        store (a legacy copy, or a write the bulk store refused) the value
        is also written into the bulk store before returning.
        """
        if not self.is_large_key(key):
            value = self.local.read(key)
            return default if value is MISSING else value

        if key in self._fallback_keys():
            newest = self.local.read(key)
            if newest is not MISSING:
                if await self.bulk.write(key, newest):
                    self._mark_fallback(key, False)
                    logger.info("Re-synced %r from local storage to the bulk store", key)
                else:
                    logger.warning("Bulk store still refuses %r; serving the local copy", key)
                return newest
            self._mark_fallback(key, False)

        value = await self.bulk.read(key)
        if value is not MISSING:
            return value

        legacy = self.local.read(key)
        if legacy is MISSING:
            return default

        if await self.bulk.write(key, legacy):
            logger.info("Promoted legacy %r from local storage to the bulk store", key)
        else:
            logger.warning("Could not promote legacy %r to the bulk store; will retry on next read", key)
        return legacy

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    async def set_state_key(self, key: str, value: Any) -> None:
        """Persist *value* under *key*.

        For large keys the local store is tried when the bulk store
        refuses, and the key is listed as newer locally so that later
        reads prefer that copy over the bulk store's older one.

        Raises
        ------
        PersistenceError
            If no store accepted the write, or a local fallback could not
            be recorded.
        """
        if not self.is_large_key(key):
            if not self.local.write(key, value):
                raise PersistenceError(key)
            return

        if await self.bulk.write(key, value):
            # An older local fallback copy must not shadow this value.
            if not self._mark_fallback(key, False) and not self.local.write(key, value):
                raise PersistenceError(
                    key, f"Could not persist {key!r}: an older local copy would shadow it."
                )
            return

        logger.warning("Bulk store refused %r; falling back to local storage", key)
        if not self.local.write(key, value):
            raise PersistenceError(
                key, f"Could not persist {key!r}: bulk store and local storage both failed."
            )
        if not self._mark_fallback(key, True):
            raise PersistenceError(
                key, f"Could not persist {key!r}: the local copy could not be marked as newest."
            )

    async def remove_state_key(self, key: str) -> bool:
        """Remove *key* from both stores.  Returns True if anything was removed."""
        removed_local = self.local.remove(key)
        removed_bulk = False
        if self.is_large_key(key):
            self._mark_fallback(key, False)
            removed_bulk = await self.bulk.delete(key)
        return removed_local or removed_bulk

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def cleanup_legacy_large_keys(self) -> list[str]:
        """Drop local copies of large keys the bulk store already holds.

        A local copy is removed only when the bulk store's value is equal
        to it and the copy is not a pending fallback write.  Returns the
        storage keys that were removed.
        """
        removed: list[str] = []
        pending = self._fallback_keys()
        for key in sorted(self.large_keys):
            legacy = self.local.read(key)
            if legacy is MISSING:
                continue
            if key in pending:
                logger.info("Keeping %r: newer than the bulk store copy", key)
                continue
            current = await self.bulk.read(key)
            if current is MISSING:
                logger.info("Keeping legacy %r: not yet in the bulk store", key)
                continue
            if not deep_equal(legacy, current):
                logger.info("Keeping legacy %r: differs from the bulk store copy", key)
                continue
            if self.local.remove(key):
                removed.append(key)
        if removed:
            logger.info("Removed %d legacy local copies: %s", len(removed), ", ".join(removed))
        return removed
