"""
tome_store/orchestrator.py -- Load and save the whole character record.

The orchestrator owns the single shared ``character_state`` dict.  UI
code holds a reference to it, mutates it freely between saves, and calls
:meth:`PersistenceOrchestrator.save_state` after each change.  The dict
is never rebound: :meth:`PersistenceOrchestrator.load_state` overwrites
its fields in place.

Load sequence:

    1. re-apply the stored form snapshot to the form (if one is given);
    2. read every field concurrently through HybridPersistence;
    3. migrate, then validate the assembled record;
    4. copy the result into ``character_state``;
    5. decide whether the record needs writing back (any field repaired,
       or schema-version marker missing or stale);
    6. write back: large fields always, everything else only if needed.

Per-field failures never abort a load or a save.  Whatever happens,
``character_state`` holds every field after ``load_state`` returns.

Usage::

    from tome_store.orchestrator import create_orchestrator

    orchestrator = create_orchestrator()
    result = await orchestrator.load_state(form)
    orchestrator.character_state["dustyBlueprints"] += 1
    await orchestrator.save_state(form)
    await orchestrator.aclose()
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from typing import Any

from tome_store import storage_keys as keys
from tome_store.backends.base import PersistenceError
from tome_store.backends.bulk_store import BulkStore
from tome_store.backends.local_store import LocalStore
from tome_store.config import StoreConfig
from tome_store.forms import apply_form_snapshot, snapshot_form
from tome_store.hybrid import HybridPersistence
from tome_store.migrator import SCHEMA_VERSION, migrate_state
from tome_store.validator import validate_character_state_report, validate_form_data_safe

logger = logging.getLogger(__name__)


class SaveError(PersistenceError):
    """One or more large fields could be written to neither store.

    The in-memory record is untouched; callers may retry the save.
    """

    def __init__(self, failed_fields):
        self.failed_fields = tuple(failed_fields)
        super().__init__(
            ", ".join(self.failed_fields),
            f"Changes could not be saved: {', '.join(self.failed_fields)}",
        )


@dataclass(frozen=True)
class LoadResult:
    """Outcome of one load_state call."""

    needs_save: bool
    repaired_fields: tuple[str, ...] = field(default_factory=tuple)
    failed_fields: tuple[str, ...] = field(default_factory=tuple)


class PersistenceOrchestrator:
    """Hydrates and persists the shared character record.

    Parameters
    ----------
    hybrid : HybridPersistence
        Per-field storage.
    local : LocalStore
        Synchronous store holding the form snapshot and the schema marker.
    character_state : dict, optional
        Record to hydrate in place.  A fresh empty record by default.
    """

    def __init__(
        self,
        hybrid: HybridPersistence,
        local: LocalStore,
        character_state: dict | None = None,
    ):
        self.hybrid = hybrid
        self.local = local
        self.character_state: dict[str, Any] = (
            keys.empty_record() if character_state is None else character_state
        )
        self.is_state_loaded = False
        self._load_task: asyncio.Task | None = None
        self._save_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    async def load_state(self, form: Any = None) -> LoadResult:
        """Hydrate ``character_state`` from storage.

        A call made while another load is still running waits for that
        load and returns its result; its *form* argument is ignored.
        """
        if self._load_task is None or self._load_task.done():
            self._load_task = asyncio.ensure_future(self._load(form))
        else:
            logger.debug("load_state already in progress; awaiting it")
        return await asyncio.shield(self._load_task)

    async def _load(self, form: Any) -> LoadResult:
        if form is not None:
            self._restore_form(form)

        names = keys.list_state_keys()
        empty = keys.empty_record()
        failed: list[str] = []

        try:
            values = await asyncio.gather(
                *(self._read_field(name, empty[name]) for name in names)
            )
            raw: dict[str, Any] = {}
            for name, (value, ok) in zip(names, values):
                raw[name] = value
                if not ok:
                    failed.append(name)

            migrated = migrate_state(raw)
            report = validate_character_state_report(migrated)
        except Exception:
            logger.exception("Loading character state failed; starting from an empty record")
            self._hydrate(keys.empty_record())
            return LoadResult(needs_save=False, failed_fields=tuple(names))

        self._hydrate(report.record)

        marker = self.local.read(keys.SCHEMA_VERSION_KEY, default=None)
        marker_current = marker == SCHEMA_VERSION and not isinstance(marker, bool)
        if not marker_current:
            logger.info("Schema marker is %r (current %d); rewriting record", marker, SCHEMA_VERSION)
        needs_save = not marker_current or report.was_repaired
        if report.was_repaired:
            logger.info("Repaired fields on load: %s", ", ".join(report.repaired_fields))

        to_write = [
            name for name in names
            if needs_save or keys.get_field_spec(name).large
        ]
        write_failures = await self._write_fields(to_write, self.character_state)
        failed.extend(n for n in write_failures if n not in failed)

        if needs_save and not write_failures:
            self._record_schema_version()

        return LoadResult(
            needs_save=needs_save,
            repaired_fields=report.repaired_fields,
            failed_fields=tuple(failed),
        )

    async def wait_for_load(self) -> None:
        """Wait for a running load_state call, if there is one."""
        if self._load_task is not None and not self._load_task.done():
            await asyncio.shield(self._load_task)

    def _restore_form(self, form: Any) -> None:
        raw = self.local.read(keys.CHARACTER_SHEET_FORM, default={})
        snapshot = validate_form_data_safe(raw)
        try:
            applied = apply_form_snapshot(form, snapshot)
        except Exception:
            logger.exception("Could not apply the stored form snapshot")
            return
        logger.debug("Restored %d form controls", len(applied))

    async def _read_field(self, name: str, default: Any) -> tuple[Any, bool]:
        try:
            value = await self.hybrid.get_state_key(keys.storage_key_for(name), default)
        except Exception:
            logger.exception("Reading %s failed; using its empty value", name)
            return default, False
        return value, True

    def _hydrate(self, record: dict[str, Any]) -> None:
        for name in keys.list_state_keys():
            self.character_state[name] = record[name]
        self.is_state_loaded = True

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    async def save_state(self, form: Any = None) -> tuple[str, ...]:
        """Persist the form snapshot and every field of ``character_state``.

        Returns the names of the keys that could not be written.

        Raises
        ------
        SaveError
            If a large field could be written to neither store.
        """
        await self.wait_for_load()
        if not self.is_state_loaded:
            logger.warning("Saving before load_state(); stored data will be overwritten")

        async with self._save_lock:
            failed: list[str] = []
            if form is not None:
                if not self.local.write(keys.CHARACTER_SHEET_FORM, snapshot_form(form)):
                    logger.error("Could not save the character sheet form")
                    failed.append(keys.CHARACTER_SHEET_FORM)

            names = []
            for name in keys.list_state_keys():
                if name in self.character_state:
                    names.append(name)
                else:
                    logger.warning("character_state has no %s; not saving it", name)

            record = copy.deepcopy({name: self.character_state[name] for name in names})
            write_failures = await self._write_fields(names, record)
            failed.extend(write_failures)

            if not failed:
                self._record_schema_version()

            fatal = [n for n in write_failures if keys.get_field_spec(n).large]
            if fatal:
                raise SaveError(fatal)
            return tuple(failed)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _write_field(self, name: str, value: Any) -> bool:
        try:
            await self.hybrid.set_state_key(keys.storage_key_for(name), value)
        except PersistenceError as exc:
            logger.error("%s", exc)
            return False
        except Exception:
            logger.exception("Unexpected error saving %s", name)
            return False
        return True

    async def _write_fields(self, names, record: dict[str, Any]) -> list[str]:
        results = await asyncio.gather(*(self._write_field(n, record[n]) for n in names))
        return [name for name, ok in zip(names, results) if not ok]

    def _record_schema_version(self) -> None:
        if not self.local.write(keys.SCHEMA_VERSION_KEY, SCHEMA_VERSION):
            logger.warning("Could not record schema version %d", SCHEMA_VERSION)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        await self.hybrid.bulk.close()

    async def __aenter__(self) -> PersistenceOrchestrator:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


def create_orchestrator(config: StoreConfig | None = None, character_state: dict | None = None) -> PersistenceOrchestrator:
    """Build the stores described by *config* and wire them together."""
    config = config or StoreConfig.from_env()
    local = LocalStore(
        config.local_path,
        quota_bytes=config.local_quota_bytes,
        backups_dir=config.backups_dir,
    )
    bulk = BulkStore(config.bulk_path, enabled=config.bulk_enabled)
    hybrid = HybridPersistence(local, bulk)
    logger.debug("Created stores: %r, %r", local, bulk)
    return PersistenceOrchestrator(hybrid, local, character_state)
