"""
tome_store -- State persistence and migration for the Tome of Secrets
character sheet.

Submodules:
    storage_keys  Registry of persisted fields, their kinds and defaults.
    backends      Local (quota-limited, sync) and bulk (SQLite, async) stores.
    hybrid        One async get/set contract routing keys to either store.
    migrator      Brings any historical save up to the current shape.
    models        Pydantic models for record elements.
    validator     Structural validation and silent repair.
    forms         Character sheet form snapshots.
    orchestrator  Load/save of the shared character record.
    data_export   JSON export/import of a whole character.
    config        StoreConfig (paths, quota, env overrides).
"""

from tome_store.migrator import SCHEMA_VERSION, migrate_state
from tome_store.orchestrator import (
    LoadResult,
    PersistenceOrchestrator,
    SaveError,
    create_orchestrator,
)
from tome_store.validator import validate_character_state, validate_form_data_safe

__all__ = [
    "SCHEMA_VERSION",
    "LoadResult",
    "PersistenceOrchestrator",
    "SaveError",
    "create_orchestrator",
    "migrate_state",
    "validate_character_state",
    "validate_form_data_safe",
]
