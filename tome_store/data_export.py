"""
tome_store/data_export.py -- Portable backup files for a character.

An export document is a single JSON object::

    {
        "version": 5,
        "exportDate": "2026-01-31T12:00:00+00:00",
        "formData": {"keeperName": "Ada", "level": "3", ...},
        "characterState": {"completedQuests": [...], "exchangeProgram": {...}, ...}
    }

``characterState`` is keyed by storage key, so files written by any
version of the game (including the legacy ``exchangeProgram`` name) can be
imported.  Imported state goes through the same migrate-then-validate
path as a normal load before it replaces the in-memory record.

Usage::

    from tome_store.data_export import export_character_data, import_character_data

    await export_character_data(orchestrator, "tome-backup.json")
    result = await import_character_data(orchestrator, "tome-backup.json")
"""

from __future__ import annotations

import copy
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any

import jsonschema

from tome_store import storage_keys as keys
from tome_store.forms import apply_form_snapshot, snapshot_form
from tome_store.migrator import SCHEMA_VERSION, migrate_state
from tome_store.utils import now_iso, now_stamp, safe_write_json
from tome_store.validator import validate_character_state_report, validate_form_data_safe

logger = logging.getLogger(__name__)

EXPORT_SCHEMA: dict = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "Tome of Secrets character export",
    "type": "object",
    "required": ["formData", "characterState"],
    "properties": {
        "version": {"type": ["integer", "string", "null"]},
        "exportDate": {"type": ["string", "null"]},
        "formData": {"type": "object"},
        "characterState": {"type": "object"},
    },
}


class ImportFormatError(ValueError):
    """The import source is not a character export document."""


@dataclass(frozen=True)
class ImportResult:
    """What an import changed."""

    version: int | None
    newer_version: bool = False
    repaired_fields: tuple[str, ...] = field(default_factory=tuple)
    form_fields: int = 0
    backup_path: str | None = None
    failed_fields: tuple[str, ...] = field(default_factory=tuple)


# ------------------------------------------------------------------
# Export
# ------------------------------------------------------------------

def build_export(orchestrator, form_snapshot: dict[str, str] | None = None) -> dict[str, Any]:
    """Return an export document for the orchestrator's current record.

    *form_snapshot* defaults to the snapshot held in the local store.
    """
    if form_snapshot is None:
        form_snapshot = validate_form_data_safe(
            orchestrator.local.read(keys.CHARACTER_SHEET_FORM, default={})
        )
    state = orchestrator.character_state
    return {
        "version": SCHEMA_VERSION,
        "exportDate": now_iso(),
        "formData": dict(form_snapshot),
        "characterState": {
            keys.storage_key_for(name): copy.deepcopy(state[name])
            for name in keys.list_state_keys()
            if name in state
        },
    }


async def export_character_data(orchestrator, path, form: Any = None) -> dict[str, Any]:
    """Write an export document to *path*.

    Loads the record first if the orchestrator has not loaded it yet.

    Returns
    -------
    dict
        ``{"path", "exportDate", "version", "fields"}``.
    """
    if not orchestrator.is_state_loaded:
        await orchestrator.load_state()
    snapshot = snapshot_form(form) if form is not None else None
    document = build_export(orchestrator, snapshot)
    safe_write_json(os.path.abspath(str(path)), document)
    logger.info("Exported character data to %s", path)
    return {
        "path": str(path),
        "exportDate": document["exportDate"],
        "version": document["version"],
        "fields": len(document["characterState"]),
    }


# ------------------------------------------------------------------
# Import
# ------------------------------------------------------------------

def _humanize_error(error: jsonschema.ValidationError) -> str:
    path = " -> ".join(str(p) for p in error.absolute_path) if error.absolute_path else "(root)"
    if error.validator == "required":
        return f"Missing required field at {path}: {error.message}"
    if error.validator == "type":
        return f"Wrong data type at '{path}': {error.message}"
    return f"Issue at '{path}': {error.message}"


def _load_source(source: Any) -> Any:
    if isinstance(source, dict):
        return source
    try:
        with open(source, "r", encoding="utf-8") as fh:
            return json.load(fh)
    except FileNotFoundError as exc:
        raise ImportFormatError(f"Import file not found: {source}") from exc
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ImportFormatError(f"Import file is not valid JSON: {exc}") from exc
    except OSError as exc:
        raise ImportFormatError(f"Cannot read import file {source}: {exc}") from exc


def check_export_document(document: Any) -> None:
    """Raise ImportFormatError unless *document* has the export envelope."""
    validator = jsonschema.Draft202012Validator(EXPORT_SCHEMA)
    errors = sorted(validator.iter_errors(document), key=lambda e: list(e.absolute_path))
    if errors:
        details = "; ".join(_humanize_error(e) for e in errors)
        raise ImportFormatError(
            f"Invalid file format. The file must contain formData and characterState. {details}"
        )


def _parse_version(raw: Any) -> int | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        try:
            return int(raw.strip())
        except ValueError:
            return None
    return None


async def import_character_data(
    orchestrator,
    source,
    form: Any = None,
    backup_dir=None,
) -> ImportResult:
    """Replace the current character with the one in *source*.

    Parameters
    ----------
    orchestrator : PersistenceOrchestrator
        Owner of the record to overwrite (in place).
    source : str, pathlib.Path or dict
        Export file, or an already-parsed export document.
    form : form handle, optional
        Receives the imported form values.
    backup_dir : str or pathlib.Path, optional
        If given, the current character is exported here first.

    Raises
    ------
    ImportFormatError
        If *source* cannot be read or lacks the export envelope.  Nothing
        is changed in that case.
    SaveError
        If the imported record could not be persisted.
    """
    document = _load_source(source)
    check_export_document(document)
    # A load finishing after this point would overwrite the imported record.
    await orchestrator.wait_for_load()

    version = _parse_version(document.get("version"))
    newer = version is not None and version > SCHEMA_VERSION
    if newer:
        logger.warning(
            "Imported data is from a newer version (%d) than current (%d); "
            "some data may not load correctly",
            version, SCHEMA_VERSION,
        )

    backup_path = None
    if backup_dir is not None:
        backup_path = os.path.join(str(backup_dir), f"{now_stamp()}_pre_import.json")
        await export_character_data(orchestrator, backup_path)

    migrated = migrate_state(document["characterState"])
    report = validate_character_state_report(migrated)
    for name in keys.list_state_keys():
        orchestrator.character_state[name] = report.record[name]
    orchestrator.is_state_loaded = True

    form_data = validate_form_data_safe(document["formData"])
    if not orchestrator.local.write(keys.CHARACTER_SHEET_FORM, form_data):
        logger.error("Could not store imported form data")
    if form is not None:
        apply_form_snapshot(form, form_data)

    failed = await orchestrator.save_state()
    logger.info("Imported character data (version %s, %d form fields)", version, len(form_data))
    return ImportResult(
        version=version,
        newer_version=newer,
        repaired_fields=report.repaired_fields,
        form_fields=len(form_data),
        backup_path=backup_path,
        failed_fields=tuple(failed),
    )
