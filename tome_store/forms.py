"""
tome_store/forms.py -- Character sheet form snapshots.

The character sheet's plain form controls (name, level, currency
counters, free-text background, ...) are persisted together as a single
``{control id: value}`` mapping under ``characterSheet``.  Any object
exposing an ``elements`` iterable of controls with ``id``, ``type`` and a
writable ``value`` works as a form handle; :class:`SheetForm` is the
package's own in-memory implementation.

Usage::

    from tome_store.forms import FormControl, SheetForm, snapshot_form

    form = SheetForm([FormControl("keeperName", "Ada"), FormControl("level", "3")])
    snapshot_form(form)     # {"keeperName": "Ada", "level": "3"}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

logger = logging.getLogger(__name__)

# Controls that never represent persisted state: quest-creation widgets and
# selectors that only mirror other state.
TRANSIENT_CONTROL_IDS = frozenset({
    "genre-quest-select",
    "side-quest-select",
    "dungeon-room-select",
    "dungeon-encounter-select",
    "dungeon-action-toggle",
    "restoration-wing-select",
    "restoration-project-select",
    "item-select",
    "ability-select",
    "xp-needed",
})
TRANSIENT_CONTROL_PREFIXES = ("new-quest-",)
BUTTON_TYPES = frozenset({"button", "submit"})


@dataclass
class FormControl:
    """One named form control."""

    id: str
    value: str = ""
    type: str = "text"


class SheetForm:
    """In-memory form handle: an ordered collection of controls."""

    def __init__(self, controls: Iterable[FormControl] = ()):
        self._controls: dict[str, FormControl] = {}
        for control in controls:
            self.add(control)

    def add(self, control: FormControl) -> FormControl:
        self._controls[control.id] = control
        return control

    @property
    def elements(self) -> list[FormControl]:
        return list(self._controls.values())

    def get(self, control_id: str) -> FormControl | None:
        return self._controls.get(control_id)


def should_persist_control(control: Any) -> bool:
    """True if *control* holds character data rather than UI state."""
    control_id = getattr(control, "id", None)
    if not control_id or not isinstance(control_id, str):
        return False
    if getattr(control, "type", None) in BUTTON_TYPES:
        return False
    if control_id.startswith(TRANSIENT_CONTROL_PREFIXES):
        return False
    return control_id not in TRANSIENT_CONTROL_IDS


def _find_control(form: Any, control_id: str):
    getter = getattr(form, "get", None)
    if callable(getter):
        return getter(control_id)
    for control in getattr(form, "elements", ()):
        if getattr(control, "id", None) == control_id:
            return control
    return None


def snapshot_form(form: Any) -> dict[str, str]:
    """Return ``{id: value}`` for every persistable control of *form*."""
    snapshot: dict[str, str] = {}
    for control in getattr(form, "elements", ()):
        if should_persist_control(control):
            value = getattr(control, "value", "")
            snapshot[control.id] = value if isinstance(value, str) else str(value)
    return snapshot


def apply_form_snapshot(form: Any, snapshot: dict[str, str]) -> list[str]:
    """Copy snapshot values onto matching controls.

    Controls without a snapshot entry, and snapshot entries without a
    control, are left alone.  Returns the ids that were applied.
    """
    applied: list[str] = []
    for control_id, value in snapshot.items():
        control = _find_control(form, control_id)
        if control is None:
            continue
        try:
            control.value = value
        except AttributeError:
            logger.warning("Form control %r has a read-only value; skipping", control_id)
            continue
        applied.append(control_id)
    return applied
