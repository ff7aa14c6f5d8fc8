"""
tome_store/validator.py -- Structural validation and silent repair.

Every field of a character record is checked for the right container
kind and, for containers, every element is checked against its model in
:mod:`tome_store.models`.  Nothing here raises:

    - a field of the wrong kind is replaced by its empty value;
    - an element that cannot be repaired is dropped from its list (or
      removed from its mapping), leaving its neighbours untouched;
    - an element with merely wrong-typed sub-fields is repaired in place.

Each repair is logged at WARNING with the path of the offending value,
e.g. ``activeAssignments[2]``.

Usage::

    from tome_store.validator import validate_character_state_report

    report = validate_character_state_report(migrated)
    if report.was_repaired:
        print("repaired:", report.repaired_fields)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable

from pydantic import ValidationError

from tome_store import storage_keys as keys
from tome_store.models import (
    AtmosphericBuff,
    Book,
    Curse,
    ExternalCurriculum,
    Item,
    LenientModel,
    PassiveSlot,
    Quest,
    TemporaryBuff,
    validate_entity_map,
)
from tome_store.storage_keys import FieldKind
from tome_store.utils import deep_equal, is_number

logger = logging.getLogger(__name__)

VALID_DICE = ("d4", "d6", "d8", "d10", "d12", "d20")

# Form controls that must always hold a number, with their fallback.
NUMERIC_FORM_DEFAULTS: dict[str, str] = {
    "level": "1",
    "xp-current": "0",
    "inkDrops": "0",
    "paperScraps": "0",
    "smp": "0",
    "wearable-slots": "0",
    "non-wearable-slots": "0",
    "familiar-slots": "0",
}


# ------------------------------------------------------------------
# Element-level helpers
# ------------------------------------------------------------------

def _validate_model_list(value: Any, model: type[LenientModel], path: str) -> list:
    if not isinstance(value, list):
        logger.warning("Invalid %s: not a list, using empty list", path)
        return []
    result = []
    for index, element in enumerate(value):
        try:
            result.append(model.model_validate(element).to_json())
        except ValidationError as exc:
            logger.warning(
                "Dropping invalid element %s[%d]: %s", path, index, exc.errors()[0]["msg"]
            )
    return result


def _validate_string_list(value: Any, path: str, *, allow_blank: bool = False) -> list:
    if not isinstance(value, list):
        logger.warning("Invalid %s: not a list, using empty list", path)
        return []
    result = []
    for index, element in enumerate(value):
        if isinstance(element, str) and (allow_blank or element.strip()):
            result.append(element)
        else:
            logger.warning("Dropping invalid element %s[%d]: %r", path, index, element)
    return result


def _validate_number(value: Any, path: str) -> int | float:
    if is_number(value):
        return value
    logger.warning("Invalid %s: %r is not a number, using 0", path, value)
    return 0


def _validate_dice(value: Any, path: str) -> str:
    if isinstance(value, str) and value in VALID_DICE:
        return value
    logger.warning("Invalid %s: %r is not a dice selection, using d6", path, value)
    return "d6"


def _validate_atmospheric_buffs(value: Any, path: str) -> dict:
    if not isinstance(value, dict):
        logger.warning("Invalid %s: not a mapping, using empty mapping", path)
        return {}
    result = {}
    for name, buff in value.items():
        try:
            result[str(name)] = AtmosphericBuff.model_validate(buff).to_json()
        except ValidationError:
            logger.warning("Dropping invalid element %s[%r]", path, name)
    return result


def _validate_curriculum(value: Any, path: str) -> dict:
    try:
        return ExternalCurriculum.model_validate(value).to_json()
    except ValidationError:
        logger.warning("Invalid %s: not a mapping, using empty curriculum", path)
        return keys.empty_value(keys.EXTERNAL_CURRICULUM)


def _quests(value, path):
    return _validate_model_list(value, Quest, path)


def _items(value, path):
    return _validate_model_list(value, Item, path)


def _curses(value, path):
    return _validate_model_list(value, Curse, path)


def _passive_slots(value, path):
    return _validate_model_list(value, PassiveSlot, path)


# ------------------------------------------------------------------
# Field dispatch table
# ------------------------------------------------------------------

_FIELD_VALIDATORS: dict[str, Callable[[Any, str], Any]] = {
    keys.LEARNED_ABILITIES: _validate_string_list,
    keys.EQUIPPED_ITEMS: _items,
    keys.INVENTORY_ITEMS: _items,
    keys.ACTIVE_ASSIGNMENTS: _quests,
    keys.COMPLETED_QUESTS: _quests,
    keys.DISCARDED_QUESTS: _quests,
    keys.ATMOSPHERIC_BUFFS: _validate_atmospheric_buffs,
    keys.ACTIVE_CURSES: _curses,
    keys.COMPLETED_CURSES: _curses,
    keys.TEMPORARY_BUFFS: lambda v, p: _validate_model_list(v, TemporaryBuff, p),
    keys.BUFF_MONTH_COUNTER: _validate_number,
    keys.SELECTED_GENRES: _validate_string_list,
    keys.GENRE_DICE_SELECTION: _validate_dice,
    keys.SHELF_BOOK_COLORS: lambda v, p: _validate_string_list(v, p, allow_blank=True),
    keys.DUSTY_BLUEPRINTS: _validate_number,
    keys.COMPLETED_RESTORATION_PROJECTS: _validate_string_list,
    keys.COMPLETED_WINGS: _validate_string_list,
    keys.PASSIVE_ITEM_SLOTS: _passive_slots,
    keys.PASSIVE_FAMILIAR_SLOTS: _passive_slots,
    keys.CLAIMED_ROOM_REWARDS: _validate_string_list,
    keys.DUNGEON_COMPLETION_DRAWS_REDEEMED: _validate_number,
    keys.BOOKS: lambda v, p: validate_entity_map(v, Book, p),
    keys.EXTERNAL_CURRICULUM: _validate_curriculum,
}

_missing = set(keys.CHARACTER_STATE_KEYS) - set(_FIELD_VALIDATORS)
_unknown = set(_FIELD_VALIDATORS) - set(keys.CHARACTER_STATE_KEYS)
if _missing or _unknown:
    raise RuntimeError(
        f"Validator table out of step with storage_keys: "
        f"missing={sorted(_missing)} unknown={sorted(_unknown)}"
    )
del _missing, _unknown


def _matches_kind(value: Any, kind: FieldKind) -> bool:
    if kind is FieldKind.LIST:
        return isinstance(value, list)
    if kind is FieldKind.MAPPING:
        return isinstance(value, dict)
    if kind is FieldKind.NUMBER:
        return is_number(value)
    if kind is FieldKind.STRING:
        return isinstance(value, str)
    raise AssertionError(f"Unhandled field kind: {kind!r}")


def validate_field(name: str, value: Any) -> Any:
    """Validate a single record field.  Never raises."""
    spec = keys.get_field_spec(name)
    try:
        result = _FIELD_VALIDATORS[name](value, name)
    except Exception:
        logger.exception("Unexpected error validating %s; using empty value", name)
        return spec.empty_value()
    if not _matches_kind(result, spec.kind):
        logger.error("Validator for %s produced a %s; using empty value", name, type(result).__name__)
        return spec.empty_value()
    return result


# ------------------------------------------------------------------
# Record validation
# ------------------------------------------------------------------

@dataclass(frozen=True)
class ValidationReport:
    """A validated record plus the names of the fields that were changed."""

    record: dict[str, Any]
    repaired_fields: tuple[str, ...] = field(default_factory=tuple)

    @property
    def was_repaired(self) -> bool:
        return bool(self.repaired_fields)


def validate_character_state_report(state: Any) -> ValidationReport:
    """Validate *state* and report which fields needed repair.

    A field counts as repaired when it was missing from *state* or its
    validated value is not deep-equal to the input value.
    """
    if not isinstance(state, dict):
        logger.warning("Invalid character state: not a mapping, using empty state")
        state = {}

    record: dict[str, Any] = {}
    repaired: list[str] = []
    for name in keys.list_state_keys():
        if name not in state:
            record[name] = keys.empty_value(name)
            repaired.append(name)
            continue
        record[name] = validate_field(name, state[name])
        if not deep_equal(record[name], state[name]):
            repaired.append(name)
    return ValidationReport(record, tuple(repaired))


def validate_character_state(state: Any) -> dict[str, Any]:
    """Return a structurally valid copy of *state*.  Never raises."""
    return validate_character_state_report(state).record


# ------------------------------------------------------------------
# Form snapshot
# ------------------------------------------------------------------

def _is_numeric_text(text: str) -> bool:
    try:
        return math.isfinite(float(text.strip()))
    except ValueError:
        return False


def _number_to_text(value: int | float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def validate_form_data_safe(form_data: Any) -> dict[str, str]:
    """Return a clean ``{control id: string value}`` form snapshot.

    Strings are kept, finite numbers are stringified and everything else
    is dropped.  Controls that must hold a number fall back to their
    default when they do not.
    """
    if not isinstance(form_data, dict):
        return {}

    validated: dict[str, str] = {}
    for key, value in form_data.items():
        if not isinstance(key, str):
            continue
        if isinstance(value, str):
            validated[key] = value
        elif is_number(value):
            validated[key] = _number_to_text(value)

    for key, default in NUMERIC_FORM_DEFAULTS.items():
        if key in form_data and not _is_numeric_text(validated.get(key, "")):
            logger.warning("Form value %s=%r is not numeric; using %s", key, form_data[key], default)
            validated[key] = default
    return validated
