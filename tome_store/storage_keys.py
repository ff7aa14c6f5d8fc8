"""
tome_store/storage_keys.py -- Registry of every persisted character field.

The registry is the single place that knows which fields a character
record has, what container kind each one is, what its empty value looks
like and under which storage key it is written.  Everything here is
immutable: other modules iterate it but can never add or remove a tracked
field at runtime.

Usage::

    from tome_store import storage_keys as keys

    record = keys.empty_record()
    for name in keys.list_state_keys():
        print(name, keys.storage_key_for(name))
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable

# ------------------------------------------------------------------
# Non-record storage keys
# ------------------------------------------------------------------

CHARACTER_SHEET_FORM = "characterSheet"
SCHEMA_VERSION_KEY = "tomeOfSecrets_schemaVersion"
# Large keys whose newest value had to be written to the local store.
LOCAL_FALLBACK_KEY = "tomeOfSecrets_localFallbackKeys"

# ------------------------------------------------------------------
# Record field names
# ------------------------------------------------------------------

LEARNED_ABILITIES = "learnedAbilities"
EQUIPPED_ITEMS = "equippedItems"
INVENTORY_ITEMS = "inventoryItems"
ACTIVE_ASSIGNMENTS = "activeAssignments"
COMPLETED_QUESTS = "completedQuests"
DISCARDED_QUESTS = "discardedQuests"
ATMOSPHERIC_BUFFS = "atmosphericBuffs"
ACTIVE_CURSES = "activeCurses"
COMPLETED_CURSES = "completedCurses"
TEMPORARY_BUFFS = "temporaryBuffs"
BUFF_MONTH_COUNTER = "buffMonthCounter"
SELECTED_GENRES = "selectedGenres"
GENRE_DICE_SELECTION = "genreDiceSelection"
SHELF_BOOK_COLORS = "shelfBookColors"
# Library Restoration expansion
DUSTY_BLUEPRINTS = "dustyBlueprints"
COMPLETED_RESTORATION_PROJECTS = "completedRestorationProjects"
COMPLETED_WINGS = "completedWings"
PASSIVE_ITEM_SLOTS = "passiveItemSlots"
PASSIVE_FAMILIAR_SLOTS = "passiveFamiliarSlots"
# Dungeon room rewards
CLAIMED_ROOM_REWARDS = "claimedRoomRewards"
DUNGEON_COMPLETION_DRAWS_REDEEMED = "dungeonCompletionDrawsRedeemed"
# Book-first records (schema generation 5)
BOOKS = "books"
EXTERNAL_CURRICULUM = "externalCurriculum"

# Persisted as 'exchangeProgram' so that saves written before the feature
# was renamed keep loading.
EXTERNAL_CURRICULUM_STORAGE_KEY = "exchangeProgram"

QUEST_LIST_KEYS = (ACTIVE_ASSIGNMENTS, COMPLETED_QUESTS, DISCARDED_QUESTS)
ITEM_LIST_KEYS = (EQUIPPED_ITEMS, INVENTORY_ITEMS)


class FieldKind(str, Enum):
    """Container kind of a record field."""

    LIST = "list"
    MAPPING = "mapping"
    NUMBER = "number"
    STRING = "string"


@dataclass(frozen=True)
class FieldSpec:
    """Static description of one record field.

    ``factory`` builds a fresh empty value on every call so that records
    never share containers.
    """

    name: str
    kind: FieldKind
    factory: Callable[[], Any]
    storage_key: str = ""
    large: bool = False

    @property
    def key(self) -> str:
        """Storage key the field is persisted under."""
        return self.storage_key or self.name

    def empty_value(self) -> Any:
        return self.factory()


def _zero() -> int:
    return 0


def _default_dice() -> str:
    return "d6"


def _empty_curriculum() -> dict:
    return {"curriculums": {}}


# Ordered: the order here is the iteration order everywhere else.
FIELD_SPECS: tuple[FieldSpec, ...] = (
    FieldSpec(LEARNED_ABILITIES, FieldKind.LIST, list, large=True),
    FieldSpec(EQUIPPED_ITEMS, FieldKind.LIST, list, large=True),
    FieldSpec(INVENTORY_ITEMS, FieldKind.LIST, list, large=True),
    FieldSpec(ACTIVE_ASSIGNMENTS, FieldKind.LIST, list, large=True),
    FieldSpec(COMPLETED_QUESTS, FieldKind.LIST, list, large=True),
    FieldSpec(DISCARDED_QUESTS, FieldKind.LIST, list, large=True),
    FieldSpec(ATMOSPHERIC_BUFFS, FieldKind.MAPPING, dict, large=True),
    FieldSpec(ACTIVE_CURSES, FieldKind.LIST, list, large=True),
    FieldSpec(COMPLETED_CURSES, FieldKind.LIST, list, large=True),
    FieldSpec(TEMPORARY_BUFFS, FieldKind.LIST, list, large=True),
    FieldSpec(BUFF_MONTH_COUNTER, FieldKind.NUMBER, _zero, large=True),
    FieldSpec(SELECTED_GENRES, FieldKind.LIST, list),
    FieldSpec(GENRE_DICE_SELECTION, FieldKind.STRING, _default_dice),
    FieldSpec(SHELF_BOOK_COLORS, FieldKind.LIST, list),
    FieldSpec(DUSTY_BLUEPRINTS, FieldKind.NUMBER, _zero),
    FieldSpec(COMPLETED_RESTORATION_PROJECTS, FieldKind.LIST, list),
    FieldSpec(COMPLETED_WINGS, FieldKind.LIST, list),
    FieldSpec(PASSIVE_ITEM_SLOTS, FieldKind.LIST, list),
    FieldSpec(PASSIVE_FAMILIAR_SLOTS, FieldKind.LIST, list),
    FieldSpec(CLAIMED_ROOM_REWARDS, FieldKind.LIST, list),
    FieldSpec(DUNGEON_COMPLETION_DRAWS_REDEEMED, FieldKind.NUMBER, _zero),
    FieldSpec(BOOKS, FieldKind.MAPPING, dict, large=True),
    FieldSpec(
        EXTERNAL_CURRICULUM,
        FieldKind.MAPPING,
        _empty_curriculum,
        storage_key=EXTERNAL_CURRICULUM_STORAGE_KEY,
        large=True,
    ),
)

_SPECS_BY_NAME = MappingProxyType({spec.name: spec for spec in FIELD_SPECS})

CHARACTER_STATE_KEYS: tuple[str, ...] = tuple(spec.name for spec in FIELD_SPECS)

# Fields that grow without bound and therefore live in the bulk store.
LARGE_STATE_KEYS: frozenset[str] = frozenset(
    spec.name for spec in FIELD_SPECS if spec.large
)
LARGE_STORAGE_KEYS: frozenset[str] = frozenset(
    spec.key for spec in FIELD_SPECS if spec.large
)

# Legacy storage key -> current field name.
LEGACY_FIELD_NAMES = MappingProxyType({
    spec.storage_key: spec.name
    for spec in FIELD_SPECS
    if spec.storage_key and spec.storage_key != spec.name
})


# ------------------------------------------------------------------
# Accessors
# ------------------------------------------------------------------

def list_state_keys() -> tuple[str, ...]:
    """Return every record field name in stable order."""
    return CHARACTER_STATE_KEYS


def get_field_spec(name: str) -> FieldSpec:
    """Return the FieldSpec for *name*; raises KeyError for unknown fields."""
    return _SPECS_BY_NAME[name]


def is_state_key(name: str) -> bool:
    return name in _SPECS_BY_NAME


def storage_key_for(name: str) -> str:
    return _SPECS_BY_NAME[name].key


def empty_value(name: str) -> Any:
    """Return a fresh empty value for field *name*."""
    return _SPECS_BY_NAME[name].empty_value()


def empty_record() -> dict[str, Any]:
    """Return the canonical empty character record."""
    return {spec.name: spec.empty_value() for spec in FIELD_SPECS}
