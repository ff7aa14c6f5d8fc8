"""
tome_store/models.py -- Pydantic v2 models for record elements.

One model per element shape found inside a character record (quests,
items, curses, buffs, passive slots, books and the external curriculum
tree).  The models are deliberately lenient:

    - A field holding the wrong primitive kind is replaced by its default
      instead of failing validation.
    - Unknown keys are kept (``extra='allow'``) so that data written by a
      newer version of the game survives a round trip.
    - Only a missing *identity* field (an item's name, a book's id, ...)
      or a non-mapping element fails validation.  The validator drops
      such elements.

Usage::

    from tome_store.models import Quest

    quest = Quest.model_validate({"type": "♠ Dungeon Crawl", "rewards": None})
    quest.model_dump()["rewards"]   # zeroed Rewards
"""

from __future__ import annotations

import logging
import math
from typing import Annotated, Any, Literal, Optional

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationError,
    model_validator,
)

from tome_store.utils import is_number

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Lenient field types
# ------------------------------------------------------------------

def _str_or(default):
    return lambda v: v if isinstance(v, str) else default


def _optional_str(v):
    return v if isinstance(v, str) else None


def _non_negative(v):
    return max(0, v) if is_number(v) else 0


def _non_negative_int(v):
    return max(0, math.floor(v)) if is_number(v) else 0


def _optional_number(v):
    return v if is_number(v) else None


def _optional_non_negative_int(v):
    return max(0, math.floor(v)) if is_number(v) else None


def _bool_or_false(v):
    return v if isinstance(v, bool) else False


def _strings(v):
    if not isinstance(v, list):
        return []
    return [s for s in v if isinstance(s, str)]


def _mapping(v):
    return v if isinstance(v, dict) else {}


def _room_number(v):
    if isinstance(v, bool) or not v:
        return None
    return v if isinstance(v, (str, int, float)) else None


def _trimmed(v):
    return v.strip() if isinstance(v, str) else v


Str = Annotated[str, BeforeValidator(_str_or(""))]
OptStr = Annotated[Optional[str], BeforeValidator(_optional_str)]
OptNumber = Annotated[Optional[float | int], BeforeValidator(_optional_number)]
NonNegNumber = Annotated[float | int, BeforeValidator(_non_negative)]
NonNegInt = Annotated[int, BeforeValidator(_non_negative_int)]
OptNonNegInt = Annotated[Optional[int], BeforeValidator(_optional_non_negative_int)]
Flag = Annotated[bool, BeforeValidator(_bool_or_false)]
StrList = Annotated[list[str], BeforeValidator(_strings)]
RoomNumber = Annotated[Any, BeforeValidator(_room_number)]
TrimmedStr = Annotated[str, BeforeValidator(_trimmed)]


def _require_identity(data: Any, field: str) -> None:
    """Raise ValueError unless *data* is a mapping with a non-blank *field*."""
    if not isinstance(data, dict):
        raise ValueError("element is not a mapping")
    value = data.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"missing or blank {field!r}")


class LenientModel(BaseModel):
    """Base for every record element: keeps unknown keys."""

    model_config = ConfigDict(extra="allow")

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="python")


# ------------------------------------------------------------------
# Quests
# ------------------------------------------------------------------

class Rewards(LenientModel):
    xp: NonNegNumber = 0
    inkDrops: NonNegNumber = 0
    paperScraps: NonNegNumber = 0
    items: StrList = Field(default_factory=list)
    modifiedBy: StrList = Field(default_factory=list)


def _rewards(v):
    return v if isinstance(v, (dict, Rewards)) else {}


class Quest(LenientModel):
    """A quest card in one of the three quest lists.

    A quest has no identity field of its own: any mapping is repairable.
    """

    id: OptStr = None
    type: Str = ""
    prompt: Str = ""
    book: Str = ""
    bookAuthor: Str = ""
    month: Str = ""
    year: Str = ""
    notes: Str = ""
    status: Annotated[str, BeforeValidator(_str_or("active"))] = "active"
    bookId: OptStr = None
    buffs: StrList = Field(default_factory=list)
    rewards: Annotated[Rewards, BeforeValidator(_rewards)] = Field(default_factory=Rewards)
    isEncounter: Flag = False
    roomNumber: RoomNumber = None
    encounterName: OptStr = None
    dateAdded: OptStr = None
    dateCompleted: OptStr = None
    coverUrl: OptStr = None
    pageCountRaw: OptNumber = None
    pageCountEffective: OptNumber = None

    @model_validator(mode="before")
    @classmethod
    def _must_be_mapping(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            raise ValueError("quest is not a mapping")
        return data


# ------------------------------------------------------------------
# Inventory, curses and buffs
# ------------------------------------------------------------------

class Item(LenientModel):
    name: TrimmedStr
    type: Str = ""
    img: Str = ""
    bonus: Str = ""

    @model_validator(mode="before")
    @classmethod
    def _has_name(cls, data: Any) -> Any:
        _require_identity(data, "name")
        return data


class Curse(LenientModel):
    name: TrimmedStr
    requirement: Str = ""
    book: Str = ""

    @model_validator(mode="before")
    @classmethod
    def _has_name(cls, data: Any) -> Any:
        _require_identity(data, "name")
        return data


class TemporaryBuff(LenientModel):
    name: TrimmedStr
    description: Str = ""
    duration: Annotated[str, BeforeValidator(_str_or("two-months"))] = "two-months"
    monthsRemaining: NonNegInt = 0
    status: Annotated[str, BeforeValidator(_str_or("active"))] = "active"

    @model_validator(mode="before")
    @classmethod
    def _has_name(cls, data: Any) -> Any:
        _require_identity(data, "name")
        return data


class AtmosphericBuff(LenientModel):
    daysUsed: NonNegInt = 0
    isActive: Flag = False

    @model_validator(mode="before")
    @classmethod
    def _must_be_mapping(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            raise ValueError("atmospheric buff is not a mapping")
        return data


class PassiveSlot(LenientModel):
    """A Library Restoration display slot for an item or familiar."""

    slotId: TrimmedStr
    itemName: OptStr = None
    unlockedFrom: OptStr = None

    @model_validator(mode="before")
    @classmethod
    def _has_slot_id(cls, data: Any) -> Any:
        _require_identity(data, "slotId")
        return data


# ------------------------------------------------------------------
# Books and the external curriculum
# ------------------------------------------------------------------

def validate_entity_map(value: Any, model: type[LenientModel], path: str) -> dict[str, Any]:
    """Validate a ``{id: entity}`` mapping, dropping entries that fail.

    An entry whose ``id`` is missing takes its id from its mapping key.
    Returns plain dicts.
    """
    if not isinstance(value, dict):
        if value is not None:
            logger.warning("%s is not a mapping; using an empty mapping", path)
        return {}
    result: dict[str, Any] = {}
    for key, entry in value.items():
        if isinstance(entry, dict) and not (isinstance(entry.get("id"), str) and entry["id"].strip()):
            entry = {**entry, "id": str(key)}
        try:
            result[str(key)] = model.model_validate(entry).to_json()
        except ValidationError as exc:
            logger.warning("Dropping invalid entry %s[%r]: %s", path, key, exc.errors()[0]["msg"])
    return result


class BookLinks(LenientModel):
    questIds: StrList = Field(default_factory=list)
    curriculumPromptIds: StrList = Field(default_factory=list)


def _book_status(v):
    return v if v in ("reading", "completed") else "reading"


def _links(v):
    return v if isinstance(v, (dict, BookLinks)) else {}


class Book(LenientModel):
    """A book in the player's library, referenced by quests and prompts."""

    id: TrimmedStr
    title: Str = ""
    author: Str = ""
    cover: OptStr = None
    pageCount: OptNonNegInt = None
    status: Annotated[Literal["reading", "completed"], BeforeValidator(_book_status)] = "reading"
    dateAdded: OptStr = None
    dateCompleted: OptStr = None
    links: Annotated[BookLinks, BeforeValidator(_links)] = Field(default_factory=BookLinks)

    @model_validator(mode="before")
    @classmethod
    def _has_id(cls, data: Any) -> Any:
        _require_identity(data, "id")
        return data


class Prompt(LenientModel):
    id: TrimmedStr
    text: Str = ""
    bookId: OptStr = None
    completedAt: OptStr = None

    @model_validator(mode="before")
    @classmethod
    def _has_id(cls, data: Any) -> Any:
        _require_identity(data, "id")
        return data


class Category(LenientModel):
    id: TrimmedStr
    name: Str = ""
    prompts: Annotated[
        dict[str, Prompt],
        BeforeValidator(lambda v: validate_entity_map(v, Prompt, "prompts")),
    ] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _has_id(cls, data: Any) -> Any:
        _require_identity(data, "id")
        return data


class Curriculum(LenientModel):
    id: TrimmedStr
    name: Str = ""
    categories: Annotated[
        dict[str, Category],
        BeforeValidator(lambda v: validate_entity_map(v, Category, "categories")),
    ] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _has_id(cls, data: Any) -> Any:
        _require_identity(data, "id")
        return data


class ExternalCurriculum(LenientModel):
    """Root of the external (book club / reading challenge) curriculum tree."""

    curriculums: Annotated[
        dict[str, Curriculum],
        BeforeValidator(lambda v: validate_entity_map(v, Curriculum, "externalCurriculum.curriculums")),
    ] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _must_be_mapping(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            raise ValueError("external curriculum is not a mapping")
        return data
