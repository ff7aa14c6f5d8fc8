"""
tome_store/migrator.py -- Bring any historical save up to the current shape.

Saves written by every earlier version of the game must keep loading.
Rather than trusting the stored schema-version marker, :func:`migrate_state`
runs every step on every load; each step inspects the data and only
touches what is still in an old shape, so running it again is a no-op.

Steps, in order:

    rename      ``exchangeProgram`` -> ``externalCurriculum``
    gen 1       default quest rewards; string items -> ``{"name": ...}``;
                boolean atmospheric buffs -> ``{"daysUsed", "isActive"}``
    gen 2       restoration fields (introduced by the final step)
    gen 3       quest ``dateAdded``/``dateCompleted``; month/year normalised
    gen 4       quest ``coverUrl``/``pageCountRaw``/``pageCountEffective``
    gen 5       ``books``/``externalCurriculum`` containers; quest ids;
                quests linked to deduplicated Book records
    fill        every registry field that is still missing

A step that fails unexpectedly is logged and skipped; the record passes
on to the next step exactly as it was before the failing one.

Usage::

    from tome_store.migrator import migrate_state

    record = migrate_state(raw_from_storage)
"""

from __future__ import annotations

import copy
import logging
import math
import re
import uuid
from datetime import datetime
from typing import Any, Callable

from tome_store import storage_keys as keys
from tome_store.utils import is_number, now_iso

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 5

# ------------------------------------------------------------------
# Reward defaults by quest type
# ------------------------------------------------------------------

ORGANIZE_THE_STACKS = "♥ Organize the Stacks"
EXTRA_CREDIT = "⭐ Extra Credit"
DUNGEON_CRAWL = "♠ Dungeon Crawl"

REWARDS_ORGANIZE_THE_STACKS = {"xp": 15, "inkDrops": 10}
REWARDS_EXTRA_CREDIT = {"paperScraps": 10}
REWARDS_ENCOUNTER = {"xp": 30}
REWARDS_DEFAULT_COMPLETION = {"xp": 25, "inkDrops": 10}

MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)

_YEAR_RE = re.compile(r"^\d{4}$")


def default_rewards(quest: dict) -> dict:
    """Rewards a pre-rewards quest would have earned, by quest type."""
    rewards = {"xp": 0, "inkDrops": 0, "paperScraps": 0, "items": [], "modifiedBy": []}
    quest_type = quest.get("type")
    if quest_type == ORGANIZE_THE_STACKS:
        rewards.update(REWARDS_ORGANIZE_THE_STACKS)
    elif quest_type == EXTRA_CREDIT:
        rewards.update(REWARDS_EXTRA_CREDIT)
    elif quest_type == DUNGEON_CRAWL and quest.get("isEncounter") is True:
        rewards.update(REWARDS_ENCOUNTER)
    else:
        rewards.update(REWARDS_DEFAULT_COMPLETION)
    return rewards


def _iter_quests(record: dict):
    """Yield every mapping quest in the three quest lists."""
    for list_key in keys.QUEST_LIST_KEYS:
        quests = record.get(list_key)
        if not isinstance(quests, list):
            continue
        for quest in quests:
            if isinstance(quest, dict):
                yield list_key, quest


# ------------------------------------------------------------------
# Month / year normalisation
# ------------------------------------------------------------------

def normalize_month(value: Any) -> str:
    """Map "3", "03", "mar", "Mar." or "march" to "March".

    Unrecognised text is returned stripped but otherwise unchanged.
    """
    if value is None or isinstance(value, bool):
        return ""
    if is_number(value):
        if float(value).is_integer() and 1 <= value <= 12:
            return MONTH_NAMES[int(value) - 1]
        return str(value)
    text = str(value).strip()
    if not text:
        return ""
    if text.isdigit():
        number = int(text)
        return MONTH_NAMES[number - 1] if 1 <= number <= 12 else text
    lowered = text.rstrip(".").lower()
    if len(lowered) >= 3:
        for name in MONTH_NAMES:
            if name.lower().startswith(lowered):
                return name
    return text


def normalize_year(value: Any) -> str:
    """Map 25 or "25" to "2025"; four-digit years pass through."""
    if value is None or isinstance(value, bool):
        return ""
    if is_number(value) and float(value).is_integer():
        value = int(value)
    text = str(value).strip()
    if _YEAR_RE.match(text):
        return text
    if text.isdigit():
        number = int(text)
        if number < 100:
            return str(2000 + number)
        if 1000 <= number < 10000:
            return str(number)
    return text


def _parse_date(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _normalize_period(quest: dict) -> None:
    month_raw, year_raw = quest.get("month"), quest.get("year")
    month = normalize_month(month_raw)
    year = normalize_year(year_raw)
    if not month and not year:
        # Unassigned quest (drawn but not filled in yet).
        return

    if month not in MONTH_NAMES or not _YEAR_RE.match(year):
        when = _parse_date(quest.get("dateCompleted")) or _parse_date(quest.get("dateAdded"))
        if when is not None:
            month, year = MONTH_NAMES[when.month - 1], str(when.year)
        else:
            logger.debug("Quest period %r/%r could not be normalised", month_raw, year_raw)

    quest["month"] = month
    quest["year"] = year


# ------------------------------------------------------------------
# Steps
# ------------------------------------------------------------------

def _rename_legacy_keys(record: dict) -> dict:
    for legacy, current in keys.LEGACY_FIELD_NAMES.items():
        if legacy not in record:
            continue
        legacy_value = record.pop(legacy)
        if current not in record:
            record[current] = legacy_value
    return record


def _generation_1(record: dict) -> dict:
    for _, quest in _iter_quests(record):
        if not isinstance(quest.get("rewards"), dict):
            quest["rewards"] = default_rewards(quest)

    for list_key in keys.ITEM_LIST_KEYS:
        items = record.get(list_key)
        if isinstance(items, list):
            record[list_key] = [
                {"name": item} if isinstance(item, str) else item for item in items
            ]

    buffs = record.get(keys.ATMOSPHERIC_BUFFS)
    if isinstance(buffs, dict):
        for name, buff in list(buffs.items()):
            if isinstance(buff, bool):
                buffs[name] = {"daysUsed": 0, "isActive": buff}
    return record


def _generation_3(record: dict) -> dict:
    for _, quest in _iter_quests(record):
        quest.setdefault("dateAdded", None)
        quest.setdefault("dateCompleted", None)
        _normalize_period(quest)
    return record


def _generation_4(record: dict) -> dict:
    for _, quest in _iter_quests(record):
        if not isinstance(quest.get("coverUrl"), str):
            quest["coverUrl"] = None
        for name in ("pageCountRaw", "pageCountEffective"):
            if not is_number(quest.get(name)):
                quest[name] = None
    return record


def _title_author_key(title: Any, author: Any) -> str:
    title = title if isinstance(title, str) else ""
    author = author if isinstance(author, str) else ""
    return f"{title.strip().lower()}|{author.strip().lower()}"


def _has_book_data(quest: dict) -> bool:
    return bool(
        quest.get("book")
        or quest.get("bookAuthor")
        or quest.get("coverUrl") is not None
        or is_number(quest.get("pageCountRaw"))
        or is_number(quest.get("pageCountEffective"))
    )


def _restructure_legacy_book(book: dict) -> None:
    if "coverUrl" in book:
        cover = book.pop("coverUrl")
        book.setdefault("cover", cover)
    if "pageCountRaw" in book:
        raw = book.pop("pageCountRaw")
        book.setdefault("pageCount", raw)
    links = book.get("links")
    if isinstance(links, dict) and "tomeQuestId" in links:
        quest_id = links.pop("tomeQuestId")
        quest_ids = links.get("questIds")
        if not isinstance(quest_ids, list):
            quest_ids = links["questIds"] = []
        if isinstance(quest_id, str) and quest_id and quest_id not in quest_ids:
            quest_ids.append(quest_id)
        links.setdefault("curriculumPromptIds", [])


def _book_from_quest(book_id: str, quest: dict, completed: bool, now: str) -> dict:
    page_count = quest.get("pageCountRaw")
    if not is_number(page_count):
        page_count = quest.get("pageCount")
    cover = quest.get("coverUrl")
    if not isinstance(cover, str):
        cover = quest.get("cover")
    return {
        "id": book_id,
        "title": quest.get("book") if isinstance(quest.get("book"), str) else "",
        "author": quest.get("bookAuthor") if isinstance(quest.get("bookAuthor"), str) else "",
        "cover": cover if isinstance(cover, str) else None,
        "pageCount": max(0, math.floor(page_count)) if is_number(page_count) else None,
        "status": "completed" if completed else "reading",
        "dateAdded": quest.get("dateAdded") if isinstance(quest.get("dateAdded"), str) else now,
        "dateCompleted": (
            (quest.get("dateCompleted") if isinstance(quest.get("dateCompleted"), str) else now)
            if completed else None
        ),
        "links": {"questIds": [quest["id"]], "curriculumPromptIds": []},
    }


def _generation_5(record: dict) -> dict:
    if not isinstance(record.get(keys.BOOKS), dict):
        record[keys.BOOKS] = {}
    if not isinstance(record.get(keys.EXTERNAL_CURRICULUM), dict):
        record[keys.EXTERNAL_CURRICULUM] = keys.empty_value(keys.EXTERNAL_CURRICULUM)

    books: dict = record[keys.BOOKS]
    by_title_author: dict[str, str] = {}
    for book_id, book in books.items():
        if not isinstance(book, dict):
            continue
        _restructure_legacy_book(book)
        by_title_author.setdefault(_title_author_key(book.get("title"), book.get("author")), book_id)

    now = now_iso()
    for list_key, quest in _iter_quests(record):
        if not (isinstance(quest.get("id"), str) and quest["id"]):
            quest["id"] = str(uuid.uuid4())
        if quest.get("bookId"):
            continue
        quest["bookId"] = None
        if not _has_book_data(quest):
            continue

        completed = list_key == keys.COMPLETED_QUESTS
        ta_key = _title_author_key(quest.get("book"), quest.get("bookAuthor"))
        book_id = by_title_author.get(ta_key)
        if book_id is not None:
            book = books[book_id]
            links = book.setdefault("links", {"questIds": [], "curriculumPromptIds": []})
            if isinstance(links, dict):
                quest_ids = links.setdefault("questIds", [])
                if isinstance(quest_ids, list) and quest["id"] not in quest_ids:
                    quest_ids.append(quest["id"])
            if completed:
                book["status"] = "completed"
                if not isinstance(book.get("dateCompleted"), str):
                    book["dateCompleted"] = (
                        quest["dateCompleted"] if isinstance(quest.get("dateCompleted"), str) else now
                    )
        else:
            book_id = str(uuid.uuid4())
            books[book_id] = _book_from_quest(book_id, quest, completed, now)
            by_title_author[ta_key] = book_id
        quest["bookId"] = book_id
    return record


def _fill_missing_fields(record: dict) -> dict:
    for name in keys.list_state_keys():
        if name not in record:
            record[name] = keys.empty_value(name)
    return record


MIGRATION_STEPS: tuple[tuple[str, Callable[[dict], dict]], ...] = (
    ("rename legacy keys", _rename_legacy_keys),
    ("generation 1", _generation_1),
    ("generation 3", _generation_3),
    ("generation 4", _generation_4),
    ("generation 5", _generation_5),
    ("introduce missing fields", _fill_missing_fields),
)


def migrate_state(state: Any) -> dict[str, Any]:
    """Return *state* converted to the current record shape.

    Never raises and never mutates *state*.  Non-mapping input is treated
    as an empty record.
    """
    if not isinstance(state, dict):
        if state is not None:
            logger.warning("Stored state is a %s, not a mapping; starting empty", type(state).__name__)
        state = {}

    record = state
    for name, step in MIGRATION_STEPS:
        try:
            record = step(copy.deepcopy(record))
        except Exception:
            logger.exception("Migration step %r failed; skipping it", name)
    if record is state:
        record = copy.deepcopy(state)
    return record
