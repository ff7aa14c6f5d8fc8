"""
Tests for tome_store/migrator.py -- historical save shapes.

Validates each migration step, plus:
    - migrate_state(migrate_state(x)) == migrate_state(x)
    - the input is never mutated
    - the legacy exchangeProgram key round-trips to externalCurriculum
    - a failing step is skipped without aborting the pipeline
"""

import copy

import pytest

from tome_store import migrator
from tome_store import storage_keys as keys
from tome_store.migrator import (
    SCHEMA_VERSION,
    default_rewards,
    migrate_state,
    normalize_month,
    normalize_year,
)
from tome_store.utils import deep_equal


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _legacy_save():
    """A save written before quest rewards, dates and books existed."""
    return {
        "activeAssignments": [
            {"type": "♥ Organize the Stacks", "prompt": "Tidy", "book": "Dune",
             "bookAuthor": "Frank Herbert", "month": "3", "year": "25"},
            {"type": "⭐ Extra Credit", "prompt": "Any book", "book": ""},
        ],
        "completedQuests": [
            {"type": "♠ Dungeon Crawl", "isEncounter": True, "book": "dune ",
             "bookAuthor": "Frank Herbert", "dateCompleted": "2025-04-10T09:00:00Z",
             "month": "Aprl", "year": "2025"},
            {"type": "♣ Genre Quest", "book": "Piranesi", "bookAuthor": "Susanna Clarke",
             "pageCountRaw": 245.7},
        ],
        "discardedQuests": ["not a quest"],
        "inventoryItems": ["Librarian's Quill", {"name": "Lantern"}],
        "atmosphericBuffs": {"Candlelight": True, "Rainy Day": {"daysUsed": 2, "isActive": False}},
        "exchangeProgram": {"curriculums": {"c1": {"id": "c1", "name": "Book Club"}}},
        "selectedGenres": ["Fantasy"],
    }


RAW_INPUTS = [
    {},
    None,
    [],
    "garbage",
    _legacy_save(),
    {"activeAssignments": "oops", "books": [], "externalCurriculum": None},
    {"completedQuests": [{"book": "Emma", "bookAuthor": "Austen"}, {"book": "EMMA", "bookAuthor": "austen"}]},
    {"books": {"b1": {"id": "b1", "title": "Emma", "author": "Austen",
                      "coverUrl": "http://x/e.jpg", "pageCountRaw": 400,
                      "links": {"tomeQuestId": "q1"}}},
     "activeAssignments": [{"id": "q2", "book": "Emma", "bookAuthor": "Austen"}]},
]


# ---------------------------------------------------------------------------
# Pipeline-wide properties
# ---------------------------------------------------------------------------

class TestPipeline:
    def test_schema_version(self):
        assert SCHEMA_VERSION == 5

    @pytest.mark.parametrize("raw", RAW_INPUTS)
    def test_idempotent(self, raw):
        once = migrate_state(raw)
        twice = migrate_state(once)
        assert deep_equal(once, twice)

    @pytest.mark.parametrize("raw", RAW_INPUTS)
    def test_every_field_present(self, raw):
        result = migrate_state(raw)
        for name in keys.list_state_keys():
            assert name in result

    def test_input_not_mutated(self):
        raw = _legacy_save()
        before = copy.deepcopy(raw)
        migrate_state(raw)
        assert raw == before

    def test_non_mapping_is_empty_record(self):
        assert migrate_state(None) == keys.empty_record()
        assert migrate_state(["a"]) == keys.empty_record()

    def test_current_shape_passes_through(self, sample_quest, sample_book):
        record = keys.empty_record()
        record["activeAssignments"] = [sample_quest]
        record["books"] = {"book-0001": sample_book}
        assert deep_equal(migrate_state(record), record)

    def test_failing_step_is_skipped(self, monkeypatch, caplog):
        def explode(record):
            record["activeAssignments"] = "half-done"
            raise RuntimeError("boom")

        steps = (("explode", explode),) + migrator.MIGRATION_STEPS
        monkeypatch.setattr(migrator, "MIGRATION_STEPS", steps)
        result = migrate_state({"selectedGenres": ["Horror"]})
        assert result["selectedGenres"] == ["Horror"]
        assert result["activeAssignments"] == []
        assert "explode" in caplog.text


# ---------------------------------------------------------------------------
# Legacy key rename
# ---------------------------------------------------------------------------

class TestLegacyRename:
    def test_exchange_program_becomes_external_curriculum(self):
        value = {"curriculums": {"c1": {"id": "c1", "name": "Club", "categories": {}}}}
        result = migrate_state({"exchangeProgram": value})
        assert result["externalCurriculum"] == value
        assert "exchangeProgram" not in result

    def test_current_name_wins(self):
        result = migrate_state({
            "exchangeProgram": {"curriculums": {"old": {"id": "old"}}},
            "externalCurriculum": {"curriculums": {"new": {"id": "new"}}},
        })
        assert list(result["externalCurriculum"]["curriculums"]) == ["new"]
        assert "exchangeProgram" not in result


# ---------------------------------------------------------------------------
# Generation 1
# ---------------------------------------------------------------------------

class TestGeneration1:
    @pytest.mark.parametrize("quest, expected", [
        ({"type": "♥ Organize the Stacks"}, {"xp": 15, "inkDrops": 10, "paperScraps": 0}),
        ({"type": "⭐ Extra Credit"}, {"xp": 0, "inkDrops": 0, "paperScraps": 10}),
        ({"type": "♠ Dungeon Crawl", "isEncounter": True}, {"xp": 30, "inkDrops": 0, "paperScraps": 0}),
        ({"type": "♠ Dungeon Crawl"}, {"xp": 25, "inkDrops": 10, "paperScraps": 0}),
        ({"type": "X"}, {"xp": 25, "inkDrops": 10, "paperScraps": 0}),
    ])
    def test_default_rewards_by_type(self, quest, expected):
        rewards = default_rewards(quest)
        for name, value in expected.items():
            assert rewards[name] == value
        assert rewards["items"] == [] and rewards["modifiedBy"] == []

    def test_existing_rewards_untouched(self):
        quest = {"type": "X", "rewards": {"xp": 99}}
        result = migrate_state({"completedQuests": [quest]})
        assert result["completedQuests"][0]["rewards"] == {"xp": 99}

    def test_string_items_become_objects(self):
        result = migrate_state(_legacy_save())
        assert result["inventoryItems"] == [{"name": "Librarian's Quill"}, {"name": "Lantern"}]

    def test_boolean_atmospheric_buffs(self):
        result = migrate_state(_legacy_save())
        assert result["atmosphericBuffs"]["Candlelight"] == {"daysUsed": 0, "isActive": True}
        assert result["atmosphericBuffs"]["Rainy Day"] == {"daysUsed": 2, "isActive": False}

    def test_non_mapping_quests_left_for_validator(self):
        result = migrate_state(_legacy_save())
        assert result["discardedQuests"] == ["not a quest"]


# ---------------------------------------------------------------------------
# Generation 3: dates and periods
# ---------------------------------------------------------------------------

class TestGeneration3:
    @pytest.mark.parametrize("raw, expected", [
        ("3", "March"), ("03", "March"), (12, "December"), ("jan", "January"),
        ("Sept.", "September"), ("MAY", "May"), ("March", "March"),
        ("", ""), (None, ""), ("13", "13"), ("Aprl", "Aprl"),
    ])
    def test_normalize_month(self, raw, expected):
        assert normalize_month(raw) == expected

    @pytest.mark.parametrize("raw, expected", [
        ("25", "2025"), (25, "2025"), ("2024", "2024"), (2024, "2024"),
        ("", ""), (None, ""), ("soon", "soon"),
    ])
    def test_normalize_year(self, raw, expected):
        assert normalize_year(raw) == expected

    def test_quests_gain_date_fields(self):
        result = migrate_state({"activeAssignments": [{"type": "X"}]})
        quest = result["activeAssignments"][0]
        assert quest["dateAdded"] is None
        assert quest["dateCompleted"] is None

    def test_numeric_period_normalised(self):
        result = migrate_state(_legacy_save())
        quest = result["activeAssignments"][0]
        assert (quest["month"], quest["year"]) == ("March", "2025")

    def test_invalid_period_derived_from_date(self):
        result = migrate_state(_legacy_save())
        quest = result["completedQuests"][0]
        assert (quest["month"], quest["year"]) == ("April", "2025")

    def test_unassigned_quest_left_empty(self):
        result = migrate_state({"activeAssignments": [{"type": "X", "month": "", "year": ""}]})
        quest = result["activeAssignments"][0]
        assert (quest["month"], quest["year"]) == ("", "")


# ---------------------------------------------------------------------------
# Generation 4
# ---------------------------------------------------------------------------

class TestGeneration4:
    def test_gallery_fields_added(self):
        result = migrate_state({"activeAssignments": [{"type": "X", "pageCountRaw": "300"}]})
        quest = result["activeAssignments"][0]
        assert quest["coverUrl"] is None
        assert quest["pageCountRaw"] is None
        assert quest["pageCountEffective"] is None

    def test_existing_values_kept(self):
        quest = {"type": "X", "coverUrl": "http://c", "pageCountRaw": 200, "pageCountEffective": 180}
        result = migrate_state({"activeAssignments": [quest]})
        migrated = result["activeAssignments"][0]
        assert migrated["coverUrl"] == "http://c"
        assert migrated["pageCountRaw"] == 200
        assert migrated["pageCountEffective"] == 180


# ---------------------------------------------------------------------------
# Generation 5: books
# ---------------------------------------------------------------------------

class TestGeneration5:
    def test_every_quest_gets_an_id(self):
        result = migrate_state(_legacy_save())
        for list_key in ("activeAssignments", "completedQuests"):
            for quest in result[list_key]:
                assert isinstance(quest["id"], str) and quest["id"]

    def test_quests_without_book_data_are_unlinked(self):
        result = migrate_state(_legacy_save())
        extra_credit = result["activeAssignments"][1]
        assert extra_credit["bookId"] is None

    def test_books_deduplicated_by_title_and_author(self):
        result = migrate_state(_legacy_save())
        active_dune = result["activeAssignments"][0]
        completed_dune = result["completedQuests"][0]
        assert active_dune["bookId"] == completed_dune["bookId"]

        books = result["books"]
        assert len(books) == 2
        dune = books[active_dune["bookId"]]
        assert dune["title"] == "Dune"
        assert dune["status"] == "completed"
        assert dune["dateCompleted"] == "2025-04-10T09:00:00Z"
        assert dune["links"]["questIds"] == [active_dune["id"], completed_dune["id"]]

    def test_new_book_shape(self):
        result = migrate_state(_legacy_save())
        piranesi_quest = result["completedQuests"][1]
        book = result["books"][piranesi_quest["bookId"]]
        assert book["id"] == piranesi_quest["bookId"]
        assert book["author"] == "Susanna Clarke"
        assert book["pageCount"] == 245
        assert book["status"] == "completed"
        assert book["links"] == {"questIds": [piranesi_quest["id"]], "curriculumPromptIds": []}

    def test_new_book_falls_back_to_cover_and_page_count(self):
        quest = {"type": "X", "book": "Emma", "bookAuthor": "Austen",
                 "cover": "http://x/emma.jpg", "pageCount": 474.6}
        result = migrate_state({"activeAssignments": [quest]})
        migrated = result["activeAssignments"][0]
        book = result["books"][migrated["bookId"]]
        assert book["cover"] == "http://x/emma.jpg"
        assert book["pageCount"] == 474

    def test_gallery_fields_win_over_fallbacks(self):
        quest = {"type": "X", "book": "Emma", "coverUrl": "http://new", "cover": "http://old",
                 "pageCountRaw": 300, "pageCount": 100}
        result = migrate_state({"activeAssignments": [quest]})
        book = result["books"][result["activeAssignments"][0]["bookId"]]
        assert (book["cover"], book["pageCount"]) == ("http://new", 300)

    def test_links_to_existing_book(self):
        raw = RAW_INPUTS[-1]
        result = migrate_state(raw)
        quest = result["activeAssignments"][0]
        assert quest["bookId"] == "b1"
        assert list(result["books"]) == ["b1"]
        assert result["books"]["b1"]["links"]["questIds"] == ["q1", "q2"]

    def test_legacy_book_shape_restructured(self):
        result = migrate_state(RAW_INPUTS[-1])
        book = result["books"]["b1"]
        assert book["cover"] == "http://x/e.jpg"
        assert book["pageCount"] == 400
        assert "coverUrl" not in book and "pageCountRaw" not in book
        assert "tomeQuestId" not in book["links"]

    def test_quest_with_book_id_not_relinked(self, sample_quest):
        result = migrate_state({"activeAssignments": [sample_quest]})
        assert result["activeAssignments"][0]["bookId"] == "book-0001"
        assert result["books"] == {}

    def test_containers_introduced(self):
        result = migrate_state({"books": ["wrong"], "externalCurriculum": "wrong"})
        assert result["books"] == {}
        assert result["externalCurriculum"] == {"curriculums": {}}
