"""
Shared pytest fixtures for the tome_store test suite.

Provides:
    - local_store: a LocalStore backed by a temp JSON file
    - bulk_store: a BulkStore backed by a temp SQLite file (closed after use)
    - hybrid: HybridPersistence over the two stores above
    - orchestrator: PersistenceOrchestrator over ``hybrid``
    - broken_local / broken_bulk: stores that fail every operation
    - sample_quest, sample_book: well-formed record elements
"""

import sys
from pathlib import Path

import pytest
import pytest_asyncio

# ---------------------------------------------------------------------------
# Ensure tome_store/ is importable regardless of where pytest is invoked
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).resolve().parent.parent

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from tome_store.backends.bulk_store import BulkStore  # noqa: E402
from tome_store.backends.local_store import LocalStore  # noqa: E402
from tome_store.hybrid import HybridPersistence  # noqa: E402
from tome_store.orchestrator import PersistenceOrchestrator  # noqa: E402


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

@pytest.fixture
def local_path(tmp_path):
    return tmp_path / "local_storage.json"


@pytest.fixture
def local_store(local_path):
    """A LocalStore in a temp directory."""
    return LocalStore(local_path)


@pytest_asyncio.fixture
async def bulk_store(tmp_path):
    """A BulkStore in a temp directory, closed after the test."""
    store = BulkStore(tmp_path / "tome.db")
    yield store
    await store.close()


@pytest.fixture
def broken_local():
    """A LocalStore that fails every operation."""
    return LocalStore(None, available=False)


@pytest.fixture
def broken_bulk(tmp_path):
    """A BulkStore whose database path sits under a regular file."""
    blocker = tmp_path / "not-a-directory"
    blocker.write_text("x", encoding="utf-8")
    return BulkStore(blocker / "tome.db")


@pytest.fixture
def hybrid(local_store, bulk_store):
    return HybridPersistence(local_store, bulk_store)


@pytest.fixture
def orchestrator(hybrid, local_store):
    return PersistenceOrchestrator(hybrid, local_store)


# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------

@pytest.fixture
def sample_quest():
    """A quest already in the current (generation 5) shape."""
    return {
        "id": "quest-0001",
        "type": "♥ Organize the Stacks",
        "prompt": "Read a book with a blue cover",
        "book": "The Left Hand of Darkness",
        "bookAuthor": "Ursula K. Le Guin",
        "month": "March",
        "year": "2025",
        "notes": "",
        "status": "active",
        "bookId": "book-0001",
        "buffs": ["Long Read Bonus"],
        "rewards": {"xp": 15, "inkDrops": 10, "paperScraps": 0, "items": [], "modifiedBy": []},
        "isEncounter": False,
        "roomNumber": None,
        "encounterName": None,
        "dateAdded": "2025-03-02T10:00:00.000Z",
        "dateCompleted": None,
        "coverUrl": None,
        "pageCountRaw": 304,
        "pageCountEffective": 304,
    }


@pytest.fixture
def sample_book():
    """A Book record in the current shape."""
    return {
        "id": "book-0001",
        "title": "The Left Hand of Darkness",
        "author": "Ursula K. Le Guin",
        "cover": None,
        "pageCount": 304,
        "status": "reading",
        "dateAdded": "2025-03-02T10:00:00.000Z",
        "dateCompleted": None,
        "links": {"questIds": ["quest-0001"], "curriculumPromptIds": []},
    }
