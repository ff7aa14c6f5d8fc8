"""
Tests for tome_store/backends -- LocalStore and BulkStore.

Validates:
    - JSON round trips and the MISSING sentinel
    - local quota accounting, including another process sharing the file
    - corrupt files and values read as absence, corrupt files backed up
    - disabled / unusable stores fail gracefully
    - bulk store persistence across connections
"""

import asyncio
import json
import sqlite3

import pytest

from tome_store.backends.base import (
    MISSING,
    BackendUnavailableError,
    PersistenceError,
    QuotaExceededError,
    StorageError,
)
from tome_store.backends.bulk_store import BulkStore
from tome_store.backends.local_store import LocalStore


class TestMissingSentinel:
    def test_singleton_and_falsy(self):
        import copy

        assert not MISSING
        assert copy.deepcopy(MISSING) is MISSING
        assert repr(MISSING) == "MISSING"

    def test_error_hierarchy(self):
        assert issubclass(QuotaExceededError, StorageError)
        assert issubclass(BackendUnavailableError, StorageError)
        err = PersistenceError("books")
        assert err.key == "books"
        assert "books" in str(err)


# ---------------------------------------------------------------------------
# LocalStore
# ---------------------------------------------------------------------------

class TestLocalStoreBasics:
    def test_round_trip(self, local_store):
        assert local_store.write("selectedGenres", ["Mystery", "Fantasy"])
        assert local_store.read("selectedGenres") == ["Mystery", "Fantasy"]

    def test_missing_key(self, local_store):
        assert local_store.read("nothing") is MISSING
        assert local_store.read("nothing", default=7) == 7

    def test_persists_to_file(self, local_store, local_path):
        local_store.write("dustyBlueprints", 3)
        on_disk = json.loads(local_path.read_text(encoding="utf-8"))
        assert on_disk == {"dustyBlueprints": "3"}
        assert LocalStore(local_path).read("dustyBlueprints") == 3

    def test_unparsable_value_reads_as_absent(self, local_store):
        local_store.set_item("broken", "{not json")
        assert local_store.read("broken", default="fallback") == "fallback"

    def test_unserialisable_value_is_refused(self, local_store):
        assert local_store.write("bad", {"x": object()}) is False
        assert local_store.write("nan", float("nan")) is False
        assert local_store.read("bad") is MISSING

    def test_remove_and_keys(self, local_store):
        local_store.write("a", 1)
        local_store.write("b", 2)
        assert sorted(local_store.keys()) == ["a", "b"]
        assert local_store.remove("a") is True
        assert local_store.remove("a") is False
        assert local_store.keys() == ["b"]
        assert "b" in local_store
        assert "a" not in local_store

    def test_in_memory_store(self):
        store = LocalStore(None)
        assert store.write("k", {"v": 1})
        assert store.read("k") == {"v": 1}


class TestLocalStoreQuota:
    def test_write_over_quota_fails(self, local_path):
        store = LocalStore(local_path, quota_bytes=100)
        assert store.write("big", "x" * 60) is False
        assert store.read("big") is MISSING
        with pytest.raises(QuotaExceededError):
            store.set_item("big", "x" * 60)

    def test_usage_counts_two_bytes_per_char(self, local_path):
        store = LocalStore(local_path)
        store.set_item("ab", "cde")
        assert store.usage_bytes() == 10

    def test_replacing_a_value_does_not_double_count(self, local_path):
        store = LocalStore(local_path, quota_bytes=100)
        assert store.write("a", "x" * 40)
        assert store.write("a", "y" * 40)
        assert store.read("a") == "y" * 40

    def test_other_process_counts_against_quota(self, local_path):
        first = LocalStore(local_path, quota_bytes=100)
        second = LocalStore(local_path, quota_bytes=100)
        assert first.write("a", "x" * 20)
        assert second.write("b", "x" * 20)
        # Both entries now use 92 of 100 bytes.
        assert second.write("c", "x" * 5) is False
        assert first.read("b") == "x" * 20

    def test_unchanged_file_is_not_reparsed(self, local_store, monkeypatch):
        local_store.write("a", 1)
        parses = []
        real_load = json.load

        def counting_load(fh):
            parses.append(fh.name)
            return real_load(fh)

        monkeypatch.setattr(json, "load", counting_load)
        for _ in range(5):
            assert local_store.read("a") == 1
        assert local_store.write("b", 2)
        assert parses == []

    def test_file_removed_by_another_process(self, local_store, local_path):
        local_store.write("a", 1)
        local_path.unlink()
        assert local_store.read("a") is MISSING
        assert local_store.keys() == []


class TestLocalStoreFailures:
    def test_corrupt_file_read_as_empty_and_backed_up(self, tmp_path, local_path):
        local_path.write_text("garbage{", encoding="utf-8")
        backups = tmp_path / "backups"
        store = LocalStore(local_path, backups_dir=backups)
        assert store.read("anything") is MISSING
        assert store.write("k", 1)
        saved = list(backups.iterdir())
        assert len(saved) == 1
        assert saved[0].name.endswith(".corrupt")
        assert saved[0].read_text(encoding="utf-8") == "garbage{"
        assert json.loads(local_path.read_text(encoding="utf-8")) == {"k": "1"}

    def test_non_object_file_read_as_empty(self, local_path):
        local_path.write_text("[1, 2, 3]", encoding="utf-8")
        store = LocalStore(local_path)
        assert store.keys() == []

    def test_disabled_store(self, broken_local):
        assert broken_local.read("k", default=None) is None
        assert broken_local.write("k", 1) is False
        assert broken_local.remove("k") is False
        assert broken_local.keys() == []
        with pytest.raises(BackendUnavailableError):
            broken_local.get_item("k")

    def test_path_is_a_directory(self, tmp_path):
        store = LocalStore(tmp_path)
        assert store.read("k", default="d") == "d"
        assert store.write("k", 1) is False


# ---------------------------------------------------------------------------
# BulkStore
# ---------------------------------------------------------------------------

class TestBulkStore:
    @pytest.mark.asyncio
    async def test_round_trip(self, bulk_store):
        quests = [{"type": "♠ Dungeon Crawl", "rewards": {"xp": 30}}]
        assert await bulk_store.write("completedQuests", quests)
        assert await bulk_store.read("completedQuests") == quests

    @pytest.mark.asyncio
    async def test_missing_key(self, bulk_store):
        assert await bulk_store.read("nothing") is MISSING
        assert await bulk_store.read("nothing", default=[]) == []

    @pytest.mark.asyncio
    async def test_overwrite_delete_and_keys(self, bulk_store):
        await bulk_store.write("b", 1)
        await bulk_store.write("a", 1)
        await bulk_store.write("a", 2)
        assert await bulk_store.read("a") == 2
        assert await bulk_store.keys() == ["a", "b"]
        assert await bulk_store.delete("a") is True
        assert await bulk_store.delete("a") is False
        assert await bulk_store.keys() == ["b"]

    @pytest.mark.asyncio
    async def test_opened_lazily(self, bulk_store):
        assert not bulk_store.is_open
        await bulk_store.read("x")
        assert bulk_store.is_open

    @pytest.mark.asyncio
    async def test_persists_across_connections(self, tmp_path):
        path = tmp_path / "tome.db"
        first = BulkStore(path)
        await first.write("books", {"b1": {"id": "b1"}})
        await first.close()
        second = BulkStore(path)
        try:
            assert await second.read("books") == {"b1": {"id": "b1"}}
        finally:
            await second.close()

    @pytest.mark.asyncio
    async def test_value_serialised_before_suspending(self, bulk_store):
        value = [1]
        task = asyncio.ensure_future(bulk_store.write("k", value))
        await asyncio.sleep(0)
        value.append(2)
        assert await task
        assert await bulk_store.read("k") == [1]

    @pytest.mark.asyncio
    async def test_corrupt_value_reads_as_absent(self, tmp_path):
        path = tmp_path / "tome.db"
        store = BulkStore(path)
        await store.write("k", [1])
        await store.close()

        conn = sqlite3.connect(str(path))
        conn.execute("UPDATE state SET value = '{bad' WHERE key = 'k'")
        conn.commit()
        conn.close()

        store = BulkStore(path)
        try:
            assert await store.read("k", default="fallback") == "fallback"
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_unserialisable_value_is_refused(self, bulk_store):
        assert await bulk_store.write("bad", {1, 2}) is False
        assert not bulk_store.is_open

    @pytest.mark.asyncio
    async def test_memory_database(self):
        store = BulkStore(":memory:")
        try:
            assert await store.write("k", "v")
            assert await store.read("k") == "v"
        finally:
            await store.close()


class TestBulkStoreUnavailable:
    @pytest.mark.asyncio
    async def test_disabled_store_never_opens(self, tmp_path):
        store = BulkStore(tmp_path / "tome.db", enabled=False)
        assert await store.read("k") is MISSING
        assert await store.write("k", 1) is False
        assert await store.delete("k") is False
        assert await store.keys() == []
        assert not (tmp_path / "tome.db").exists()
        await store.close()

    @pytest.mark.asyncio
    async def test_unopenable_database(self, broken_bulk):
        assert await broken_bulk.read("k", default="d") == "d"
        assert await broken_bulk.write("k", 1) is False
        assert broken_bulk.available is False
        await broken_bulk.close()
