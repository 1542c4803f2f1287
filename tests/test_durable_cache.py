"""
Unit tests for DurableCache and its storage media.
"""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from resilience.datastore.repositories import SqliteStorage
from resilience.services.durable_cache import DurableCache, MemoryStorage
from resilience.services.errors import StorageError


class TestDurableCache:
    """Read/write contract over the in-memory medium."""

    def test_set_then_get(self, durable_cache):
        assert durable_cache.set("categories:all", ["A", "B"]) is True

        assert durable_cache.get("categories:all") == ["A", "B"]

    def test_entries_are_namespaced_in_storage(self, durable_cache, storage):
        durable_cache.set("products:1", {"price": 10})

        assert storage.keys() == ["test_cache_products:1"]
        stored = json.loads(storage.get_item("test_cache_products:1"))
        assert stored["data"] == {"price": 10}
        assert "expiry" in stored

    def test_expired_entry_is_absent_and_removed(self, durable_cache, storage, clock):
        durable_cache.set("products:1", "rose", ttl=timedelta(minutes=1))
        clock.advance(61)

        assert durable_cache.get("products:1") is None
        assert storage.keys() == []

    def test_non_positive_ttl_is_immediately_absent(self, durable_cache):
        durable_cache.set("products:1", "rose", ttl=timedelta(0))

        assert durable_cache.get("products:1") is None

    def test_delete(self, durable_cache):
        durable_cache.set("a", 1)
        durable_cache.delete("a")
        durable_cache.delete("a")

        assert durable_cache.get("a") is None

    def test_clear_leaves_unrelated_data(self, durable_cache, storage):
        storage.set_item("theme", "dark")
        durable_cache.set("a", 1)
        durable_cache.set("b", 2)

        assert durable_cache.clear() == 2
        assert storage.keys() == ["theme"]

    def test_keys_strip_prefix(self, durable_cache, storage):
        storage.set_item("other_app", "x")
        durable_cache.set("orders:1", 1)

        assert durable_cache.keys() == ["orders:1"]

    def test_invalidate_pattern(self, durable_cache):
        durable_cache.set("products:1", 1)
        durable_cache.set("products:2", 2)
        durable_cache.set("categories:1", 3)

        assert durable_cache.invalidate_pattern("products:*") == 2
        assert durable_cache.keys() == ["categories:1"]

    def test_timezone_aware_clock(self, storage):
        now = [datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)]
        cache = DurableCache(storage=storage, clock=lambda: now[0])

        assert cache.set("products:1", {"price": 10}, ttl=timedelta(minutes=1)) is True
        assert cache.get("products:1") == {"price": 10}
        assert cache.cleanup() == 0

        now[0] += timedelta(minutes=2)
        assert cache.get("products:1") is None

    def test_cleanup_removes_expired_and_corrupt_entries(self, durable_cache, storage, clock):
        durable_cache.set("old", 1, ttl=timedelta(seconds=5))
        durable_cache.set("fresh", 2, ttl=timedelta(hours=1))
        storage.set_item("test_cache_broken", "{not json")
        clock.advance(10)

        assert durable_cache.cleanup() == 2
        assert durable_cache.keys() == ["fresh"]


class TestDurableCacheFailures:
    """Storage failures degrade to misses and no-ops."""

    def test_quota_exceeded_write_is_a_noop(self, clock):
        cache = DurableCache(storage=MemoryStorage(quota=40), clock=clock)

        assert cache.set("products:1", "x" * 100) is False
        assert cache.get("products:1") is None

    def test_unserializable_value_is_a_noop(self, durable_cache, storage):
        assert durable_cache.set("products:1", object()) is False
        assert storage.keys() == []

    def test_corrupt_entry_reads_as_miss(self, durable_cache, storage):
        storage.set_item("test_cache_products:1", "{not json")

        assert durable_cache.get("products:1") is None

    def test_unavailable_medium_never_raises(self):
        storage = MagicMock(spec=MemoryStorage)
        for method in ("get_item", "set_item", "remove_item", "keys"):
            getattr(storage, method).side_effect = StorageError("medium unavailable")
        cache = DurableCache(storage=storage)

        assert cache.get("a") is None
        assert cache.set("a", 1) is False
        assert cache.delete("a") is None
        assert cache.clear() == 0
        assert cache.keys() == []
        assert cache.invalidate_pattern("*") == 0
        assert cache.cleanup() == 0

    def test_failed_keys_returns_a_fresh_list_each_time(self):
        storage = MagicMock(spec=MemoryStorage)
        storage.keys.side_effect = StorageError("medium unavailable")
        first = DurableCache(storage=storage)
        second = DurableCache(storage=storage)

        first.keys().append("stale")

        assert first.keys() == []
        assert second.keys() == []

    def test_os_error_on_read_is_contained(self):
        storage = MagicMock(spec=MemoryStorage)
        storage.get_item.side_effect = OSError("disk I/O error")
        cache = DurableCache(storage=storage)

        assert cache.get("products:1") is None


class TestMemoryStorage:
    """Quota accounting."""

    def test_replacing_a_value_reuses_its_quota(self):
        storage = MemoryStorage(quota=10)
        storage.set_item("k", "12345678")
        storage.set_item("k", "87654321")

        assert storage.get_item("k") == "87654321"


class TestSqliteStorage:
    """SQLAlchemy-backed medium."""

    @pytest.fixture
    def db_url(self, tmp_path):
        return f"sqlite:///{tmp_path / 'durable.db'}"

    def test_survives_a_new_storage_instance(self, db_url, clock):
        first = SqliteStorage(db_url)
        DurableCache(storage=first, clock=clock).set("categories:all", ["A"])
        first.close()

        second = SqliteStorage(db_url)
        assert DurableCache(storage=second, clock=clock).get("categories:all") == ["A"]
        second.close()

    def test_shared_medium_is_last_write_wins(self, db_url, clock):
        storage_a = SqliteStorage(db_url)
        storage_b = SqliteStorage(db_url)
        cache_a = DurableCache(storage=storage_a, clock=clock)
        cache_b = DurableCache(storage=storage_b, clock=clock)

        cache_a.set("cart:1", {"items": 1})
        cache_b.set("cart:1", {"items": 2})

        assert cache_a.get("cart:1") == {"items": 2}
        storage_a.close()
        storage_b.close()

    def test_clear_respects_prefix(self, db_url, clock):
        storage = SqliteStorage(db_url)
        storage.set_item("unrelated", "keep")
        cache = DurableCache(storage=storage, prefix="shop_", clock=clock)
        cache.set("a", 1)

        assert cache.clear() == 1
        assert storage.keys() == ["unrelated"]
        storage.close()
