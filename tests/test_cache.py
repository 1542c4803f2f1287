"""
Unit tests for EphemeralCache, compile_pattern and with_cache.
"""

import asyncio
from datetime import timedelta

import pytest

from resilience.services.cache import EphemeralCache, compile_pattern, with_cache
from resilience.services.deduplicator import RequestDeduplicator


class TestEphemeralCacheTTL:
    """TTL visibility rules."""

    def test_get_returns_value_within_ttl(self, cache):
        cache.set("products:1", {"name": "Rose"}, ttl=timedelta(seconds=10))

        assert cache.get("products:1") == {"name": "Rose"}

    def test_get_returns_none_after_ttl(self, cache, clock):
        cache.set("products:1", "rose", ttl=timedelta(seconds=10))
        clock.advance(11)

        assert cache.get("products:1") is None
        assert "products:1" not in cache.keys()

    def test_entry_expires_exactly_at_ttl(self, cache, clock):
        cache.set("products:1", "rose", ttl=timedelta(seconds=10))
        clock.advance(10)

        assert cache.get("products:1") is None

    @pytest.mark.parametrize("ttl", [timedelta(0), timedelta(seconds=-5)])
    def test_non_positive_ttl_is_immediately_absent(self, cache, ttl):
        cache.set("products:1", "rose", ttl=ttl)

        assert cache.get("products:1") is None
        assert not cache.has("products:1")

    def test_reset_restarts_ttl_window(self, cache, clock):
        cache.set("products:1", "old", ttl=timedelta(seconds=10))
        clock.advance(8)
        cache.set("products:1", "new", ttl=timedelta(seconds=10))
        clock.advance(8)

        assert cache.get("products:1") == "new"

    def test_default_ttl_applies(self, clock):
        cache = EphemeralCache(default_ttl=timedelta(seconds=30), clock=clock)
        cache.set("k", 1)
        clock.advance(29)
        assert cache.get("k") == 1
        clock.advance(2)
        assert cache.get("k") is None

    def test_get_default_distinguishes_cached_none(self, cache):
        sentinel = object()
        cache.set("k", None)

        assert cache.get("k", sentinel) is None
        assert cache.get("missing", sentinel) is sentinel


class TestEphemeralCacheEviction:
    """Size cap and oldest-first eviction."""

    def test_size_never_exceeds_max(self, clock):
        cache = EphemeralCache(max_size=3, clock=clock)
        for i in range(10):
            cache.set(f"k{i}", i)
            clock.advance(1)
            assert len(cache) <= 3

    def test_evicts_oldest_written_entry(self, clock):
        cache = EphemeralCache(max_size=3, clock=clock)
        for key in ("a", "b", "c"):
            cache.set(key, key)
            clock.advance(1)

        cache.set("d", "d")

        assert sorted(cache.keys()) == ["b", "c", "d"]
        assert cache.get_stats().evictions == 1

    def test_rewrite_makes_entry_young_again(self, clock):
        cache = EphemeralCache(max_size=3, clock=clock)
        for key in ("a", "b", "c"):
            cache.set(key, key)
            clock.advance(1)

        cache.set("a", "a2")
        clock.advance(1)
        cache.set("d", "d")

        assert sorted(cache.keys()) == ["a", "c", "d"]

    def test_rewrite_at_capacity_does_not_evict(self, clock):
        cache = EphemeralCache(max_size=2, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("b", 3)

        assert sorted(cache.keys()) == ["a", "b"]
        assert cache.get_stats().evictions == 0

    def test_cleanup_runs_before_eviction(self, clock):
        cache = EphemeralCache(max_size=2, clock=clock)
        cache.set("short", 1, ttl=timedelta(seconds=1))
        cache.set("long", 2, ttl=timedelta(minutes=5))
        clock.advance(2)

        cache.set("new", 3)

        assert sorted(cache.keys()) == ["long", "new"]
        assert cache.get_stats().evictions == 0

    def test_max_size_must_be_positive(self):
        with pytest.raises(ValueError):
            EphemeralCache(max_size=0)


class TestEphemeralCacheOperations:
    """delete, clear, cleanup, invalidate_pattern and stats."""

    def test_delete_and_clear(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)

        assert cache.delete("a") is True
        assert cache.delete("a") is False
        cache.clear()
        assert len(cache) == 0

    def test_cleanup_removes_only_expired(self, cache, clock):
        cache.set("old", 1, ttl=timedelta(seconds=5))
        cache.set("fresh", 2, ttl=timedelta(minutes=5))
        clock.advance(6)

        assert cache.cleanup() == 1
        assert cache.keys() == ["fresh"]

    def test_invalidate_pattern_matches_prefix_group(self, cache):
        for key in ("products:1", "products:2:reviews", "products:", "categories:1", "products"):
            cache.set(key, key)

        removed = cache.invalidate_pattern("products:*")

        assert removed == 3
        assert sorted(cache.keys()) == ["categories:1", "products"]

    def test_invalidate_pattern_is_idempotent(self, cache):
        assert cache.invalidate_pattern("orders:*") == 0
        assert cache.invalidate_pattern("orders:*") == 0

    def test_stats_track_hits_and_misses(self, cache):
        cache.set("a", 1)
        cache.get("a")
        cache.get("a")
        cache.get("missing")

        stats = cache.get_stats()
        assert stats.hits == 2
        assert stats.misses == 1
        assert stats.size == 1
        assert stats.to_dict()["hit_rate"] == "66.67%"


class TestCompilePattern:
    """Glob compiler semantics."""

    def test_star_matches_any_run_including_empty(self):
        regex = compile_pattern("featured_products*")

        assert regex.fullmatch("featured_products")
        assert regex.fullmatch("featured_products:home")
        assert not regex.fullmatch("x_featured_products")

    def test_regex_metacharacters_are_literal(self):
        regex = compile_pattern("products:1.0+(a)")

        assert regex.fullmatch("products:1.0+(a)")
        assert not regex.fullmatch("products:1x0+(a)")
        assert not regex.fullmatch("products:1.00(a)")

    def test_match_is_whole_string(self):
        regex = compile_pattern("orders:1")

        assert regex.fullmatch("orders:1")
        assert not regex.fullmatch("orders:12")

    def test_wildcard_in_the_middle(self):
        regex = compile_pattern("users:*:orders")

        assert regex.fullmatch("users:7:orders")
        assert regex.fullmatch("users::orders")
        assert not regex.fullmatch("users:7:orders:1")


class TestWithCache:
    """Higher-order caching wrapper."""

    def test_sync_function_is_called_once_per_key(self, cache):
        calls = []

        def load_product(product_id):
            calls.append(product_id)
            return {"id": product_id}

        cached_load = with_cache(lambda pid: f"products:{pid}", None, load_product, cache=cache)

        assert cached_load("1") == {"id": "1"}
        assert cached_load("1") == {"id": "1"}
        assert cached_load("2") == {"id": "2"}
        assert calls == ["1", "2"]
        assert cached_load.__name__ == "load_product"

    def test_sync_result_expires_with_ttl(self, cache, clock):
        calls = []

        def load():
            calls.append(1)
            return len(calls)

        cached_load = with_cache(lambda: "counter", timedelta(seconds=5), load, cache=cache)

        assert cached_load() == 1
        clock.advance(6)
        assert cached_load() == 2

    def test_cached_none_is_not_reloaded(self, cache):
        calls = []

        def load():
            calls.append(1)
            return None

        cached_load = with_cache(lambda: "nothing", None, load, cache=cache)
        cached_load()
        cached_load()

        assert len(calls) == 1

    def test_plain_callable_returning_coroutine_is_rejected(self, cache):
        async def fetch_categories():
            return ["A", "B"]

        cached_fetch = with_cache(lambda: "categories:all", None, lambda: fetch_categories(), cache=cache)

        with pytest.raises(TypeError):
            cached_fetch()
        assert "categories:all" not in cache.keys()

    @pytest.mark.asyncio
    async def test_async_concurrent_misses_share_one_load(self, cache):
        calls = []

        async def fetch_categories():
            calls.append(1)
            await asyncio.sleep(0.01)
            return ["A", "B"]

        cached_fetch = with_cache(lambda: "categories:all", None, fetch_categories, cache=cache)

        results = await asyncio.gather(cached_fetch(), cached_fetch(), cached_fetch())

        assert results == [["A", "B"]] * 3
        assert len(calls) == 1
        assert cache.get("categories:all") == ["A", "B"]

    @pytest.mark.asyncio
    async def test_async_failure_is_not_cached(self, cache):
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) == 1:
                raise ConnectionError("network error")
            return "ok"

        cached = with_cache(lambda: "flaky", None, flaky, cache=cache)

        with pytest.raises(ConnectionError):
            await cached()
        assert await cached() == "ok"


class TestRequestDeduplicator:
    """Concurrent load coalescing."""

    @pytest.mark.asyncio
    async def test_in_flight_key_is_released_after_completion(self):
        dedup = RequestDeduplicator()

        async def load():
            await asyncio.sleep(0)
            return 1

        assert await dedup.dedupe("k", load) == 1
        assert dedup.get_in_flight_keys() == []
        assert dedup.total == 1

    @pytest.mark.asyncio
    async def test_waiters_share_errors(self):
        dedup = RequestDeduplicator()

        async def load():
            await asyncio.sleep(0.01)
            raise RuntimeError("server error")

        results = await asyncio.gather(
            dedup.dedupe("k", load), dedup.dedupe("k", load), return_exceptions=True
        )

        assert all(isinstance(r, RuntimeError) for r in results)
        assert dedup.deduplicated == 1
