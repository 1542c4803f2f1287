"""
EphemeralCache - In-process key/value cache with TTL and size-capped eviction.

Features:
- Per-entry time-to-live, expired entries are logically absent immediately
- Opportunistic cleanup on every write, periodic cleanup by the coordinator
- Age-based eviction (oldest write first) when the entry cap is reached
- Glob-style pattern invalidation ("products:*")
- with_cache() wrapper for caching sync or async callables
"""

import functools
import inspect
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, TypeVar

from loguru import logger

from resilience.services.deduplicator import RequestDeduplicator
from resilience.settings import global_settings

T = TypeVar("T")

_MISSING = object()


@dataclass
class CacheEntry:
    """A single cache entry with metadata."""

    value: Any
    written_at: datetime
    ttl: timedelta

    def is_expired(self, now: datetime) -> bool:
        """Check if entry is past its TTL."""
        return now >= self.written_at + self.ttl


@dataclass
class CacheStats:
    """Cache statistics, accumulated for observability only."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    size: int = 0
    max_size: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "size": self.size,
            "max_size": self.max_size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }


def compile_pattern(pattern: str) -> re.Pattern[str]:
    """
    Compile a glob pattern into a full-string regex.

    ``*`` matches any run of characters (including none); every other
    character, regex metacharacters included, matches itself.
    """
    parts = (re.escape(part) for part in pattern.split("*"))
    return re.compile(".*".join(parts), re.DOTALL)


class EphemeralCache:
    """
    In-process cache with TTL and oldest-first eviction.

    Usage:
        cache = EphemeralCache(max_size=100)

        cache.set("products:42", product, ttl=timedelta(minutes=15))
        product = cache.get("products:42")

        # After a product changes
        cache.invalidate_pattern("products:*")
    """

    def __init__(
        self,
        max_size: int = 100,
        default_ttl: timedelta = timedelta(minutes=5),
        clock: Callable[[], datetime] = datetime.now,
        debug: bool = False,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._entries: dict[str, CacheEntry] = {}
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._clock = clock
        self._debug = debug
        self._stats = CacheStats()

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get value from cache.

        Returns the stored value if present and unexpired, ``default``
        otherwise. Expired entries are removed on the way out.
        """
        entry = self._entries.get(key)
        if entry is None:
            self._stats.misses += 1
            self._log(f"MISS: {key[:50]}")
            return default

        if entry.is_expired(self._clock()):
            del self._entries[key]
            self._stats.misses += 1
            self._log(f"EXPIRED: {key[:50]}")
            return default

        self._stats.hits += 1
        self._log(f"HIT: {key[:50]}")
        return entry.value

    def has(self, key: str) -> bool:
        """Check if key exists and is not expired."""
        entry = self._entries.get(key)
        return entry is not None and not entry.is_expired(self._clock())

    def set(self, key: str, value: Any, ttl: timedelta | None = None) -> None:
        """
        Set value in cache.

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time to live (uses default if not specified)
        """
        ttl = self._default_ttl if ttl is None else ttl

        self.cleanup()

        # Replacing restarts the TTL window and the entry's age
        self._entries.pop(key, None)
        while len(self._entries) >= self._max_size:
            self._evict_oldest()

        self._entries[key] = CacheEntry(
            value=value,
            written_at=self._clock(),
            ttl=ttl,
        )
        self._log(f"SET: {key[:50]} (TTL: {ttl.total_seconds()}s)")

    def delete(self, key: str) -> bool:
        """Delete a specific key from cache."""
        if key in self._entries:
            del self._entries[key]
            self._log(f"DELETE: {key[:50]}")
            return True
        return False

    def clear(self) -> None:
        """Clear all cache entries."""
        count = len(self._entries)
        self._entries.clear()
        self._log(f"CLEAR: {count} entries removed")

    def cleanup(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        now = self._clock()
        expired_keys = [k for k, v in self._entries.items() if v.is_expired(now)]
        for key in expired_keys:
            del self._entries[key]

        if expired_keys:
            self._log(f"CLEANUP: {len(expired_keys)} expired entries removed")

        return len(expired_keys)

    def invalidate_pattern(self, pattern: str) -> int:
        """
        Invalidate all keys matching a glob pattern.

        Args:
            pattern: Glob pattern, ``*`` matches any run of characters

        Returns:
            Number of entries invalidated
        """
        regex = compile_pattern(pattern)
        keys_to_delete = [k for k in self._entries if regex.fullmatch(k)]
        for key in keys_to_delete:
            del self._entries[key]

        if keys_to_delete:
            self._log(f"INVALIDATE: {len(keys_to_delete)} entries matching '{pattern}'")

        return len(keys_to_delete)

    def keys(self) -> list[str]:
        """Keys currently stored, expired or not."""
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def _evict_oldest(self) -> None:
        """Evict the entry with the oldest write time."""
        oldest_key = min(
            self._entries.keys(),
            key=lambda k: self._entries[k].written_at,
        )
        del self._entries[oldest_key]
        self._stats.evictions += 1
        self._log(f"EVICT: {oldest_key[:50]}")

    def get_stats(self) -> CacheStats:
        """Get a copy of the cache statistics."""
        return CacheStats(
            hits=self._stats.hits,
            misses=self._stats.misses,
            evictions=self._stats.evictions,
            size=len(self._entries),
            max_size=self._max_size,
        )

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[EphemeralCache] {message}")


# Global cache instance
_primary_cache: EphemeralCache | None = None


def get_primary_cache() -> EphemeralCache:
    """Get the process-wide ephemeral cache instance."""
    global _primary_cache
    if _primary_cache is None:
        _primary_cache = EphemeralCache(
            max_size=global_settings.memory_cache_max_size,
            default_ttl=timedelta(seconds=global_settings.memory_cache_ttl_seconds),
            debug=global_settings.cache_debug,
        )
    return _primary_cache


def with_cache(
    key_fn: Callable[..., str],
    ttl: timedelta | None,
    inner: Callable[..., T],
    cache: EphemeralCache | None = None,
) -> Callable[..., T]:
    """
    Wrap ``inner`` so its results are cached under ``key_fn(*args, **kwargs)``.

    Coroutine functions get an async wrapper in which concurrent misses on
    the same key share a single call to ``inner``. A plain callable that
    returns an awaitable raises TypeError rather than caching it.
    """
    if inspect.iscoroutinefunction(inner):
        deduplicator = RequestDeduplicator()

        @functools.wraps(inner)
        async def async_wrapper(*args, **kwargs):
            target = cache if cache is not None else get_primary_cache()
            key = key_fn(*args, **kwargs)
            cached = target.get(key, _MISSING)
            if cached is not _MISSING:
                return cached

            async def load():
                result = await inner(*args, **kwargs)
                target.set(key, result, ttl)
                return result

            return await deduplicator.dedupe(key, load)

        return async_wrapper

    @functools.wraps(inner)
    def wrapper(*args, **kwargs):
        target = cache if cache is not None else get_primary_cache()
        key = key_fn(*args, **kwargs)
        cached = target.get(key, _MISSING)
        if cached is not _MISSING:
            return cached

        result = inner(*args, **kwargs)
        if inspect.isawaitable(result):
            # An awaitable can only be awaited once, so it is never cached
            if inspect.iscoroutine(result):
                result.close()
            raise TypeError(
                f"{getattr(inner, '__name__', 'inner')} returned an awaitable; "
                "pass a coroutine function to with_cache instead"
            )
        target.set(key, result, ttl)
        return result

    return wrapper
