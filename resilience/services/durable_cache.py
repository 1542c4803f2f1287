"""
DurableCache - Key/value cache on a storage medium that outlives the process
state it was written from.

Features:
- Absolute expiry timestamp stored with every entry
- Fixed namespace prefix so unrelated data can share the medium
- Storage failures (quota, serialization, closed medium) are logged and
  degrade to a miss or a no-op; nothing is raised past this class
"""

import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Protocol

from loguru import logger

from resilience.services.cache import compile_pattern
from resilience.services.errors import StorageQuotaExceeded
from resilience.utils import storage_guard


class StorageMedium(Protocol):
    """String key/value storage shared by everything using the same medium."""

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


class MemoryStorage:
    """
    Process-lifetime storage medium, optionally with a size quota
    counted in characters of keys plus values.
    """

    def __init__(self, quota: int | None = None):
        self._items: dict[str, str] = {}
        self._quota = quota

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        if self._quota is not None:
            used = self._used() - self._size_of(key, self._items.get(key))
            requested = used + self._size_of(key, value)
            if requested > self._quota:
                raise StorageQuotaExceeded(self._quota, requested)
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._items)

    def _used(self) -> int:
        return sum(self._size_of(k, v) for k, v in self._items.items())

    @staticmethod
    def _size_of(key: str, value: str | None) -> int:
        return 0 if value is None else len(key) + len(value)


@dataclass
class DurableEntry:
    """Decoded durable cache entry."""

    value: Any
    # Epoch seconds, so naive and aware clocks compare the same way
    expires_at: float

    def is_expired(self, now: datetime) -> bool:
        return now.timestamp() >= self.expires_at

    def encode(self) -> str:
        return json.dumps({"data": self.value, "expiry": self.expires_at})

    @classmethod
    def decode(cls, raw: str) -> "DurableEntry":
        parsed = json.loads(raw)
        return cls(value=parsed["data"], expires_at=float(parsed["expiry"]))


class DurableCache:
    """
    Namespaced cache over a StorageMedium.

    Usage:
        durable = DurableCache(storage=SqliteStorage("sqlite:///./cache.db"))

        durable.set("categories:all", categories)
        categories = durable.get("categories:all")
    """

    def __init__(
        self,
        storage: StorageMedium | None = None,
        prefix: str = "storefront_cache_",
        default_ttl: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._storage = storage if storage is not None else MemoryStorage()
        self._prefix = prefix
        self._default_ttl = default_ttl
        self._clock = clock

    @property
    def prefix(self) -> str:
        return self._prefix

    @storage_guard(default=None)
    def get(self, key: str) -> Any:
        """Get value from the medium, ``None`` if absent, expired or unreadable."""
        raw = self._storage.get_item(self._prefix + key)
        if raw is None:
            return None

        entry = DurableEntry.decode(raw)
        if entry.is_expired(self._clock()):
            self._storage.remove_item(self._prefix + key)
            return None

        return entry.value

    @storage_guard(default=False)
    def set(self, key: str, value: Any, ttl: timedelta | None = None) -> bool:
        """
        Write value with an absolute expiry of now + ttl.

        Returns False when the medium rejected the write.
        """
        ttl = self._default_ttl if ttl is None else ttl
        entry = DurableEntry(value=value, expires_at=(self._clock() + ttl).timestamp())
        self._storage.set_item(self._prefix + key, entry.encode())
        return True

    @storage_guard(default=None)
    def delete(self, key: str) -> None:
        """Remove one entry."""
        self._storage.remove_item(self._prefix + key)

    @storage_guard(default=0)
    def clear(self) -> int:
        """Remove every entry under this cache's prefix and nothing else."""
        own_keys = [k for k in self._storage.keys() if k.startswith(self._prefix)]
        for raw_key in own_keys:
            self._storage.remove_item(raw_key)
        return len(own_keys)

    @storage_guard(default_factory=list)
    def keys(self) -> list[str]:
        """Keys under this cache's prefix, with the prefix stripped."""
        return [
            k[len(self._prefix):]
            for k in self._storage.keys()
            if k.startswith(self._prefix)
        ]

    @storage_guard(default=0)
    def invalidate_pattern(self, pattern: str) -> int:
        """Remove every entry whose unprefixed key matches the glob pattern."""
        regex = compile_pattern(pattern)
        matched = [k for k in self.keys() if regex.fullmatch(k)]
        for key in matched:
            self._storage.remove_item(self._prefix + key)
        return len(matched)

    @storage_guard(default=0)
    def cleanup(self) -> int:
        """Remove expired and undecodable entries under this prefix."""
        now = self._clock()
        removed = 0
        for key in self.keys():
            raw = self._storage.get_item(self._prefix + key)
            if raw is None:
                continue
            try:
                expired = DurableEntry.decode(raw).is_expired(now)
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(f"Dropping unreadable durable cache entry {key}: {e}")
                expired = True
            if expired:
                self._storage.remove_item(self._prefix + key)
                removed += 1
        return removed
