"""
Service layer infrastructure - client-side resilience patterns.

Provides:
- EphemeralCache: In-process cache with TTL, eviction and pattern invalidation
- DurableCache: Namespaced cache over a persistent storage medium
- CacheInvalidation: Domain-aware invalidation recipes across both caches
- RetryManager: Bounded retries with backoff and per-attempt timeout
- ConnectivityMonitor: Online/slow-connection detection via HTTP probe
"""

from resilience.services.errors import (
    ResilienceError,
    StorageError,
    StorageQuotaExceeded,
    OperationTimeoutError,
    CoordinatorDisposedError,
)
from resilience.services.cache import (
    CacheEntry,
    CacheStats,
    EphemeralCache,
    compile_pattern,
    get_primary_cache,
    with_cache,
)
from resilience.services.durable_cache import DurableCache, MemoryStorage, StorageMedium
from resilience.services.invalidation import CacheInvalidation, EntityRecipe, RECIPES
from resilience.services.retry import RetryConfig, RetryManager, is_retryable, with_retry
from resilience.services.connectivity import ConnectivityMonitor, ConnectivityStatus
from resilience.services.deduplicator import RequestDeduplicator

__all__ = [
    # Errors
    "ResilienceError",
    "StorageError",
    "StorageQuotaExceeded",
    "OperationTimeoutError",
    "CoordinatorDisposedError",
    # Caches
    "CacheEntry",
    "CacheStats",
    "EphemeralCache",
    "compile_pattern",
    "get_primary_cache",
    "with_cache",
    "DurableCache",
    "MemoryStorage",
    "StorageMedium",
    # Invalidation
    "CacheInvalidation",
    "EntityRecipe",
    "RECIPES",
    # Retry
    "RetryConfig",
    "RetryManager",
    "is_retryable",
    "with_retry",
    # Connectivity
    "ConnectivityMonitor",
    "ConnectivityStatus",
    # Deduplicator
    "RequestDeduplicator",
]
