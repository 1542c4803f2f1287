"""
Shared fixtures for resilience tests.
"""

from datetime import datetime, timedelta

import pytest

from resilience.services.cache import EphemeralCache
from resilience.services.durable_cache import DurableCache, MemoryStorage
from resilience.settings import Settings


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = datetime(2024, 6, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs) -> None:
        self.now += timedelta(seconds=seconds, **kwargs)


@pytest.fixture
def clock():
    """Fake clock starting at a fixed instant."""
    return FakeClock()


@pytest.fixture
def cache(clock):
    """Ephemeral cache driven by the fake clock."""
    return EphemeralCache(max_size=10, default_ttl=timedelta(minutes=5), clock=clock)


@pytest.fixture
def storage():
    """Fresh in-memory storage medium."""
    return MemoryStorage()


@pytest.fixture
def durable_cache(storage, clock):
    """Durable cache over the in-memory medium."""
    return DurableCache(storage=storage, prefix="test_cache_", clock=clock)


@pytest.fixture
def fast_settings():
    """Settings with short timers for lifecycle tests."""
    return Settings(
        notification_success_duration=0.05,
        notification_info_duration=0.05,
        notification_warning_duration=0.05,
        notification_error_duration=0.05,
        notification_dismiss_delay=0.05,
        notification_dedup_window=2.0,
        cache_cleanup_interval_seconds=300.0,
        cache_sweep_interval_seconds=60.0,
        retry_queue_max_attempts=3,
    )
