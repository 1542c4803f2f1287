"""
RetryManager - Bounded retries with exponential backoff and per-attempt timeout.

Attempt flow (attempt = 0 .. max_retries):
- Race the operation against ``timeout``
- Success: return immediately
- Failure on the last attempt: propagate
- Failure whose message matches the retryable allow-list: wait
  ``initial_delay * backoff_multiplier ** attempt`` and try again
- Any other failure: propagate immediately
"""

import asyncio
import functools
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from resilience.services.errors import OperationTimeoutError
from resilience.settings import global_settings

T = TypeVar("T")

DEFAULT_RETRYABLE_ERRORS: tuple[str, ...] = (
    "network error",
    "timeout",
    "server error",
    "database connection lost",
    "connection refused",
    "ECONNRESET",
    "ENOTFOUND",
    "EAI_AGAIN",
)


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior. Delays and timeout are in seconds."""

    max_retries: int = 3
    initial_delay: float = 0.1
    backoff_multiplier: float = 2.0
    timeout: float = 10.0
    # Allow-list of case-insensitive message substrings
    retryable_errors: tuple[str, ...] = DEFAULT_RETRYABLE_ERRORS

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")

    def delay_for(self, attempt: int) -> float:
        """Wait after failed ``attempt`` (0-indexed) before the next one."""
        return self.initial_delay * self.backoff_multiplier**attempt

    @classmethod
    def from_settings(cls) -> "RetryConfig":
        return cls(
            max_retries=global_settings.retry_max_retries,
            initial_delay=global_settings.retry_initial_delay,
            backoff_multiplier=global_settings.retry_backoff_multiplier,
            timeout=global_settings.retry_timeout,
        )


def is_retryable(error: BaseException, config: RetryConfig) -> bool:
    """Check the error message against the config's allow-list."""
    message = (str(error) or type(error).__name__).lower()
    return any(pattern.lower() in message for pattern in config.retryable_errors)


@dataclass
class RetryStats:
    """Counters for one RetryManager."""

    executions: int = 0
    attempts: int = 0
    successes: int = 0
    failures: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "executions": self.executions,
            "attempts": self.attempts,
            "successes": self.successes,
            "failures": self.failures,
            "success_rate": self.successes / max(1, self.executions),
        }


class RetryManager:
    """
    Executes async operations with retry, backoff and timeout.

    Usage:
        retry = RetryManager()

        product = await retry.execute(
            lambda: backend.fetch_product("42"),
            RetryConfig(max_retries=2, timeout=5.0),
        )
    """

    def __init__(
        self,
        default_config: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._default_config = default_config or RetryConfig()
        self._sleep = sleep
        self._stats = RetryStats()

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        config: RetryConfig | None = None,
        **overrides: Any,
    ) -> T:
        """
        Run ``operation`` with retries.

        Args:
            operation: Zero-argument callable returning an awaitable
            config: Retry configuration (manager default if not specified)
            **overrides: Individual RetryConfig fields to override

        Returns:
            The operation's result

        Raises:
            OperationTimeoutError: If the last permitted attempt timed out
            Exception: The operation's own error once retries are exhausted
                or the error is not retryable
        """
        cfg = config or self._default_config
        if overrides:
            cfg = replace(cfg, **overrides)

        self._stats.executions += 1
        name = getattr(operation, "__name__", "operation")

        for attempt in range(cfg.max_retries + 1):
            self._stats.attempts += 1
            try:
                result = await self._attempt(operation, cfg.timeout)
            except Exception as e:
                if attempt == cfg.max_retries:
                    self._stats.failures += 1
                    logger.warning(
                        f"{name} failed after {attempt + 1} attempts: {e}"
                    )
                    raise

                if not is_retryable(e, cfg):
                    self._stats.failures += 1
                    logger.warning(f"{name} failed with non-retryable error: {e}")
                    raise

                delay = cfg.delay_for(attempt)
                logger.warning(
                    f"{name} attempt {attempt + 1}/{cfg.max_retries + 1} failed, "
                    f"retrying in {delay:.3f}s: {e}"
                )
                await self._sleep(delay)
                continue

            if attempt > 0:
                logger.info(f"{name} succeeded on attempt {attempt + 1}")
            self._stats.successes += 1
            return result

        # max_retries >= 0, so attempt 0 always returns or raises
        raise AssertionError("unreachable")

    async def _attempt(self, operation: Callable[[], Awaitable[T]], timeout: float) -> T:
        try:
            return await asyncio.wait_for(operation(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise OperationTimeoutError(timeout) from e

    def get_stats(self) -> RetryStats:
        return replace(self._stats)


def with_retry(
    config: RetryConfig | None,
    inner: Callable[..., Awaitable[T]],
    manager: RetryManager | None = None,
) -> Callable[..., Awaitable[T]]:
    """Wrap an async callable so every call goes through RetryManager.execute."""
    retry_manager = manager or RetryManager()

    @functools.wraps(inner)
    async def wrapper(*args, **kwargs):
        return await retry_manager.execute(lambda: inner(*args, **kwargs), config)

    return wrapper
