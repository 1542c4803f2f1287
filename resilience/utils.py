import functools
from typing import Any, Callable

from loguru import logger


def storage_guard(default: Any = None, default_factory: Callable[[], Any] | None = None):
    """
    A decorator that contains storage-medium failures at the call boundary.

    Features:
    - Catches any exception raised by the wrapped storage operation
    - Logs the operation name, its key argument and the error
    - Returns ``default`` instead of re-raising, or a fresh
      ``default_factory()`` value for mutable defaults
    - Preserves function metadata and return values on success
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                # args[0] is the cache instance, args[1] the key when present
                key = args[1] if len(args) > 1 else kwargs.get("key")
                logger.error(
                    f"Storage error in {func.__name__}"
                    f"{f' ({key})' if key is not None else ''}: "
                    f"{type(e).__name__}: {e}"
                )
                return default_factory() if default_factory is not None else default

        return wrapper

    return decorator
