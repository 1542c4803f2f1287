"""
Resilience layer exceptions.
"""


class ResilienceError(Exception):
    """Base exception for resilience layer errors."""

    def __init__(self, message: str, component: str | None = None):
        self.component = component
        super().__init__(message)


class StorageError(ResilienceError):
    """Storage medium operation failed."""

    pass


class StorageQuotaExceeded(StorageError):
    """Storage medium is full."""

    def __init__(self, quota: int, requested: int):
        self.quota = quota
        self.requested = requested
        super().__init__(
            f"Storage quota exceeded: {requested} > {quota} characters",
            component="storage",
        )


class OperationTimeoutError(ResilienceError):
    """A single attempt ran past its deadline."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        # "timeout" must appear in the message for the default allow-list
        super().__init__(
            f"Operation timeout after {timeout}s",
            component="retry",
        )


class CoordinatorDisposedError(ResilienceError):
    """The coordinator was used after dispose()."""

    def __init__(self):
        super().__init__(
            "Resilience coordinator has been disposed",
            component="coordinator",
        )
