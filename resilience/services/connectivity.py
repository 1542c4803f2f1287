"""
ConnectivityMonitor - Derives online/slow-connection flags from an HTTP probe.

The monitor only reports transitions: subscribers are called when
``is_online`` or ``is_slow_connection`` differs from the previous check.
"""

import time
from dataclasses import dataclass
from typing import Callable

import httpx
from loguru import logger


@dataclass(frozen=True)
class ConnectivityStatus:
    """Result of one probe."""

    is_online: bool
    is_slow_connection: bool = False
    latency: float | None = None


ConnectivityListener = Callable[[ConnectivityStatus], None]


class ConnectivityMonitor:
    """
    Probes a URL to decide whether the backend is reachable.

    Usage:
        monitor = ConnectivityMonitor("https://shop.example.com/health")
        monitor.subscribe(lambda s: print(s.is_online))

        await monitor.check()
    """

    def __init__(
        self,
        probe_url: str,
        timeout: float = 5.0,
        slow_threshold: float = 1.5,
        client: httpx.AsyncClient | None = None,
    ):
        self.probe_url = probe_url
        self._timeout = timeout
        self._slow_threshold = slow_threshold
        self._client = client
        self._owns_client = client is None
        self._listeners: list[ConnectivityListener] = []
        self._last_status: ConnectivityStatus | None = None

    @property
    def last_status(self) -> ConnectivityStatus | None:
        return self._last_status

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._owns_client = True
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
            )
        return self._client

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        """Register a transition listener. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def check(self) -> ConnectivityStatus:
        """Probe once and notify listeners if the status changed."""
        client = self._get_client()
        started = time.monotonic()
        try:
            response = await client.head(self.probe_url, timeout=self._timeout)
            latency = time.monotonic() - started
            is_online = response.status_code < 500
        except httpx.HTTPError as e:
            logger.debug(f"Connectivity probe to {self.probe_url} failed: {e}")
            latency = None
            is_online = False

        status = ConnectivityStatus(
            is_online=is_online,
            is_slow_connection=(
                is_online and latency is not None and latency > self._slow_threshold
            ),
            latency=latency,
        )
        self._publish(status)
        return status

    def _publish(self, status: ConnectivityStatus) -> None:
        previous = self._last_status
        self._last_status = status
        if previous is not None and (
            previous.is_online == status.is_online
            and previous.is_slow_connection == status.is_slow_connection
        ):
            return

        logger.info(
            f"Connectivity changed: online={status.is_online}, "
            f"slow={status.is_slow_connection}"
        )
        for listener in list(self._listeners):
            listener(status)

    async def close(self) -> None:
        """Close the HTTP client if this monitor created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
