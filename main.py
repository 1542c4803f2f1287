"""
Storefront resilience layer entry point.
Wires the caches and the resilience coordinator,
then keeps the periodic sweep (and optional connectivity probe) running.
"""

import asyncio
import sys
from datetime import timedelta

from loguru import logger

from resilience.coordinator import ResilienceCoordinator
from resilience.datastore.repositories import SqliteStorage
from resilience.services import (
    ConnectivityMonitor,
    DurableCache,
    MemoryStorage,
    get_primary_cache,
)
from resilience.settings import global_settings


async def main() -> None:
    """Main function"""
    logger.remove()
    logger.add(sys.stderr, level=global_settings.log_level)
    logger.info("Starting storefront resilience layer...")

    storage = (
        SqliteStorage(global_settings.durable_cache_url)
        if global_settings.durable_cache_url
        else MemoryStorage()
    )
    cache = get_primary_cache()
    durable_cache = DurableCache(
        storage=storage,
        prefix=global_settings.durable_cache_prefix,
        default_ttl=timedelta(seconds=global_settings.durable_cache_ttl_seconds),
    )

    connectivity = None
    if global_settings.connectivity_probe_url:
        connectivity = ConnectivityMonitor(
            global_settings.connectivity_probe_url,
            timeout=global_settings.connectivity_timeout,
            slow_threshold=global_settings.slow_connection_threshold,
        )

    coordinator = ResilienceCoordinator(cache, connectivity=connectivity)

    try:
        coordinator.start()

        # Drop anything the durable cache kept past its expiry
        removed = durable_cache.cleanup()
        logger.info(f"Durable cache ready: {removed} expired entries removed")

        if connectivity is not None:
            logger.info("Performing initial connectivity check...")
            await connectivity.check()

        logger.info("Resilience layer is running. Press Ctrl+C to stop.")
        while True:
            await asyncio.sleep(60)
            logger.debug(f"Cache stats: {cache.get_stats().to_dict()}")

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
    except Exception as e:
        logger.error(f"Error in main loop: {e}")
    finally:
        logger.info("Disposing coordinator...")
        coordinator.dispose()

        if connectivity is not None:
            await connectivity.close()

        if isinstance(storage, SqliteStorage):
            storage.close()

        logger.info("Storefront resilience layer stopped")


if __name__ == "__main__":
    asyncio.run(main())
