"""
ghostgate main entry point.

Builds the access layer, probes the Ghost site, warms the cache and keeps
polling subscriptions alive until interrupted.
"""

import asyncio
import sys

from loguru import logger

from ghostgate.context import build_context
from ghostgate.services.errors import ConfigurationError
from ghostgate.settings import Settings


async def main() -> None:
    settings = Settings.from_env()
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level.upper())

    logger.info("Starting ghostgate...")
    try:
        ctx = build_context(settings)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        raise

    try:
        health = await ctx.ghost.check_health()
        if health["status"] == "healthy":
            site = health["site"]
            logger.info(f"Connected to '{site['title']}' (Ghost {site['version']}) at {site['url']}")
        else:
            logger.warning(f"Ghost site is unhealthy: {health['error']}")

        uris = settings.prefetch_uri_list()
        if uris:
            logger.info(f"Prefetching {len(uris)} resources...")
            for entry in await ctx.resources.prefetch(uris):
                if entry["status"] == "error":
                    logger.warning(f"  - {entry['pattern']}: {entry['error']}")

        logger.info("ghostgate is running. Press Ctrl+C to stop.")
        while True:
            await asyncio.sleep(60)

    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Received interrupt signal, shutting down...")
    finally:
        await ctx.aclose()
        logger.info("ghostgate stopped")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
    except ConfigurationError:
        sys.exit(1)
