"""
Application context - the wired-up component graph.

Built once at process start and passed to whoever needs it; there are no
module-level cache or circuit breaker singletons.

Usage:
    ctx = build_context(Settings.from_env())
    post = await ctx.resources.fetch_resource("ghost/post/1")
    await ctx.aclose()
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from loguru import logger

from ghostgate.resources.cache import LRUCache
from ghostgate.resources.fetcher import ResourceFetcher
from ghostgate.resources.manager import ResourceManager
from ghostgate.resources.scheduler import APSchedulerPoller, Poller
from ghostgate.resources.uri import ResourceURIParser
from ghostgate.services.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from ghostgate.services.client import GhostAdminAPI
from ghostgate.services.deduplicator import RequestDeduplicator
from ghostgate.services.ghost import GhostService
from ghostgate.services.invoker import InvokeConfig, RemoteInvoker, counts_against_upstream
from ghostgate.settings import Settings


@dataclass
class AppContext:
    settings: Settings
    api: Any
    breaker: CircuitBreaker
    invoker: RemoteInvoker
    cache: LRUCache
    resources: ResourceManager
    ghost: GhostService

    async def aclose(self) -> None:
        """Stop polling and release the HTTP client."""
        self.resources.close()
        aclose = getattr(self.api, "aclose", None)
        if aclose is not None:
            await aclose()
        logger.info("Application context closed")


def build_context(
    settings: Settings,
    api: Any = None,
    clock: Callable[[], float] = time.time,
    poller: Poller | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> AppContext:
    """
    Wire every component from ``settings``.

    Raises:
        ConfigurationError: Ghost credentials are missing or malformed and
            no ``api`` was supplied
    """
    if api is None:
        settings.require_ghost()
        api = GhostAdminAPI(
            settings.ghost_admin_api_url,
            settings.ghost_admin_api_key,
            version=settings.ghost_api_version,
            timeout=settings.ghost_request_timeout,
        )

    breaker = CircuitBreaker(
        "ghost",
        CircuitBreakerConfig(
            failure_threshold=settings.circuit_failure_threshold,
            reset_timeout=settings.reset_timeout,
        ),
        clock=clock,
        is_failure=counts_against_upstream,
    )
    invoker = RemoteInvoker(
        api,
        breaker,
        InvokeConfig(
            max_retries=settings.ghost_max_retries,
            use_circuit_breaker=settings.ghost_use_circuit_breaker,
        ),
        sleep=sleep,
    )
    cache = LRUCache(
        max_size=settings.cache_max_size,
        default_ttl=settings.item_ttl,
        clock=clock,
        debug=settings.cache_debug,
    )
    fetcher = ResourceFetcher(
        invoker,
        cache,
        ResourceURIParser(),
        item_ttl=settings.item_ttl,
        collection_ttl=settings.collection_ttl,
        default_limit=settings.default_page_limit,
        deduplicator=RequestDeduplicator(debug=settings.cache_debug)
        if settings.dedupe_in_flight
        else None,
    )
    resources = ResourceManager(
        fetcher,
        poller or APSchedulerPoller(),
        polling_interval=settings.polling_timedelta,
    )
    ghost = GhostService(invoker, resources, clock=clock)

    logger.info(
        f"Context ready: cache max_size={settings.cache_max_size}, "
        f"breaker threshold={settings.circuit_failure_threshold}, "
        f"retries={settings.ghost_max_retries}"
    )
    return AppContext(
        settings=settings,
        api=api,
        breaker=breaker,
        invoker=invoker,
        cache=cache,
        resources=resources,
        ghost=ghost,
    )
