"""
ResourceManager - single entry point to the resource layer.

Composes the URI parser, the LRU cache, the fetcher and the subscription
manager:

    manager = ResourceManager(fetcher, subscriptions)
    post = await manager.fetch_resource("ghost/post/slug:welcome")
    outcome = await manager.batch_fetch(["ghost/post/1", "ghost/tags"])
    manager.notify_change("ghost/post/1", updated, "update")
"""

import asyncio
from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Any

from loguru import logger

from ghostgate.resources.fetcher import ResourceFetcher
from ghostgate.resources.scheduler import Poller
from ghostgate.resources.subscriptions import SubscriptionCallback, SubscriptionManager
from ghostgate.resources.uri import uri_matches


@dataclass
class ResourceDescriptor:
    """Catalog entry for resource discovery."""

    name: str
    uri: str
    schema: dict[str, Any]
    description: str | None = None
    examples: list[Any] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _error_payload(error: BaseException) -> dict[str, Any]:
    to_dict = getattr(error, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return {"message": str(error)}


class ResourceManager:
    """Facade over fetching, caching, invalidation and subscriptions."""

    def __init__(
        self,
        fetcher: ResourceFetcher,
        poller: Poller,
        polling_interval: timedelta = timedelta(seconds=60),
    ):
        self.fetcher = fetcher
        self.cache = fetcher.cache
        self.parser = fetcher.parser
        self.subscriptions = SubscriptionManager(
            self._fetch_for_subscription,
            poller,
            default_interval=polling_interval,
        )
        self._resources: dict[str, ResourceDescriptor] = {}

    # ── Fetching ─────────────────────────────────────────────────────────────

    async def fetch_resource(self, uri: str) -> Any:
        """Parse ``uri`` and fetch it, serving from cache when fresh."""
        try:
            return await self.fetcher.fetch(self.parser.parse(uri))
        except Exception as e:
            logger.error(f"Error fetching resource {uri}: {e}")
            raise

    async def _fetch_for_subscription(self, uri: str, bypass_cache: bool = False) -> Any:
        parsed = self.parser.parse(uri)
        if bypass_cache:
            self.cache.delete(self.fetcher.cache_key(parsed))
        return await self.fetcher.fetch(parsed)

    async def batch_fetch(self, uris: Iterable[str]) -> dict[str, dict[str, Any]]:
        """
        Fetch every URI concurrently.

        Returns:
            ``{"results": {uri: value}, "errors": {uri: {"message": ...}}}``;
            one failing URI never aborts the others
        """
        uris = list(uris)
        outcomes = await asyncio.gather(
            *(self.fetch_resource(uri) for uri in uris), return_exceptions=True
        )

        results: dict[str, Any] = {}
        errors: dict[str, Any] = {}
        for uri, outcome in zip(uris, outcomes):
            if isinstance(outcome, Exception):
                errors[uri] = _error_payload(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results[uri] = outcome
        return {"results": results, "errors": errors}

    async def prefetch(self, patterns: Iterable[str]) -> list[dict[str, Any]]:
        """Warm the cache; reports a status per pattern and never raises."""
        patterns = list(patterns)
        outcomes = await asyncio.gather(
            *(self.fetch_resource(pattern) for pattern in patterns), return_exceptions=True
        )

        report = []
        for pattern, outcome in zip(patterns, outcomes):
            if isinstance(outcome, Exception):
                report.append({"pattern": pattern, "status": "error", "error": str(outcome)})
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                report.append({"pattern": pattern, "status": "success"})

        ok = sum(1 for r in report if r["status"] == "success")
        logger.info(f"Prefetched {ok}/{len(report)} resources")
        return report

    # ── Cache ────────────────────────────────────────────────────────────────

    def invalidate_cache(self, pattern: str | None = None) -> int:
        count = self.cache.invalidate(pattern)
        if pattern is None:
            logger.info(f"Cache invalidated ({count} entries)")
        else:
            logger.info(f"Cache invalidated for pattern: {pattern} ({count} entries)")
        return count

    def get_cache_stats(self) -> dict[str, Any]:
        return self.cache.stats()

    # ── Catalog ──────────────────────────────────────────────────────────────

    def register_resource(
        self,
        uri: str,
        schema: dict[str, Any],
        description: str | None = None,
        examples: list[Any] | None = None,
    ) -> ResourceDescriptor:
        descriptor = ResourceDescriptor(
            name=uri,
            uri=uri,
            schema=schema,
            description=description,
            examples=list(examples or []),
        )
        self._resources[uri] = descriptor
        return descriptor

    def list_resources(self, namespace: str | None = None) -> list[ResourceDescriptor]:
        resources = list(self._resources.values())
        if namespace is not None:
            resources = [r for r in resources if r.uri.split("/", 1)[0] == namespace]
        return resources

    # ── Subscriptions ────────────────────────────────────────────────────────

    async def subscribe(
        self,
        uri_pattern: str,
        callback: SubscriptionCallback,
        enable_polling: bool = False,
        polling_interval: timedelta | None = None,
    ) -> str:
        return await self.subscriptions.subscribe(
            uri_pattern,
            callback,
            enable_polling=enable_polling,
            polling_interval=polling_interval,
        )

    def unsubscribe(self, subscription_id: str) -> None:
        self.subscriptions.unsubscribe(subscription_id)

    def notify_change(self, uri: str, data: Any = None, event_type: str = "update") -> None:
        """
        Invalidate cache entries related to ``uri`` and notify subscribers.

        Runs synchronously; both steps are done when this returns.
        """
        invalidated = self.cache.invalidate_where(lambda key: uri_matches(uri, key))
        notified = self.subscriptions.notify(uri, data, event_type)
        logger.debug(
            f"Change on {uri}: {invalidated} cache entries invalidated, "
            f"{notified} subscribers notified"
        )

    def close(self) -> None:
        self.subscriptions.close()
