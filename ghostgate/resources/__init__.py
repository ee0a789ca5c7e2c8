"""
Resource layer - URI-addressed, cached reads and change subscriptions.

Provides:
- ResourceURIParser: Parses and builds ``namespace/type[/id][?query]`` URIs
- LRUCache: Size- and TTL-bounded cache keyed by canonical URIs
- ResourceFetcher: Cache-aware item and collection fetching
- SubscriptionManager: Pushed and polled change notifications
- ResourceManager: Facade over all of the above
"""

from ghostgate.resources.types import RESOURCE_TYPES, IdentifierType, ResourceType
from ghostgate.resources.uri import (
    ResourceURI,
    ResourceURIParser,
    build_uri,
    parse_uri,
    uri_matches,
)
from ghostgate.resources.cache import CACHE_MISS, CacheEntry, LRUCache
from ghostgate.resources.fetcher import ResourceFetcher
from ghostgate.resources.scheduler import APSchedulerPoller, Poller
from ghostgate.resources.subscriptions import ResourceEvent, Subscription, SubscriptionManager
from ghostgate.resources.manager import ResourceDescriptor, ResourceManager

__all__ = [
    # Types
    "RESOURCE_TYPES",
    "IdentifierType",
    "ResourceType",
    # URIs
    "ResourceURI",
    "ResourceURIParser",
    "build_uri",
    "parse_uri",
    "uri_matches",
    # Cache
    "CACHE_MISS",
    "CacheEntry",
    "LRUCache",
    # Fetching
    "ResourceFetcher",
    # Subscriptions
    "APSchedulerPoller",
    "Poller",
    "ResourceEvent",
    "Subscription",
    "SubscriptionManager",
    # Facade
    "ResourceDescriptor",
    "ResourceManager",
]
