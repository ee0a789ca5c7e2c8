"""
ResourceFetcher - resolves parsed resource URIs against the upstream.

Single items by id are point reads; by slug/uuid/name they are filtered
collection reads returning the sole match. Collections merge the URI's
query parameters into one browse request and come back shaped as
``{"data": [...], "meta": {"pagination": {...}}}``.

Small collections (tags, newsletters, tiers) are loaded whole and
filtered/paginated locally.
"""

import math
import re
from datetime import timedelta
from typing import Any

from loguru import logger

from ghostgate.resources.cache import CACHE_MISS, LRUCache
from ghostgate.resources.types import IdentifierType, ResourceType
from ghostgate.resources.uri import ResourceURI, ResourceURIParser
from ghostgate.services.deduplicator import RequestDeduplicator
from ghostgate.services.errors import NotFoundError, ValidationError
from ghostgate.services.invoker import RemoteInvoker
from ghostgate.utils import filter_term

# Query parameters forwarded verbatim to single-item reads.
_ITEM_OPTIONS = ("include", "fields", "formats")


def combine_filters(explicit: str | None, status: str | None) -> str | None:
    """AND the explicit filter with the ``status`` shorthand (shorthand last)."""
    terms = [term for term in (explicit, f"status:{status}" if status else None) if term]
    return "+".join(terms) or None


def _parse_positive_int(name: str, value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {name}: {value}") from None
    if number < 1:
        raise ValidationError(f"Invalid {name}: {value}")
    return number


def _split_filter(expression: str | None) -> list[tuple[str, str]]:
    """Split ``a:b+c:'d e'`` into ``[("a", "b"), ("c", "d e")]``."""
    if not expression:
        return []
    terms = []
    for raw in re.split(r"\+(?=(?:[^']*'[^']*')*[^']*$)", expression):
        field, sep, value = raw.partition(":")
        if not sep:
            raise ValidationError(f"Invalid filter term: {raw}")
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] == "'":
            value = value[1:-1].replace("\\'", "'")
        terms.append((field.strip(), value))
    return terms


def _field_matches(record: dict[str, Any], field: str, expected: str) -> bool:
    actual = record.get(field)
    if isinstance(actual, bool):
        actual = "true" if actual else "false"
    return actual is not None and str(actual) == expected


def _split_order(expression: str) -> list[tuple[str, bool]]:
    """Split ``"name asc, slug desc"`` into ``[("name", False), ("slug", True)]``."""
    keys = []
    for raw in expression.split(","):
        parts = raw.split()
        if not parts or len(parts) > 2:
            raise ValidationError(f"Invalid order: {expression}")
        direction = parts[1].lower() if len(parts) == 2 else "asc"
        if direction not in ("asc", "desc"):
            raise ValidationError(f"Invalid order: {expression}")
        keys.append((parts[0], direction == "desc"))
    return keys


def _sort_records(records: list[dict[str, Any]], expression: str) -> list[dict[str, Any]]:
    # Stable sorts applied from the last key to the first.
    for field, descending in reversed(_split_order(expression)):
        records = sorted(
            records,
            key=lambda r, f=field: (r.get(f) is None, str(r.get(f) or "")),
            reverse=descending,
        )
    return records


class ResourceFetcher:
    """
    Cache-aware fetching of resource URIs.

    Usage:
        fetcher = ResourceFetcher(invoker, cache)
        post = await fetcher.fetch(parser.parse("ghost/post/slug:welcome"))
    """

    def __init__(
        self,
        invoker: RemoteInvoker,
        cache: LRUCache,
        parser: ResourceURIParser | None = None,
        namespace: str = "ghost",
        item_ttl: timedelta = timedelta(minutes=5),
        collection_ttl: timedelta = timedelta(minutes=1),
        default_limit: int = 15,
        deduplicator: RequestDeduplicator | None = None,
    ):
        self.invoker = invoker
        self.cache = cache
        self.parser = parser or ResourceURIParser()
        self.namespace = namespace
        self.item_ttl = item_ttl
        self.collection_ttl = collection_ttl
        self.default_limit = default_limit
        self._deduplicator = deduplicator

    def cache_key(self, uri: ResourceURI) -> str:
        """Canonical (rebuilt) URI used as the cache key."""
        return self.parser.build(uri)

    async def fetch(self, uri: ResourceURI) -> Any:
        """Return the resource for ``uri``, from cache when fresh."""
        if uri.namespace != self.namespace:
            raise ValidationError(f"Unknown namespace: {uri.namespace}")
        resource_type = self.parser.resource_type(uri.type)

        key = self.cache_key(uri)
        cached = self.cache.get(key)
        if cached is not CACHE_MISS:
            return cached

        if self._deduplicator is not None:
            return await self._deduplicator.dedupe(
                key, lambda: self._load(resource_type, uri, key)
            )
        return await self._load(resource_type, uri, key)

    async def _load(self, resource_type: ResourceType, uri: ResourceURI, key: str) -> Any:
        if uri.is_collection:
            value = await self._fetch_collection(resource_type, uri.query_params)
            ttl = self.collection_ttl
        else:
            value = await self._fetch_item(resource_type, uri)
            ttl = self.item_ttl

        self.cache.set(key, value, ttl)
        return value

    # Single items

    async def _fetch_item(self, resource_type: ResourceType, uri: ResourceURI) -> Any:
        identifier = uri.identifier
        identifier_type = uri.identifier_type or IdentifierType.ID
        if identifier_type not in resource_type.identifier_types:
            raise ValidationError(
                f"Identifier type {identifier_type.value} is not supported for {resource_type.name}"
            )

        options = {
            name: uri.query_params[name] for name in _ITEM_OPTIONS if name in uri.query_params
        }
        if resource_type.include and "include" not in options:
            options["include"] = resource_type.include

        if identifier_type == IdentifierType.ID:
            try:
                record = await self.invoker.invoke(
                    resource_type.upstream, "read", {"id": identifier}, options
                )
            except NotFoundError as e:
                raise NotFoundError(resource_type.label, identifier) from e
            if not record:
                raise NotFoundError(resource_type.label, identifier)
            return record

        field = identifier_type.value
        if resource_type.client_side:
            name = identifier if identifier_type == IdentifierType.NAME else None
            records = await self._browse_all(resource_type, name=name, include=options.get("include"))
            match = next((r for r in records if _field_matches(r, field, identifier)), None)
        else:
            records = await self.invoker.invoke(
                resource_type.upstream,
                "browse",
                {},
                {
                    **options,
                    "filter": filter_term(field, identifier),
                    "limit": 1,
                },
            )
            match = records[0] if records else None

        if match is None:
            raise NotFoundError(resource_type.label, f"{field}:{identifier}")
        return match

    # Collections

    def _pagination_params(self, params: dict[str, str]) -> tuple[int | str, int]:
        raw_limit = params.get("limit")
        if raw_limit is None:
            limit: int | str = self.default_limit
        elif raw_limit == "all":
            limit = "all"
        else:
            limit = _parse_positive_int("limit", raw_limit)

        raw_page = params.get("page")
        page = 1 if raw_page is None else _parse_positive_int("page", raw_page)
        return limit, page

    async def _fetch_collection(
        self, resource_type: ResourceType, params: dict[str, str]
    ) -> dict[str, Any]:
        limit, page = self._pagination_params(params)
        filter_expression = combine_filters(params.get("filter"), params.get("status"))

        if resource_type.client_side:
            return await self._client_side_collection(
                resource_type, params, filter_expression, limit, page
            )

        options = {
            "limit": limit,
            "page": page,
            "filter": filter_expression,
            "include": params.get("include", resource_type.include),
            "order": params.get("order"),
            "fields": params.get("fields"),
            "formats": params.get("formats"),
        }
        options = {k: v for k, v in options.items() if v is not None}

        records = await self.invoker.invoke(resource_type.upstream, "browse", {}, options)
        meta = getattr(records, "meta", None) or {}
        return self._shape(list(records or []), meta.get("pagination"), limit, page)

    async def _client_side_collection(
        self,
        resource_type: ResourceType,
        params: dict[str, str],
        filter_expression: str | None,
        limit: int | str,
        page: int,
    ) -> dict[str, Any]:
        records = await self._browse_all(
            resource_type, name=params.get("name"), include=params.get("include")
        )

        terms = _split_filter(filter_expression)
        if terms:
            records = [
                r for r in records if all(_field_matches(r, f, v) for f, v in terms)
            ]

        if params.get("order"):
            records = _sort_records(records, params["order"])

        total = len(records)
        if limit == "all":
            data = records
        else:
            start = (page - 1) * limit
            data = records[start : start + limit]

        logger.debug(
            f"Client-side {resource_type.plural}: {total} matched, returning {len(data)}"
        )
        return self._shape(data, {"total": total}, limit, page)

    async def _browse_all(
        self,
        resource_type: ResourceType,
        name: str | None = None,
        include: str | None = None,
    ) -> list[dict[str, Any]]:
        options: dict[str, Any] = {"limit": "all"}
        if name:
            options["filter"] = filter_term("name", name, quote=True)
        if include:
            options["include"] = include
        records = await self.invoker.invoke(resource_type.upstream, "browse", {}, options)
        return list(records or [])

    @staticmethod
    def _shape(
        data: list[Any],
        upstream: dict[str, Any] | None,
        limit: int | str,
        page: int,
    ) -> dict[str, Any]:
        """Wrap ``data`` with pagination, computing what the upstream left out."""
        upstream = upstream or {}

        if "total" in upstream:
            total = upstream["total"]
        elif limit == "all":
            total = len(data)
        else:
            total = (page - 1) * limit + len(data)

        if "pages" in upstream:
            pages = upstream["pages"]
        elif limit == "all":
            pages = 1
        else:
            pages = max(math.ceil(total / limit), 1)

        pagination = {
            "page": page,
            "limit": limit,
            "pages": pages,
            "total": total,
            "next": upstream["next"] if "next" in upstream else (page + 1 if page < pages else None),
            "prev": upstream["prev"] if "prev" in upstream else (page - 1 if page > 1 else None),
        }
        return {"data": data, "meta": {"pagination": pagination}}
