"""
Resource URIs - compact addresses for cache entries and subscriptions.

Grammar::

    namespace/type[/[prefix:]identifier][?key=value&...]

``prefix`` is one of ``slug``, ``uuid`` or ``name``; a bare identifier is an
``id``. Plural types without an identifier address collections:

    ghost/post/slug:my-post?include=tags,authors
    ghost/posts?status=published&limit=10&page=2
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from urllib.parse import quote, unquote

from ghostgate.resources.types import IdentifierType, ResourceType, build_type_index
from ghostgate.services.errors import ValidationError

_IDENTIFIER_SAFE = "-._~@+,'"
_QUERY_KEY_SAFE = "-._~"
_QUERY_VALUE_SAFE = ":,+'[]<>-._~@*"


@dataclass
class ResourceURI:
    """Parsed resource URI. ``identifier`` is None for collections."""

    namespace: str
    type: str
    identifier: str | None = None
    identifier_type: IdentifierType | None = None
    query_params: dict[str, str] = field(default_factory=dict)

    @property
    def is_collection(self) -> bool:
        return self.identifier is None

    def __str__(self) -> str:
        return build_uri(self)


class ResourceURIParser:
    """
    Parses and builds resource URIs for a set of known resource types.

    ``build`` is the exact inverse of ``parse``; query parameters are
    emitted in sorted order so the built string doubles as a canonical
    cache key.
    """

    def __init__(self, types: Mapping[str, ResourceType] | None = None):
        self._types = dict(types) if types is not None else build_type_index()

    def resource_type(self, name: str) -> ResourceType:
        """Look up a URI type, raising ValidationError if unknown."""
        resource_type = self._types.get(name)
        if resource_type is None:
            raise ValidationError(f"Unknown resource type: {name}")
        return resource_type

    def parse(self, uri: str) -> ResourceURI:
        if not isinstance(uri, str) or not uri.strip():
            raise ValidationError(f"Invalid resource URI format: {uri!r}")

        path, _, query = uri.strip().partition("?")
        segments = path.split("/")
        if len(segments) not in (2, 3) or not all(segments):
            raise ValidationError(f"Invalid resource URI format: {uri}")

        namespace, type_name = segments[0], segments[1]
        resource_type = self.resource_type(type_name)

        identifier = None
        identifier_type = None
        if len(segments) == 3:
            if type_name == resource_type.plural and type_name != resource_type.name:
                raise ValidationError(
                    f"Collection type {type_name} does not take an identifier: {uri}"
                )
            identifier, identifier_type = self._parse_identifier(segments[2], uri)

        return ResourceURI(
            namespace=namespace,
            type=type_name,
            identifier=identifier,
            identifier_type=identifier_type,
            query_params=self._parse_query(query),
        )

    @staticmethod
    def _parse_identifier(raw: str, uri: str) -> tuple[str, IdentifierType]:
        if ":" in raw:
            prefix, value = raw.split(":", 1)
            try:
                identifier_type = IdentifierType(prefix)
            except ValueError:
                raise ValidationError(f"Unknown identifier type: {prefix}") from None
        else:
            identifier_type, value = IdentifierType.ID, raw

        value = unquote(value)
        if not value:
            raise ValidationError(f"Invalid resource URI format: {uri}")
        return value, identifier_type

    @staticmethod
    def _parse_query(query: str) -> dict[str, str]:
        params: dict[str, str] = {}
        for pair in query.split("&"):
            if not pair:
                continue
            key, _, value = pair.partition("=")
            key = unquote(key)
            if key:
                params[key] = unquote(value)
        return params

    def build(self, parts: ResourceURI) -> str:
        path = f"{parts.namespace}/{parts.type}"

        if parts.identifier is not None:
            identifier_type = parts.identifier_type or IdentifierType.ID
            value = quote(parts.identifier, safe=_IDENTIFIER_SAFE)
            if identifier_type == IdentifierType.ID:
                path += f"/{value}"
            else:
                path += f"/{identifier_type.value}:{value}"

        if parts.query_params:
            query = "&".join(
                f"{quote(key, safe=_QUERY_KEY_SAFE)}={quote(str(value), safe=_QUERY_VALUE_SAFE)}"
                for key, value in sorted(parts.query_params.items())
            )
            path += f"?{query}"

        return path


_default_parser = ResourceURIParser()


def parse_uri(uri: str) -> ResourceURI:
    """Parse ``uri`` against the built-in resource types."""
    return _default_parser.parse(uri)


def build_uri(parts: ResourceURI) -> str:
    """Build the canonical string form of ``parts``."""
    return _default_parser.build(parts)


def uri_matches(pattern: str, uri: str) -> bool:
    """Bidirectional prefix match used for subscriptions and invalidation."""
    return pattern == uri or uri.startswith(pattern) or pattern.startswith(uri)
