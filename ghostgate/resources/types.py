"""
Resource types addressable through resource URIs.
"""

from dataclasses import dataclass
from enum import Enum


class IdentifierType(str, Enum):
    """How the identifier segment of a resource URI addresses a record."""

    ID = "id"
    SLUG = "slug"
    UUID = "uuid"
    NAME = "name"


@dataclass(frozen=True)
class ResourceType:
    """One upstream resource and how the fetcher treats it."""

    name: str  # Singular URI type, e.g. "post"
    plural: str  # Collection URI type, e.g. "posts"
    upstream: str  # Admin API resource name
    label: str  # Used in NotFoundError messages
    include: str | None = None  # Default related records to embed
    identifier_types: frozenset[IdentifierType] = frozenset(
        {IdentifierType.ID, IdentifierType.SLUG, IdentifierType.UUID}
    )
    client_side: bool = False  # Small collection: load fully, filter/paginate locally


RESOURCE_TYPES: tuple[ResourceType, ...] = (
    ResourceType("post", "posts", "posts", "Post", include="tags,authors"),
    ResourceType("page", "pages", "pages", "Page", include="tags,authors"),
    ResourceType(
        "tag",
        "tags",
        "tags",
        "Tag",
        identifier_types=frozenset(
            {IdentifierType.ID, IdentifierType.SLUG, IdentifierType.NAME}
        ),
        client_side=True,
    ),
    ResourceType(
        "member",
        "members",
        "members",
        "Member",
        identifier_types=frozenset({IdentifierType.ID, IdentifierType.UUID}),
    ),
    ResourceType(
        "newsletter",
        "newsletters",
        "newsletters",
        "Newsletter",
        identifier_types=frozenset(IdentifierType),
        client_side=True,
    ),
    ResourceType(
        "tier",
        "tiers",
        "tiers",
        "Tier",
        identifier_types=frozenset(
            {IdentifierType.ID, IdentifierType.SLUG, IdentifierType.NAME}
        ),
        client_side=True,
    ),
)


def build_type_index(types: tuple[ResourceType, ...] = RESOURCE_TYPES) -> dict[str, ResourceType]:
    """Map both the singular and the plural URI type to its ResourceType."""
    index: dict[str, ResourceType] = {}
    for resource_type in types:
        index[resource_type.name] = resource_type
        index[resource_type.plural] = resource_type
    return index
