"""
GhostService - content operations on top of the RemoteInvoker.

Writes (create/update/delete of posts, pages and tags) notify the resource
layer before returning, so cached reads and subscribers never observe a
stale value after the write's caller has seen the result.

Usage:
    service = GhostService(invoker, resources)
    post = await service.create_post({"title": "Hello", "html": "<p>Hi</p>", "tags": ["News"]})
    health = await service.check_health()
"""

import asyncio
import os
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from loguru import logger

from ghostgate.services.errors import NotFoundError, UpstreamError, ValidationError
from ghostgate.services.invoker import RemoteInvoker
from ghostgate.utils import filter_term, meta_description, sanitize_html, slugify

if TYPE_CHECKING:
    from ghostgate.resources.manager import ResourceManager


@dataclass(frozen=True)
class _Content:
    upstream: str  # Admin API resource
    singular: str  # URI type of one record
    label: str


POSTS = _Content("posts", "post", "Post")
PAGES = _Content("pages", "page", "Page")
TAGS = _Content("tags", "tag", "Tag")


def _html_source(options: dict[str, Any] | None) -> dict[str, Any]:
    """Upstream options for content writes; Ghost drops ``html`` without ``source=html``."""
    return {"source": "html"} if options is None else options


class GhostService:
    """Health probe and content writes against one Ghost site."""

    def __init__(
        self,
        invoker: RemoteInvoker,
        resources: "ResourceManager | None" = None,
        namespace: str = "ghost",
        clock: Callable[[], float] = time.time,
    ):
        self.invoker = invoker
        self.resources = resources
        self.namespace = namespace
        self._clock = clock

    # ── Site ─────────────────────────────────────────────────────────────────

    async def get_site_info(self) -> dict[str, Any]:
        return await self.invoker.invoke("site", "read")

    async def check_health(self) -> dict[str, Any]:
        """Probe the upstream; never raises."""
        timestamp = datetime.fromtimestamp(self._clock(), tz=timezone.utc).isoformat()
        try:
            site = await self.get_site_info()
        except Exception as e:
            logger.warning(f"Ghost health check failed: {e}")
            return {
                "status": "unhealthy",
                "error": str(e),
                "circuit_breaker": self.invoker.breaker.get_state(),
                "timestamp": timestamp,
            }

        return {
            "status": "healthy",
            "site": {
                "title": site.get("title"),
                "version": site.get("version"),
                "url": site.get("url"),
            },
            "circuit_breaker": self.invoker.breaker.get_state(),
            "timestamp": timestamp,
        }

    # ── Posts and pages ──────────────────────────────────────────────────────

    async def create_post(
        self, data: dict[str, Any], options: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """
        Create a post.

        ``tags`` may be a list of tag names; each is resolved to an existing
        tag or created. Status defaults to ``draft`` and ``meta_title`` to
        the title; ``meta_description`` is derived from the HTML when absent.
        """
        payload = self._prepare_content(POSTS, data)
        payload.setdefault("meta_title", payload["title"])
        if payload.get("html") and not payload.get("meta_description"):
            payload["meta_description"] = meta_description(payload["html"])

        tags = payload.get("tags")
        if tags and any(isinstance(t, str) for t in tags):
            names = [t for t in tags if isinstance(t, str)]
            resolved = await self.resolve_tags(names)
            payload["tags"] = [t for t in tags if not isinstance(t, str)] + resolved

        return await self._create(POSTS, payload, _html_source(options))

    async def update_post(
        self, post_id: str, data: dict[str, Any], options: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        return await self._update(POSTS, post_id, data, options)

    async def delete_post(self, post_id: str) -> None:
        await self._delete(POSTS, post_id)

    async def create_page(
        self, data: dict[str, Any], options: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        return await self._create(
            PAGES, self._prepare_content(PAGES, data), _html_source(options)
        )

    async def update_page(
        self, page_id: str, data: dict[str, Any], options: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        return await self._update(PAGES, page_id, data, options)

    async def delete_page(self, page_id: str) -> None:
        await self._delete(PAGES, page_id)

    @staticmethod
    def _prepare_content(content: _Content, data: dict[str, Any]) -> dict[str, Any]:
        title = (data.get("title") or "").strip()
        if not title:
            raise ValidationError(
                f"{content.label} title is required",
                details=[{"field": "title", "message": "Title is required"}],
            )
        payload = {"status": "draft", **data, "title": title}
        if payload.get("html"):
            payload["html"] = sanitize_html(payload["html"])
        return payload

    # ── Images ───────────────────────────────────────────────────────────────

    async def upload_image(
        self, image_path: str | os.PathLike, ref: str | None = None
    ) -> dict[str, Any]:
        """
        Upload a local image file.

        Raises:
            ValidationError: No path given, or the upstream rejected the upload
            NotFoundError: The file does not exist
        """
        if not image_path:
            raise ValidationError("Image path is required")
        path = Path(image_path)
        if not path.is_file():
            raise NotFoundError("Image file", str(path))

        data = {"file": str(path)}
        if ref:
            data["ref"] = ref
        try:
            image = await self.invoker.invoke("images", "upload", data)
        except (UpstreamError, ValidationError) as e:
            raise ValidationError(f"Image upload failed: {e.message}") from e
        logger.info(f"Image uploaded: {image.get('url')}")
        return image

    # ── Tags ─────────────────────────────────────────────────────────────────

    async def get_tags(self, name: str | None = None) -> list[dict[str, Any]]:
        """All tags, or the tags named exactly ``name``."""
        options: dict[str, Any] = {"limit": "all"}
        if name:
            options["filter"] = filter_term("name", name, quote=True)
        tags = await self.invoker.invoke("tags", "browse", {}, options)
        return list(tags or [])

    async def create_tag(self, data: dict[str, Any]) -> dict[str, Any]:
        """Create a tag; an existing tag with the same name is returned instead."""
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError(
                "Tag name is required",
                details=[{"field": "name", "message": "Name is required"}],
            )
        payload = {**data, "name": name}
        if not payload.get("slug"):
            payload["slug"] = slugify(name)

        try:
            return await self._create(TAGS, payload)
        except ValidationError as e:
            if "already exists" in e.message:
                existing = await self.get_tags(name)
                if existing:
                    logger.info(f"Tag '{name}' already exists, using {existing[0].get('id')}")
                    return existing[0]
            raise ValidationError(
                "Tag creation failed",
                details=e.details or [{"field": "tag", "message": e.message}],
            ) from e

    async def update_tag(self, tag_id: str, data: dict[str, Any]) -> dict[str, Any]:
        return await self._update(TAGS, tag_id, data, send_updated_at=False)

    async def delete_tag(self, tag_id: str) -> None:
        await self._delete(TAGS, tag_id)

    async def resolve_tags(self, names: Iterable[Any]) -> list[dict[str, str]]:
        """
        Resolve tag names to ``{"name": ...}`` references, creating missing tags.

        Names are resolved concurrently. Blank names and names whose lookup
        or creation fails are logged and skipped.
        """

        async def resolve(raw: Any) -> dict[str, str] | None:
            if not isinstance(raw, str) or not raw.strip():
                logger.warning(f"Skipping invalid tag name: {raw!r}")
                return None
            name = raw.strip()
            try:
                existing = await self.get_tags(name)
                if existing:
                    logger.debug(f"Found existing tag '{name}' ({existing[0].get('id')})")
                else:
                    created = await self.create_tag({"name": name})
                    logger.info(f"Created tag '{name}' ({created.get('id')})")
            except Exception as e:
                logger.error(f"Error processing tag '{name}': {e}")
                return None
            return {"name": name}

        resolved = await asyncio.gather(*(resolve(n) for n in names))
        return [tag for tag in resolved if tag is not None]

    # ── Shared write paths ───────────────────────────────────────────────────

    async def _create(
        self,
        content: _Content,
        payload: dict[str, Any],
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        record = await self.invoker.invoke(content.upstream, "add", payload, options or {})
        logger.info(f"{content.label} created: {record.get('id')}")
        self._notify(content, record, "update")
        return record

    async def _update(
        self,
        content: _Content,
        record_id: str,
        data: dict[str, Any],
        options: dict[str, Any] | None = None,
        send_updated_at: bool = True,
    ) -> dict[str, Any]:
        if not record_id:
            raise ValidationError(f"{content.label} ID is required for update")

        try:
            existing = await self.invoker.invoke(content.upstream, "read", {"id": record_id})
        except NotFoundError as e:
            raise NotFoundError(content.label, record_id) from e
        if not existing:
            raise NotFoundError(content.label, record_id)

        merged = {**existing, **data}
        if send_updated_at:
            merged["updated_at"] = existing.get("updated_at")

        record = await self.invoker.invoke(
            content.upstream, "edit", merged, {"id": record_id, **(options or {})}
        )
        logger.info(f"{content.label} updated: {record_id}")
        self._notify(content, {**existing, **record}, "update")
        return record

    async def _delete(self, content: _Content, record_id: str) -> None:
        if not record_id:
            raise ValidationError(f"{content.label} ID is required for deletion")

        try:
            await self.invoker.invoke(content.upstream, "delete", {"id": record_id})
        except NotFoundError as e:
            raise NotFoundError(content.label, record_id) from e
        logger.info(f"{content.label} deleted: {record_id}")
        self._notify(content, {"id": record_id}, "delete")

    def _notify(self, content: _Content, record: dict[str, Any], event_type: str) -> None:
        """Invalidate and notify the record's URIs and its collection."""
        if self.resources is None:
            return

        base = f"{self.namespace}/{content.singular}"
        data = None if event_type == "delete" else record
        if record.get("id"):
            self.resources.notify_change(f"{base}/{record['id']}", data, event_type)
        if record.get("slug"):
            self.resources.notify_change(f"{base}/slug:{record['slug']}", data, event_type)
        self.resources.notify_change(f"{self.namespace}/{content.upstream}", None, event_type)
