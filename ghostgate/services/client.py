"""
GhostAdminAPI - async HTTP client for the Ghost Admin API.

Exposes one endpoint object per upstream resource (``api.posts``,
``api.tags``, ``api.site`` ...) whose verbs follow the call shapes the
RemoteInvoker dispatches with:

- add/edit:    ``(data, options)``
- browse/read: ``(options, data)``
- delete:      ``(identifier, options)``
- upload:      ``(data)``

HTTP failures surface as raw ``httpx`` exceptions; classification into the
typed errors happens in the invoker.
"""

import mimetypes
import time
from pathlib import Path
from typing import Any

import httpx
import jwt
from loguru import logger

from ghostgate.services.errors import ValidationError

TOKEN_LIFETIME_SECONDS = 5 * 60

_CRUD = frozenset({"browse", "read", "add", "edit", "delete"})

# Supported (resource, action) pairs.
CAPABILITIES: dict[str, frozenset[str]] = {
    "posts": _CRUD,
    "pages": _CRUD,
    "tags": _CRUD,
    "members": _CRUD,
    "newsletters": frozenset({"browse", "read", "add", "edit"}),
    "tiers": frozenset({"browse", "read", "add", "edit"}),
    "site": frozenset({"read"}),
    "images": frozenset({"upload"}),
}


class BrowseResult(list):
    """A page of records plus the upstream ``meta`` block (pagination)."""

    def __init__(self, items=(), meta: dict[str, Any] | None = None):
        super().__init__(items)
        self.meta = meta or {}


def make_admin_token(key: str, now: float | None = None) -> str:
    """
    Build the short-lived JWT the Admin API expects.

    ``key`` is the ``<id>:<hex secret>`` admin API key.
    """
    key_id, secret = key.split(":", 1)
    issued_at = int(now if now is not None else time.time())
    payload = {
        "iat": issued_at,
        "exp": issued_at + TOKEN_LIFETIME_SECONDS,
        "aud": "/admin/",
    }
    return jwt.encode(
        payload,
        bytes.fromhex(secret),
        algorithm="HS256",
        headers={"kid": key_id},
    )


def _query_params(options: dict[str, Any] | None) -> dict[str, str]:
    params = {}
    for name, value in (options or {}).items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        params[name] = str(value)
    return params


class ResourceEndpoint:
    """CRUD verbs for one Admin API resource (``posts``, ``tags`` ...)."""

    def __init__(self, api: "GhostAdminAPI", name: str):
        self._api = api
        self.name = name

    async def browse(
        self, options: dict[str, Any] | None = None, data: dict[str, Any] | None = None
    ) -> BrowseResult:
        body = await self._api.request("GET", f"{self.name}/", params=options)
        return BrowseResult(body.get(self.name, []), body.get("meta"))

    async def read(
        self, options: dict[str, Any] | None = None, data: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        data = data or {}
        if data.get("id"):
            path = f"{self.name}/{data['id']}/"
        elif data.get("slug"):
            path = f"{self.name}/slug/{data['slug']}/"
        elif data.get("email"):
            path = f"{self.name}/email/{data['email']}/"
        else:
            raise ValidationError(f"{self.name}.read requires an id, slug or email")

        body = await self._api.request("GET", path, params=options)
        records = body.get(self.name) or []
        return records[0] if records else None

    async def add(
        self, data: dict[str, Any], options: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        body = await self._api.request(
            "POST", f"{self.name}/", params=options, json={self.name: [data]}
        )
        return body[self.name][0]

    async def edit(
        self, data: dict[str, Any], options: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        options = dict(options or {})
        record_id = options.pop("id", None) or data.get("id")
        if not record_id:
            raise ValidationError(f"{self.name}.edit requires an id")

        payload = {k: v for k, v in data.items() if k != "id"}
        body = await self._api.request(
            "PUT", f"{self.name}/{record_id}/", params=options, json={self.name: [payload]}
        )
        return body[self.name][0]

    async def delete(self, identifier: Any, options: dict[str, Any] | None = None) -> None:
        if isinstance(identifier, dict):
            identifier = identifier.get("id")
        if not identifier:
            raise ValidationError(f"{self.name}.delete requires an id")
        await self._api.request("DELETE", f"{self.name}/{identifier}/", params=options)


class SiteEndpoint:
    """Read-only site metadata."""

    name = "site"

    def __init__(self, api: "GhostAdminAPI"):
        self._api = api

    async def read(
        self, options: dict[str, Any] | None = None, data: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        body = await self._api.request("GET", "site/", params=options)
        return body.get("site", {})


class ImagesEndpoint:
    """Image uploads (multipart)."""

    name = "images"

    def __init__(self, api: "GhostAdminAPI"):
        self._api = api

    async def upload(self, data: dict[str, Any]) -> dict[str, Any]:
        path = Path(data["file"])
        if not path.is_file():
            raise ValidationError(f"Image file not found: {path}")

        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        form = {"ref": data["ref"]} if data.get("ref") else None
        body = await self._api.request(
            "POST",
            "images/upload/",
            files={"file": (path.name, path.read_bytes(), content_type)},
            data=form,
        )
        return body["images"][0]


class GhostAdminAPI:
    """
    Ghost Admin API client.

    Usage:
        async with GhostAdminAPI(url, key) as api:
            posts = await api.posts.browse({"limit": 5})
            site = await api.site.read()
    """

    def __init__(
        self,
        url: str,
        key: str,
        version: str = "v5.0",
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.url = url.rstrip("/")
        self.base_url = f"{self.url}/ghost/api/admin/"
        self._key = key
        self.version = version
        self._timeout = timeout

        # HTTP client (lazy initialization)
        self._http_client = http_client

        self.posts = ResourceEndpoint(self, "posts")
        self.pages = ResourceEndpoint(self, "pages")
        self.tags = ResourceEndpoint(self, "tags")
        self.members = ResourceEndpoint(self, "members")
        self.newsletters = ResourceEndpoint(self, "newsletters")
        self.tiers = ResourceEndpoint(self, "tiers")
        self.site = SiteEndpoint(self)
        self.images = ImagesEndpoint(self)

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
            )
        return self._http_client

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Ghost {make_admin_token(self._key)}",
            "Accept-Version": self.version,
        }

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
    ) -> Any:
        """Execute one Admin API request and return the decoded body."""
        client = await self._get_http_client()
        response = await client.request(
            method,
            self.base_url + path,
            params=_query_params(params),
            json=json,
            files=files,
            data=data,
            headers=self._headers(),
        )
        response.raise_for_status()

        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    async def aclose(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.debug("GhostAdminAPI closed")

    async def __aenter__(self) -> "GhostAdminAPI":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.aclose()
