from unittest.mock import Mock

import httpx
import pytest

from ghostgate.resources.subscriptions import ResourceEvent
from ghostgate.services.client import BrowseResult
from ghostgate.services.errors import CircuitOpenError, NotFoundError, ValidationError
from ghostgate.services.ghost import GhostService

EXISTING_TAG = {"id": "t1", "name": "Existing", "slug": "existing"}


@pytest.fixture
def service(invoker, manager, clock):
    return GhostService(invoker, manager, clock=clock)


async def _browse_tags(options, data):
    name_filter = options.get("filter")
    if name_filter == "name:'Existing'":
        return BrowseResult([EXISTING_TAG])
    if name_filter == "name:'Broken'":
        raise RuntimeError("lookup failed")
    return BrowseResult([])


async def test_check_health_healthy(service, api):
    api.site.read.return_value = {
        "title": "Blog",
        "version": "5.80",
        "url": "https://ghost.test",
        "description": "ignored",
    }

    health = await service.check_health()

    assert health["status"] == "healthy"
    assert health["site"] == {"title": "Blog", "version": "5.80", "url": "https://ghost.test"}
    assert health["circuit_breaker"]["state"] == "CLOSED"
    assert health["timestamp"] == "2023-11-14T22:13:20+00:00"


async def test_check_health_unhealthy_never_raises(service, api):
    api.site.read.side_effect = httpx.ConnectError("connection refused")

    health = await service.check_health()

    assert health["status"] == "unhealthy"
    assert "network error" in health["error"]
    assert "site" not in health
    assert health["circuit_breaker"]["failure_count"] == 4


async def test_create_post_applies_defaults_and_resolves_tags(service, api):
    api.tags.browse.side_effect = _browse_tags
    api.tags.add.return_value = {"id": "t2", "name": "New", "slug": "new"}
    api.posts.add.return_value = {"id": "p1", "slug": "hello", "title": "Hello"}

    post = await service.create_post(
        {
            "title": "Hello",
            "html": '<p onclick="steal()">Hi there<script>alert(1)</script></p>',
            "tags": ["Existing", "New", "Broken", "  "],
        }
    )

    assert post["id"] == "p1"
    payload, options = api.posts.add.await_args.args
    assert payload["status"] == "draft"
    assert payload["meta_title"] == "Hello"
    assert payload["html"] == "<p>Hi there</p>"
    assert payload["meta_description"] == "Hi there"
    assert payload["tags"] == [{"name": "Existing"}, {"name": "New"}]
    assert options == {"source": "html"}
    api.tags.add.assert_awaited_once_with({"name": "New", "slug": "new"}, {})


async def test_create_post_keeps_explicit_values(service, api):
    api.posts.add.return_value = {"id": "p1"}

    await service.create_post(
        {"title": "Hello", "status": "published", "meta_title": "SEO"}, {"formats": "html"}
    )

    payload, options = api.posts.add.await_args.args
    assert payload["status"] == "published"
    assert payload["meta_title"] == "SEO"
    assert options == {"formats": "html"}


async def test_create_post_requires_title(service, api):
    with pytest.raises(ValidationError, match="Post title is required"):
        await service.create_post({"html": "<p>x</p>"})

    api.posts.add.assert_not_called()


async def test_create_post_notifies_before_returning(service, manager, api):
    api.posts.browse.return_value = BrowseResult([])
    api.posts.add.return_value = {"id": "p1", "slug": "hello", "title": "Hello"}
    await manager.fetch_resource("ghost/posts?limit=5")
    callback = Mock()
    await manager.subscribe("ghost/post/p1", callback)

    post = await service.create_post({"title": "Hello"})

    callback.assert_called_once_with(ResourceEvent(type="update", uri="ghost/post/p1", data=post))
    assert manager.get_cache_stats()["size"] == 0


async def test_update_post_sends_current_updated_at(service, api):
    api.posts.read.return_value = {
        "id": "1",
        "title": "Old",
        "updated_at": "2024-01-01T00:00:00.000Z",
    }
    api.posts.edit.return_value = {"id": "1", "title": "New"}

    result = await service.update_post("1", {"title": "New", "updated_at": "stale"})

    assert result == {"id": "1", "title": "New"}
    api.posts.read.assert_awaited_once_with({}, {"id": "1"})
    api.posts.edit.assert_awaited_once_with(
        {"id": "1", "title": "New", "updated_at": "2024-01-01T00:00:00.000Z"},
        {"id": "1"},
    )


async def test_update_post_invalidates_cached_reads(service, manager, api):
    api.posts.read.return_value = {"id": "1", "title": "Old", "updated_at": "x"}
    api.posts.edit.return_value = {"id": "1", "title": "New"}
    await manager.fetch_resource("ghost/post/1")

    await service.update_post("1", {"title": "New"})
    api.posts.read.return_value = {"id": "1", "title": "New", "updated_at": "y"}

    assert (await manager.fetch_resource("ghost/post/1"))["title"] == "New"


async def test_update_missing_post(service, api, http_error):
    api.posts.read.side_effect = http_error(404, path="posts/nope/")

    with pytest.raises(NotFoundError, match="Post not found: nope"):
        await service.update_post("nope", {"title": "x"})

    api.posts.edit.assert_not_called()


async def test_update_requires_id(service):
    with pytest.raises(ValidationError, match="Post ID is required"):
        await service.update_post("", {"title": "x"})


async def test_delete_post_emits_delete_event(service, manager, api):
    callback = Mock()
    await manager.subscribe("ghost/post/1", callback)

    await service.delete_post("1")

    api.posts.delete.assert_awaited_once_with("1", {})
    callback.assert_called_once_with(ResourceEvent(type="delete", uri="ghost/post/1"))


async def test_delete_missing_post(service, api, http_error):
    api.posts.delete.side_effect = http_error(404, path="posts/9/")

    with pytest.raises(NotFoundError, match="Post not found: 9"):
        await service.delete_post("9")


async def test_create_page_defaults_to_draft(service, api):
    api.pages.add.return_value = {"id": "pg1"}

    await service.create_page({"title": "About"})

    payload, options = api.pages.add.await_args.args
    assert payload == {"title": "About", "status": "draft"}
    assert options == {"source": "html"}


async def test_create_tag_generates_slug(service, api):
    api.tags.add.return_value = {"id": "t9", "name": "Machine Learning"}

    await service.create_tag({"name": "Machine Learning"})

    api.tags.add.assert_awaited_once_with({"name": "Machine Learning", "slug": "machine-learning"}, {})


async def test_create_tag_returns_existing_duplicate(service, api, http_error):
    api.tags.add.side_effect = http_error(
        422, json={"errors": [{"message": "Tag already exists.", "type": "ValidationError"}]}
    )
    api.tags.browse.side_effect = _browse_tags

    assert await service.create_tag({"name": "Existing"}) == EXISTING_TAG


async def test_create_tag_other_validation_failure(service, api, http_error):
    api.tags.add.side_effect = http_error(
        422, json={"errors": [{"message": "Name is too long", "type": "ValidationError"}]}
    )

    with pytest.raises(ValidationError, match="Tag creation failed") as exc_info:
        await service.create_tag({"name": "x" * 300})

    assert exc_info.value.details[0]["message"] == "Name is too long"


async def test_create_tag_requires_name(service):
    with pytest.raises(ValidationError, match="Tag name is required"):
        await service.create_tag({"name": " "})


async def test_update_tag_does_not_send_updated_at(service, api):
    api.tags.read.return_value = {"id": "t1", "name": "Old"}
    api.tags.edit.return_value = {"id": "t1", "name": "Renamed"}

    await service.update_tag("t1", {"name": "Renamed"})

    api.tags.edit.assert_awaited_once_with({"id": "t1", "name": "Renamed"}, {"id": "t1"})


async def test_get_tags_by_name(service, api):
    api.tags.browse.side_effect = _browse_tags

    assert await service.get_tags("Existing") == [EXISTING_TAG]
    assert await service.get_tags("Missing") == []


async def test_resolve_tags_skips_invalid_names(service, api, log_messages):
    api.tags.browse.side_effect = _browse_tags
    api.tags.add.return_value = {"id": "t2", "name": "Fresh"}

    resolved = await service.resolve_tags(["Existing", "", None, "Broken", " Fresh "])

    assert resolved == [{"name": "Existing"}, {"name": "Fresh"}]
    assert any("Error processing tag 'Broken'" in m for m in log_messages)


async def test_create_post_sends_html_source_by_default(service, api):
    api.posts.add.return_value = {"id": "p1"}

    await service.create_post({"title": "Hello", "html": "<p>Hi</p>"})

    _, options = api.posts.add.await_args.args
    assert options == {"source": "html"}


async def test_upload_image(service, api, tmp_path):
    image = tmp_path / "cover.png"
    image.write_bytes(b"\x89PNG")
    api.images.upload.return_value = {"url": "https://ghost.test/content/images/cover.png"}

    result = await service.upload_image(image, ref="cover")

    assert result["url"].endswith("cover.png")
    api.images.upload.assert_awaited_once_with({"file": str(image), "ref": "cover"})


async def test_upload_image_missing_file(service, api, tmp_path):
    with pytest.raises(NotFoundError, match="Image file not found"):
        await service.upload_image(tmp_path / "missing.png")

    with pytest.raises(ValidationError, match="Image path is required"):
        await service.upload_image("")

    api.images.upload.assert_not_called()


async def test_upload_image_upstream_failure(service, api, http_error, tmp_path):
    image = tmp_path / "cover.png"
    image.write_bytes(b"\x89PNG")
    api.images.upload.side_effect = http_error(
        415,
        json={"errors": [{"message": "Please select a valid image.", "type": "UnsupportedMediaTypeError"}]},
        path="images/upload/",
    )

    with pytest.raises(ValidationError, match="Image upload failed: .*valid image"):
        await service.upload_image(image)


async def test_upload_image_open_circuit_is_not_rewrapped(service, invoker, tmp_path):
    image = tmp_path / "cover.png"
    image.write_bytes(b"\x89PNG")
    for _ in range(invoker.breaker.config.failure_threshold):
        invoker.breaker.record_failure()

    with pytest.raises(CircuitOpenError):
        await service.upload_image(image)
