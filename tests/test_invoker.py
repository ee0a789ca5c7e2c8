from datetime import timedelta

import pytest

from ghostgate.services.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from ghostgate.services.errors import (
    CircuitOpenError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from ghostgate.services.invoker import InvokeConfig, RemoteInvoker, counts_against_upstream


@pytest.fixture
def tight_breaker(clock):
    return CircuitBreaker(
        "ghost",
        CircuitBreakerConfig(failure_threshold=2, reset_timeout=timedelta(seconds=30)),
        clock=clock,
        is_failure=counts_against_upstream,
    )


async def test_unknown_resource_is_rejected(invoker):
    with pytest.raises(ValidationError, match="Invalid Ghost API resource or action: widgets.browse"):
        await invoker.invoke("widgets", "browse")


async def test_unknown_action_is_rejected(invoker, api):
    with pytest.raises(ValidationError):
        await invoker.invoke("site", "delete")

    with pytest.raises(ValidationError):
        await invoker.invoke("posts", "publish")


async def test_add_and_edit_pass_data_then_options(invoker, api):
    api.posts.add.return_value = {"id": "1"}
    api.posts.edit.return_value = {"id": "1"}

    await invoker.invoke("posts", "add", {"title": "T"}, {"source": "html"})
    await invoker.invoke("posts", "edit", {"title": "U"}, {"id": "1"})

    api.posts.add.assert_awaited_once_with({"title": "T"}, {"source": "html"})
    api.posts.edit.assert_awaited_once_with({"title": "U"}, {"id": "1"})


async def test_browse_and_read_pass_options_then_data(invoker, api):
    api.posts.browse.return_value = []
    api.posts.read.return_value = {"id": "1"}

    await invoker.invoke("posts", "browse", {}, {"limit": 5})
    await invoker.invoke("posts", "read", {"id": "1"}, {"include": "tags"})

    api.posts.browse.assert_awaited_once_with({"limit": 5}, {})
    api.posts.read.assert_awaited_once_with({"include": "tags"}, {"id": "1"})


async def test_delete_passes_identifier_then_options(invoker, api):
    await invoker.invoke("tags", "delete", {"id": "t1"})

    api.tags.delete.assert_awaited_once_with("t1", {})


async def test_upload_passes_data_only(invoker, api):
    api.images.upload.return_value = {"url": "https://ghost.test/content/images/a.png"}

    await invoker.invoke("images", "upload", {"file": "/tmp/a.png"})

    api.images.upload.assert_awaited_once_with({"file": "/tmp/a.png"})


async def test_raw_failures_are_classified(invoker, api, http_error):
    api.posts.read.side_effect = http_error(404)

    with pytest.raises(NotFoundError):
        await invoker.invoke("posts", "read", {"id": "missing"})

    assert api.posts.read.await_count == 1
    assert invoker.breaker.get_state()["failure_count"] == 0


async def test_transient_failures_are_retried(invoker, api, http_error, sleep):
    api.site.read.side_effect = [http_error(503), http_error(502), {"title": "Blog"}]

    assert await invoker.invoke("site", "read") == {"title": "Blog"}
    assert api.site.read.await_count == 3
    assert len(sleep.delays) == 2


async def test_retries_exhausted_surface_typed_error(invoker, api, http_error):
    api.site.read.side_effect = http_error(503)

    with pytest.raises(UpstreamError) as exc_info:
        await invoker.invoke("site", "read")

    assert exc_info.value.status_code == 503
    assert api.site.read.await_count == 4


async def test_max_retries_from_call_config(invoker, api, http_error):
    api.site.read.side_effect = http_error(503)

    with pytest.raises(UpstreamError):
        await invoker.invoke("site", "read", config={"max_retries": 0})

    assert api.site.read.await_count == 1


async def test_breaker_opens_and_short_circuits(api, tight_breaker, sleep, http_error):
    invoker = RemoteInvoker(api, tight_breaker, InvokeConfig(max_retries=0), sleep=sleep)
    api.site.read.side_effect = http_error(500)

    for _ in range(2):
        with pytest.raises(UpstreamError):
            await invoker.invoke("site", "read")

    with pytest.raises(CircuitOpenError):
        await invoker.invoke("site", "read")

    assert api.site.read.await_count == 2
    assert tight_breaker.state == CircuitState.OPEN


async def test_breaker_can_be_bypassed(api, tight_breaker, sleep, http_error):
    invoker = RemoteInvoker(
        api, tight_breaker, InvokeConfig(max_retries=0, use_circuit_breaker=False), sleep=sleep
    )
    api.site.read.side_effect = http_error(500)

    for _ in range(3):
        with pytest.raises(UpstreamError):
            await invoker.invoke("site", "read")

    assert api.site.read.await_count == 3
    assert tight_breaker.state == CircuitState.CLOSED


async def test_retries_stop_once_breaker_opens(api, tight_breaker, sleep, http_error):
    invoker = RemoteInvoker(api, tight_breaker, sleep=sleep)
    api.site.read.side_effect = http_error(503)

    with pytest.raises(CircuitOpenError):
        await invoker.invoke("site", "read")

    assert api.site.read.await_count == 2
