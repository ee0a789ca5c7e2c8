from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest
from loguru import logger

from ghostgate.resources.cache import LRUCache
from ghostgate.resources.fetcher import ResourceFetcher
from ghostgate.resources.manager import ResourceManager
from ghostgate.services.circuit_breaker import CircuitBreaker
from ghostgate.services.client import CAPABILITIES
from ghostgate.services.invoker import RemoteInvoker, counts_against_upstream

START_TIME = 1_700_000_000.0


class FakeClock:
    """Epoch-seconds clock that only moves when told to."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ManualPoller:
    """Poller whose jobs run only when a test ticks them."""

    def __init__(self):
        self.jobs = {}
        self.intervals = {}
        self.cancelled = []
        self.is_shutdown = False

    def schedule(self, job_id, interval, func):
        self.jobs[job_id] = func
        self.intervals[job_id] = interval

    def cancel(self, job_id):
        self.cancelled.append(job_id)
        self.intervals.pop(job_id, None)
        return self.jobs.pop(job_id, None) is not None

    def shutdown(self):
        self.is_shutdown = True

    async def tick(self, job_id):
        job = self.jobs.get(job_id)
        if job is not None:
            await job()


class RecordingSleep:
    """Async sleep that returns immediately and remembers the delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def make_api():
    """Ghost API double: one AsyncMock per supported (resource, action)."""
    return SimpleNamespace(
        **{
            resource: SimpleNamespace(
                **{action: AsyncMock(name=f"{resource}.{action}") for action in actions}
            )
            for resource, actions in CAPABILITIES.items()
        }
    )


def make_http_error(status, json=None, headers=None, path="posts/"):
    request = httpx.Request("GET", f"https://ghost.test/ghost/api/admin/{path}")
    response = httpx.Response(status, json=json, headers=headers, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def poller():
    return ManualPoller()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def http_error():
    return make_http_error


@pytest.fixture
def api():
    return make_api()


@pytest.fixture
def breaker(clock):
    return CircuitBreaker("ghost", clock=clock, is_failure=counts_against_upstream)


@pytest.fixture
def invoker(api, breaker, sleep):
    return RemoteInvoker(api, breaker, sleep=sleep)


@pytest.fixture
def cache(clock):
    return LRUCache(max_size=100, clock=clock)


@pytest.fixture
def fetcher(invoker, cache):
    return ResourceFetcher(invoker, cache)


@pytest.fixture
def manager(fetcher, poller):
    return ResourceManager(fetcher, poller)


@pytest.fixture
def log_messages():
    """Collect loguru messages emitted during the test."""
    messages = []
    handler_id = logger.add(lambda m: messages.append(m.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)
