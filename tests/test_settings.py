from datetime import timedelta

import pytest
from pydantic import ValidationError as SettingsValidationError

from ghostgate.context import build_context
from ghostgate.services.client import GhostAdminAPI
from ghostgate.services.errors import ConfigurationError
from ghostgate.settings import Settings

ADMIN_KEY = "6489f2bd6a1c:a1b2c3d4e5f60718293a4b5c6d7e8f90"


def test_defaults():
    settings = Settings.from_env({})

    assert settings.ghost_api_version == "v5.0"
    assert settings.ghost_max_retries == 3
    assert settings.circuit_failure_threshold == 5
    assert settings.reset_timeout == timedelta(seconds=60)
    assert settings.item_ttl == timedelta(minutes=5)
    assert settings.collection_ttl == timedelta(minutes=1)
    assert settings.cache_max_size == 100
    assert settings.dedupe_in_flight is False
    assert settings.prefetch_uri_list() == []


def test_from_env_parses_values_and_ignores_unknown_keys():
    settings = Settings.from_env(
        {
            "GHOST_ADMIN_API_URL": "https://ghost.test",
            "GHOST_MAX_RETRIES": "5",
            "GHOST_USE_CIRCUIT_BREAKER": "false",
            "CACHE_ITEM_TTL": "120",
            "DEDUPE_IN_FLIGHT": "true",
            "POLLING_INTERVAL": "15",
            "PREFETCH_URIS": "ghost/posts, ghost/tags,,",
            "PATH": "/usr/bin",
        }
    )

    assert settings.ghost_admin_api_url == "https://ghost.test"
    assert settings.ghost_max_retries == 5
    assert settings.ghost_use_circuit_breaker is False
    assert settings.item_ttl == timedelta(minutes=2)
    assert settings.dedupe_in_flight is True
    assert settings.polling_timedelta == timedelta(seconds=15)
    assert settings.prefetch_uri_list() == ["ghost/posts", "ghost/tags"]


def test_from_env_rejects_invalid_numbers():
    with pytest.raises(SettingsValidationError):
        Settings.from_env({"CIRCUIT_FAILURE_THRESHOLD": "0"})


def test_require_ghost_reports_missing_keys():
    with pytest.raises(ConfigurationError) as exc_info:
        Settings.from_env({}).require_ghost()

    assert exc_info.value.missing_keys == ["GHOST_ADMIN_API_URL", "GHOST_ADMIN_API_KEY"]
    assert "GHOST_ADMIN_API_URL" in str(exc_info.value)


def test_require_ghost_rejects_malformed_key():
    settings = Settings.from_env(
        {"GHOST_ADMIN_API_URL": "https://ghost.test", "GHOST_ADMIN_API_KEY": "not-a-key"}
    )

    with pytest.raises(ConfigurationError, match="<id>:<hex secret>"):
        settings.require_ghost()


def test_build_context_without_credentials_fails():
    with pytest.raises(ConfigurationError):
        build_context(Settings.from_env({}))


async def test_build_context_wires_components(poller, clock):
    settings = Settings.from_env(
        {
            "GHOST_ADMIN_API_URL": "https://ghost.test",
            "GHOST_ADMIN_API_KEY": ADMIN_KEY,
            "CIRCUIT_FAILURE_THRESHOLD": "2",
            "CACHE_MAX_SIZE": "10",
        }
    )

    ctx = build_context(settings, clock=clock, poller=poller)

    assert isinstance(ctx.api, GhostAdminAPI)
    assert ctx.invoker.breaker is ctx.breaker
    assert ctx.breaker.config.failure_threshold == 2
    assert ctx.resources.get_cache_stats()["max_size"] == 10
    assert ctx.ghost.resources is ctx.resources

    await ctx.aclose()
    assert poller.is_shutdown


async def test_build_context_accepts_an_injected_api(api, poller):
    ctx = build_context(Settings.from_env({}), api=api, poller=poller)

    assert ctx.api is api
    await ctx.aclose()
