import os
import re
from collections.abc import Mapping
from datetime import timedelta

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from ghostgate.services.errors import ConfigurationError

load_dotenv()

_ADMIN_KEY_PATTERN = re.compile(r"^[0-9a-f]+:[0-9a-f]+$", re.IGNORECASE)


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Ghost Admin API
    ghost_admin_api_url: str = Field(default="", alias="GHOST_ADMIN_API_URL")
    ghost_admin_api_key: str = Field(default="", alias="GHOST_ADMIN_API_KEY")
    ghost_api_version: str = Field(default="v5.0", alias="GHOST_API_VERSION")
    ghost_request_timeout: float = Field(default=30.0, alias="GHOST_REQUEST_TIMEOUT")
    ghost_max_retries: int = Field(default=3, ge=0, alias="GHOST_MAX_RETRIES")
    ghost_use_circuit_breaker: bool = Field(default=True, alias="GHOST_USE_CIRCUIT_BREAKER")

    # Circuit Breaker
    circuit_failure_threshold: int = Field(default=5, ge=1, alias="CIRCUIT_FAILURE_THRESHOLD")
    circuit_reset_timeout: float = Field(default=60.0, gt=0, alias="CIRCUIT_RESET_TIMEOUT")

    # Cache
    cache_max_size: int = Field(default=100, ge=1, alias="CACHE_MAX_SIZE")
    cache_item_ttl: float = Field(default=300.0, gt=0, alias="CACHE_ITEM_TTL")
    cache_collection_ttl: float = Field(default=60.0, gt=0, alias="CACHE_COLLECTION_TTL")
    cache_debug: bool = Field(default=False, alias="CACHE_DEBUG")
    dedupe_in_flight: bool = Field(default=False, alias="DEDUPE_IN_FLIGHT")

    # Resources
    default_page_limit: int = Field(default=15, ge=1, alias="DEFAULT_PAGE_LIMIT")
    polling_interval: float = Field(default=60.0, gt=0, alias="POLLING_INTERVAL")
    prefetch_uris: str = Field(default="", alias="PREFETCH_URIS")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from environment variables (``.env`` already loaded)."""
        source = os.environ if environ is None else environ
        known = {f.alias for f in cls.model_fields.values() if f.alias}
        return cls.model_validate({k: v for k, v in source.items() if k in known})

    @property
    def reset_timeout(self) -> timedelta:
        return timedelta(seconds=self.circuit_reset_timeout)

    @property
    def item_ttl(self) -> timedelta:
        return timedelta(seconds=self.cache_item_ttl)

    @property
    def collection_ttl(self) -> timedelta:
        return timedelta(seconds=self.cache_collection_ttl)

    @property
    def polling_timedelta(self) -> timedelta:
        return timedelta(seconds=self.polling_interval)

    def prefetch_uri_list(self) -> list[str]:
        return [uri.strip() for uri in self.prefetch_uris.split(",") if uri.strip()]

    def missing_ghost_keys(self) -> list[str]:
        missing = []
        if not self.ghost_admin_api_url:
            missing.append("GHOST_ADMIN_API_URL")
        if not self.ghost_admin_api_key:
            missing.append("GHOST_ADMIN_API_KEY")
        return missing

    def require_ghost(self) -> None:
        """Raise ConfigurationError unless the Ghost credentials are usable."""
        missing = self.missing_ghost_keys()
        if missing:
            raise ConfigurationError(
                f"Missing required Ghost configuration: {', '.join(missing)}",
                missing_keys=missing,
            )
        if not _ADMIN_KEY_PATTERN.match(self.ghost_admin_api_key):
            raise ConfigurationError(
                "GHOST_ADMIN_API_KEY must have the form <id>:<hex secret>",
                missing_keys=["GHOST_ADMIN_API_KEY"],
            )
