"""
RemoteInvoker - one logical ``resource.action`` call against the upstream.

Combines:
- Capability validation (resource exists, action is a known verb for it)
- CircuitBreaker for failure protection
- retry_with_backoff for transient failures
- ErrorClassifier so every failure leaves as a typed error
"""

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, replace
from typing import Any

from loguru import logger

from ghostgate.services.circuit_breaker import CircuitBreaker
from ghostgate.services.classifier import classify_error
from ghostgate.services.client import CAPABILITIES
from ghostgate.services.errors import NotFoundError, ValidationError
from ghostgate.services.retry import BackoffConfig, retry_with_backoff


@dataclass
class InvokeConfig:
    """Per-call resilience settings."""

    max_retries: int = 3
    use_circuit_breaker: bool = True


def counts_against_upstream(error: BaseException) -> bool:
    """Caller mistakes (bad input, missing records) say nothing about upstream health."""
    return not isinstance(error, (ValidationError, NotFoundError))


class RemoteInvoker:
    """
    Dispatches ``resource.action`` calls to the upstream API object.

    Usage:
        invoker = RemoteInvoker(api, breaker)
        post = await invoker.invoke("posts", "read", {"id": "1"}, {"include": "tags"})
        posts = await invoker.invoke("posts", "browse", {}, {"limit": 5}, {"max_retries": 0})
    """

    def __init__(
        self,
        api: Any,
        breaker: CircuitBreaker | None = None,
        config: InvokeConfig | None = None,
        capabilities: Mapping[str, frozenset[str]] = CAPABILITIES,
        backoff: BackoffConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        service_id: str = "ghost",
    ):
        self.api = api
        self.service_id = service_id
        self.breaker = breaker or CircuitBreaker(
            service_id, is_failure=counts_against_upstream
        )
        self.config = config or InvokeConfig()
        self._capabilities = capabilities
        self._backoff = backoff
        self._sleep = sleep

    def supports(self, resource: str, action: str) -> bool:
        """Whether ``resource.action`` is a supported capability."""
        return action in self._capabilities.get(resource, ())

    def _resolve(self, resource: str, action: str) -> Callable[..., Awaitable[Any]]:
        if not self.supports(resource, action):
            raise ValidationError(
                f"Invalid Ghost API resource or action: {resource}.{action}"
            )
        method = getattr(getattr(self.api, resource, None), action, None)
        if not callable(method):
            raise ValidationError(
                f"Invalid Ghost API resource or action: {resource}.{action}"
            )
        return method

    def _merge_config(self, config: InvokeConfig | Mapping[str, Any] | None) -> InvokeConfig:
        if config is None:
            return self.config
        if isinstance(config, InvokeConfig):
            return config
        return replace(
            self.config,
            **{k: v for k, v in config.items() if k in ("max_retries", "use_circuit_breaker")},
        )

    @staticmethod
    def _dispatch(
        method: Callable[..., Awaitable[Any]],
        action: str,
        data: Any,
        options: dict[str, Any],
    ) -> Awaitable[Any]:
        """Call ``method`` with the argument order its verb expects."""
        if action in ("add", "edit"):
            return method(data, options)
        if action == "upload":
            return method(data)
        if action in ("browse", "read"):
            return method(options, data)
        if action == "delete":
            identifier = data.get("id", data) if isinstance(data, dict) else data
            return method(identifier, options)
        return method(data)

    async def invoke(
        self,
        resource: str,
        action: str,
        data: Any = None,
        options: dict[str, Any] | None = None,
        config: InvokeConfig | Mapping[str, Any] | None = None,
    ) -> Any:
        """
        Execute ``resource.action`` with circuit breaker and retries.

        Raises:
            ValidationError: Unsupported resource/action, or rejected input
            NotFoundError: The addressed record does not exist
            RateLimitError / UpstreamError: After retries are exhausted
            CircuitOpenError: The breaker is open; the upstream was not called
        """
        method = self._resolve(resource, action)
        settings = self._merge_config(config)
        operation = f"{resource}.{action}"
        data = {} if data is None else data
        options = dict(options or {})
        identifier = data.get("id") if isinstance(data, dict) else data

        async def execute_request() -> Any:
            logger.debug(f"Executing Ghost API request: {operation}")
            try:
                result = await self._dispatch(method, action, data, options)
            except Exception as e:
                raise classify_error(
                    e,
                    operation=operation,
                    identifier=identifier,
                    service_id=self.service_id,
                ) from e
            logger.debug(f"Successfully executed Ghost API request: {operation}")
            return result

        if settings.use_circuit_breaker:

            async def wrapped() -> Any:
                return await self.breaker.execute(execute_request)

        else:
            wrapped = execute_request

        def on_retry(attempt: int, error: BaseException) -> None:
            logger.info(f"Retrying {operation} (attempt {attempt}/{settings.max_retries})")
            if settings.use_circuit_breaker:
                logger.debug(f"Circuit breaker state: {self.breaker.get_state()}")

        try:
            return await retry_with_backoff(
                wrapped,
                max_attempts=settings.max_retries,
                on_retry=on_retry,
                backoff=self._backoff,
                sleep=self._sleep,
            )
        except Exception as e:
            logger.warning(f"Ghost API request {operation} failed: {e}")
            raise
