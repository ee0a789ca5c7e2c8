"""
CircuitBreaker - Prevents cascading failures by stopping requests to failing services.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Service is failing, requests are blocked
- HALF_OPEN: Testing if service has recovered

Transitions:
- CLOSED → OPEN: When failure_threshold is reached
- OPEN → HALF_OPEN: After reset_timeout expires
- HALF_OPEN → CLOSED: On successful trial request
- HALF_OPEN → OPEN: On failed trial request
"""

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, TypeVar

from loguru import logger

from ghostgate.services.errors import CircuitOpenError

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Blocking requests
    HALF_OPEN = "HALF_OPEN"  # Testing recovery


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 5  # Failures before opening
    reset_timeout: timedelta = timedelta(seconds=60)  # Time before half-open
    half_open_max_requests: int = 1  # Trials allowed in flight while half-open


class CircuitBreaker:
    """
    Circuit breaker for a single upstream.

    One instance per upstream dependency, built once and injected into the
    callers that talk to it.

    Usage:
        cb = CircuitBreaker("ghost")
        result = await cb.execute(lambda: api.site.read({}, {}))

    ``is_failure`` decides which exceptions count against the upstream; by
    default every exception does.
    """

    def __init__(
        self,
        service_id: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.time,
        is_failure: Callable[[BaseException], bool] | None = None,
    ):
        self.service_id = service_id
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._is_failure = is_failure or (lambda error: True)

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float | None = None
        self._next_attempt: float | None = None
        self._half_open_requests = 0

    @property
    def failure_threshold(self) -> int:
        return self.config.failure_threshold

    @property
    def reset_timeout(self) -> timedelta:
        return self.config.reset_timeout

    @property
    def state(self) -> CircuitState:
        """Get current state, checking for automatic transitions."""
        if self._state == CircuitState.OPEN:
            # Check if we should transition to half-open
            if self._next_attempt is not None and self._clock() >= self._next_attempt:
                self._state = CircuitState.HALF_OPEN
                self._half_open_requests = 0
                logger.info(
                    f"Circuit breaker '{self.service_id}' transitioned to HALF_OPEN"
                )
        return self._state

    def can_request(self) -> bool:
        """Check if a request is allowed."""
        current_state = self.state

        if current_state == CircuitState.CLOSED:
            return True

        if current_state == CircuitState.HALF_OPEN:
            return self._half_open_requests < self.config.half_open_max_requests

        return False

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``operation`` through the breaker.

        Raises CircuitOpenError without calling ``operation`` while the
        circuit is open, or while the half-open trial is already in flight.
        """
        if not self.can_request():
            raise CircuitOpenError(
                self.service_id,
                self._next_attempt,
                self.get_time_until_reset() or 0,
            )

        trial = self._state == CircuitState.HALF_OPEN
        if trial:
            self._half_open_requests += 1

        try:
            result = await operation()
        except Exception as e:
            if self._is_failure(e):
                self.record_failure()
            else:
                self.record_success()
            raise
        finally:
            if trial:
                self._half_open_requests = max(self._half_open_requests - 1, 0)

        self.record_success()
        return result

    def record_success(self) -> None:
        """Record a successful request."""
        if self._state == CircuitState.HALF_OPEN:
            self._close()
        elif self._state == CircuitState.CLOSED:
            # Only consecutive failures trip the breaker
            self._failure_count = 0

    def record_failure(self) -> None:
        """Record a failed request."""
        self._failure_count += 1
        self._last_failure_time = self._clock()

        if self._state == CircuitState.HALF_OPEN:
            # Any failure in half-open reopens the circuit
            self._open()
        elif self._state == CircuitState.CLOSED:
            if self._failure_count >= self.config.failure_threshold:
                self._open()

    def _open(self) -> None:
        """Transition to OPEN state."""
        self._state = CircuitState.OPEN
        self._next_attempt = self._clock() + self.config.reset_timeout.total_seconds()
        logger.warning(
            f"Circuit breaker '{self.service_id}' OPENED after {self._failure_count} failures"
        )

    def _close(self) -> None:
        """Transition to CLOSED state."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = None
        self._next_attempt = None
        self._half_open_requests = 0
        logger.info(f"Circuit breaker '{self.service_id}' CLOSED (recovered)")

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._next_attempt = None
        self._half_open_requests = 0
        self._last_failure_time = None
        logger.info(f"Circuit breaker '{self.service_id}' manually reset")

    def get_time_until_reset(self) -> float | None:
        """Get seconds until circuit transitions to half-open."""
        if self._state != CircuitState.OPEN or self._next_attempt is None:
            return None

        return max(0.0, self._next_attempt - self._clock())

    def get_state(self) -> dict[str, Any]:
        """Snapshot of the breaker for observability."""
        return {
            "service_id": self.service_id,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "last_failure_time": self._last_failure_time,
            "next_attempt": self._next_attempt,
            "time_until_reset": self.get_time_until_reset(),
        }
