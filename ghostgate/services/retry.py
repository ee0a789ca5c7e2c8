"""
Retry with backoff.

Only retryable errors (rate limits, transient upstream failures) are retried.
Rate limits wait a fixed, larger delay; other transient failures back off
exponentially with jitter.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import TypeVar

from loguru import logger

from ghostgate.services.classifier import classify_error
from ghostgate.services.errors import RateLimitError, is_retryable

T = TypeVar("T")


@dataclass
class BackoffConfig:
    """Delay schedule for retries."""

    initial_delay: timedelta = timedelta(seconds=1)
    max_delay: timedelta = timedelta(seconds=30)
    exponential_base: float = 2.0
    jitter: float = 0.3  # Up to +30% of the computed delay
    rate_limit_delay: timedelta = timedelta(seconds=5)


def calculate_retry_delay(
    attempt: int,
    error: BaseException,
    config: BackoffConfig | None = None,
) -> float:
    """
    Seconds to wait before retry number ``attempt`` (1-based).

    Rate limits use the upstream's Retry-After when known, otherwise the
    fixed ``rate_limit_delay``.
    """
    config = config or BackoffConfig()

    if isinstance(error, RateLimitError):
        if error.retry_after:
            return float(error.retry_after)
        return config.rate_limit_delay.total_seconds()

    delay = config.initial_delay.total_seconds() * (
        config.exponential_base ** max(attempt - 1, 0)
    )
    delay = min(delay, config.max_delay.total_seconds())
    if config.jitter:
        delay += random.uniform(0, delay * config.jitter)
    return delay


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    on_retry: Callable[[int, BaseException], None] | None = None,
    backoff: BackoffConfig | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Call ``operation`` until it succeeds, retrying up to ``max_attempts`` times.

    The operation runs at most ``max_attempts + 1`` times. Non-retryable
    errors are re-raised after the first attempt; once retries are
    exhausted the last error is re-raised.

    Args:
        operation: Zero-argument coroutine function
        max_attempts: Number of retries after the first attempt
        on_retry: Called as ``on_retry(attempt, error)`` before each retry
        backoff: Delay schedule
        sleep: Awaitable sleep, injectable for tests
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            classified = classify_error(e)

            if not is_retryable(classified):
                logger.debug(f"[Retry] Not retryable, failing fast: {classified}")
                raise

            if attempt >= max_attempts:
                logger.error(
                    f"[Retry] Retries exhausted after {attempt + 1} attempts: {classified}"
                )
                raise

            attempt += 1
            delay = calculate_retry_delay(attempt, classified, backoff)
            logger.warning(
                f"[Retry] Attempt {attempt}/{max_attempts} in {delay:.2f}s: {classified}"
            )

            if on_retry:
                try:
                    on_retry(attempt, e)
                except Exception as callback_error:
                    logger.warning(f"[Retry] on_retry callback failed: {callback_error}")

            await sleep(delay)
