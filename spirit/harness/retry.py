"""
Retry Logic — resilience against transient model failures.

Model calls fail. Networks drop. Rate limits hit. A failed call inside a
consciousness cycle would otherwise cost the whole cycle, so transient errors
are retried here with exponential backoff and jitter. Everything else is
raised immediately for the caller to record.

Retryable:
- 429 (rate limit)
- 500, 502, 503, 529 (server errors)
- connection errors and timeouts

Not retryable:
- 400, 401, 403, 404 and any other client error
- anything that is not an API or network error
"""

from __future__ import annotations

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional, TypeVar

import anthropic
import httpx
import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_RETRYABLE_STATUS = (429, 500, 502, 503, 529)


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
        exponential_base: float = 2.0,
        jitter_range: float = 0.25,
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter_range = jitter_range

    @classmethod
    def from_model_config(cls, config: Any) -> "RetryConfig":
        return cls(
            max_retries=int(config.retry_max_retries),
            base_delay=float(config.retry_base_delay),
            max_delay=float(config.retry_max_delay),
            exponential_base=float(config.retry_exponential_base),
            jitter_range=float(config.retry_jitter_range),
        )


def is_retryable_error(error: BaseException) -> bool:
    """Return True when ``error`` is transient and worth another attempt."""
    if isinstance(error, (anthropic.RateLimitError, anthropic.InternalServerError)):
        return True
    if isinstance(error, anthropic.APIStatusError):
        return error.status_code in _RETRYABLE_STATUS
    if isinstance(error, (anthropic.APIConnectionError, httpx.TransportError)):
        return True
    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True
    return False


def compute_delay(
    attempt: int,
    config: RetryConfig,
    retry_after: Optional[float] = None,
) -> float:
    """
    Compute the delay before the next retry attempt.

        delay = min(max_delay, base_delay * exponential_base ** attempt)
        delay += jitter in [-jitter_range * delay, +jitter_range * delay]

    A server-provided Retry-After wins, floored at one second.
    """
    if retry_after is not None and retry_after > 0:
        return max(1.0, retry_after)

    delay = min(config.base_delay * (config.exponential_base ** attempt), config.max_delay)
    jitter = delay * config.jitter_range * (2 * random.random() - 1)
    return max(0.0, delay + jitter)


def _retry_after_seconds(error: BaseException) -> Optional[float]:
    response = getattr(error, "response", None)
    if response is None:
        return None
    try:
        value = response.headers.get("retry-after")
    except AttributeError:
        return None
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


async def with_retries(
    func: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable[[int, BaseException, float], Any]] = None,
) -> T:
    """
    Await ``func()`` and retry transient failures.

    Args:
        func: Zero-argument coroutine factory (use a closure).
        config: Retry configuration; defaults apply when omitted.
        on_retry: Called with (attempt, error, delay) before each sleep.

    Raises:
        The last error once retries are exhausted, or the first
        non-retryable error.
    """
    if config is None:
        config = RetryConfig()

    attempt = 0
    while True:
        try:
            return await func()
        except Exception as e:
            if not is_retryable_error(e):
                logger.error(
                    "retry.non_retryable_error",
                    error_type=type(e).__name__,
                    error=str(e)[:200],
                    attempt=attempt,
                )
                raise
            if attempt >= config.max_retries:
                logger.error(
                    "retry.exhausted",
                    error_type=type(e).__name__,
                    error=str(e)[:200],
                    total_attempts=attempt + 1,
                )
                raise

            delay = compute_delay(attempt, config, _retry_after_seconds(e))
            logger.warning(
                "retry.attempt",
                error_type=type(e).__name__,
                error=str(e)[:200],
                attempt=attempt + 1,
                max_retries=config.max_retries,
                delay_seconds=round(delay, 2),
            )
            if on_retry is not None:
                on_retry(attempt + 1, e, delay)
            attempt += 1
            await asyncio.sleep(delay)
