"""Retry with exponential backoff for provider HTTP calls.

Only read-only calls are retried. Starting a provider job is not: a retried
start could launch (and bill) the same job twice, so submit failures go
straight to the batch as errors.

A call is retried when it raises one of the config's retryable exceptions.
HTTP responses are retried by raising TransientStatusError from inside the
retried call for the statuses in `retryable_status_codes`.
"""

import asyncio
import logging
from dataclasses import dataclass
from functools import wraps
from typing import Any, Awaitable, Callable, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransientStatusError(Exception):
    """A response whose status is worth another attempt (rate limit, 5xx)."""

    def __init__(self, response: httpx.Response):
        super().__init__(f"HTTP {response.status_code}")
        self.response = response


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    retryable_exceptions: tuple = (Exception,)
    retryable_status_codes: frozenset = frozenset({429, 500, 502, 503, 504})

    def check_status(self, response: httpx.Response) -> httpx.Response:
        """Raise TransientStatusError for a retryable status, else pass through."""
        if response.status_code in self.retryable_status_codes:
            raise TransientStatusError(response)
        return response


def exponential_backoff(attempt: int, config: RetryConfig) -> float:
    """Delay before the attempt after `attempt` (1-based), capped at max_delay."""
    delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    return min(delay, config.max_delay)


def with_retry(
    config: RetryConfig | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator adding retries with exponential backoff to a coroutine.

    The last exception is re-raised once attempts run out.
    """
    if config is None:
        config = RetryConfig()

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except config.retryable_exceptions as e:
                    if attempt >= config.max_attempts:
                        raise
                    delay = exponential_backoff(attempt, config)
                    logger.warning(
                        f"{func.__name__} failed ({type(e).__name__}: {e}), "
                        f"attempt {attempt}/{config.max_attempts}, retrying in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)
                    attempt += 1

        return wrapper

    return decorator


# Transport hiccups and transient statuses on read-only provider calls
NETWORK_RETRY = RetryConfig(
    max_attempts=3,
    base_delay=1.0,
    max_delay=30.0,
    exponential_base=2.0,
    retryable_exceptions=(httpx.TransportError, TransientStatusError),
)
