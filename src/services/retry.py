"""Retry and timing utilities using tenacity."""
from __future__ import annotations

import time
from typing import Callable, Type, TypeVar, ParamSpec

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)

from core.config import get_settings
from core.logging_config import get_logger

LOGGER = get_logger(__name__)
SETTINGS = get_settings()

P = ParamSpec("P")
T = TypeVar("T")

# Transport-level failures are the only ones worth repeating; a missing token
# or marker will be missing on the next attempt too.
TRANSIENT_HTTP_ERRORS: tuple[Type[Exception], ...] = (httpx.TransportError,)


def with_retry(
    max_attempts: int = 3,
    max_delay_seconds: float = 30,
    retry_exceptions: tuple[Type[Exception], ...] = TRANSIENT_HTTP_ERRORS,
    exponential_base: float = 2,
    min_wait: float = 1,
    max_wait: float = 10,
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """
    Decorator to add retry logic to a function or coroutine function.

    tenacity detects coroutine functions and sleeps with asyncio between
    attempts, so the decorated callable keeps its sync/async nature.

    Args:
        max_attempts: Maximum number of attempts, including the first.
        max_delay_seconds: Maximum total time to spend retrying.
        retry_exceptions: Tuple of exception types to retry on.
        exponential_base: Multiplier for exponential backoff.
        min_wait: Minimum wait time between retries.
        max_wait: Maximum wait time between retries.

    Returns:
        Decorated function with retry logic.

    Example:
        @with_retry(max_attempts=2)
        async def load_search_page(client):
            ...
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        return retry(
            retry=retry_if_exception_type(retry_exceptions),
            stop=stop_after_attempt(max_attempts) | stop_after_delay(max_delay_seconds),
            wait=wait_exponential(multiplier=exponential_base, min=min_wait, max=max_wait),
            before_sleep=before_sleep_log(LOGGER, log_level=20),
            reraise=True,
        )(func)

    return decorator


def scraper_retry() -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Retry policy for idempotent upstream GETs, from settings."""
    return with_retry(
        max_attempts=SETTINGS.scraper_max_retries,
        max_delay_seconds=SETTINGS.scraper_request_timeout * SETTINGS.scraper_max_retries,
        exponential_base=SETTINGS.scraper_retry_wait_seconds,
        min_wait=SETTINGS.scraper_retry_wait_seconds,
        max_wait=max(SETTINGS.scraper_retry_wait_seconds * 4, 0.0),
    )


def elapsed_ms(start: float) -> float:
    """Milliseconds since a ``time.perf_counter()`` reading."""
    return (time.perf_counter() - start) * 1000


__all__ = [
    "with_retry",
    "scraper_retry",
    "elapsed_ms",
    "TRANSIENT_HTTP_ERRORS",
]
