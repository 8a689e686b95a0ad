"""Retry logic for calls to external services."""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

import aiohttp

from ..errors import ExternalServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Failures worth another attempt. Quota and plan limit errors are not here.
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    ExternalServiceError,
    aiohttp.ClientError,
    asyncio.TimeoutError,
    TimeoutError,
    ConnectionError,
)


async def retry_async(
    func: Callable[[], Awaitable[T]],
    attempts: int = 3,
    delay_secs: float = 0.5,
    backoff_multiplier: float = 2.0,
    retry_on: tuple[type[BaseException], ...] = TRANSIENT_ERRORS,
    description: str = "",
) -> T:
    """
    Await ``func()`` until it succeeds or ``attempts`` are used up.

    Args:
        func: Zero-argument coroutine factory, called once per attempt
        attempts: Maximum number of attempts
        delay_secs: Delay before the second attempt in seconds
        backoff_multiplier: Multiplier applied to the delay after each retry
        retry_on: Exception types that trigger a retry; others propagate at once
        description: Label used in log messages

    Raises the last error when every attempt failed.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    label = description or getattr(func, "__name__", "operation")
    current_delay = delay_secs
    for attempt in range(1, attempts + 1):
        try:
            return await func()
        except retry_on as exc:
            if attempt >= attempts:
                logger.error(f"{label} failed after {attempts} attempts: {exc}")
                raise
            logger.warning(
                f"{label} failed (attempt {attempt}/{attempts}): {exc}. "
                f"Retrying in {current_delay}s..."
            )
            await asyncio.sleep(current_delay)
            current_delay *= backoff_multiplier

    raise AssertionError("unreachable")
