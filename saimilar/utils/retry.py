"""Retry with exponential backoff for outbound HTTP calls."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 2
    base_delay: float = 0.5  # seconds
    max_delay: float = 8.0  # seconds
    exponential_base: float = 2.0
    retryable_exceptions: tuple = (
        httpx.TimeoutException,
        httpx.ConnectError,
        httpx.ReadError,
        ConnectionError,
        TimeoutError,
    )
    # 429 (quota) is never retried
    retryable_status_codes: tuple = (500, 502, 503, 504)

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * (self.exponential_base**attempt), self.max_delay)


DEFAULT_RETRY_CONFIG = RetryConfig()


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    config: RetryConfig = DEFAULT_RETRY_CONFIG,
    operation_name: str = "operation",
    **kwargs: Any,
) -> T | None:
    """Run an async call, retrying transient failures.

    A response with a retryable status code is retried like a transport error.
    When attempts run out, the last response is returned as-is (callers check
    its status), or None if the last attempt raised.

    Args:
        func: Async function to execute
        *args: Positional arguments for the function
        config: Retry configuration
        operation_name: Name of the operation for logging
        **kwargs: Keyword arguments for the function
    """
    attempts = config.max_retries + 1

    for attempt in range(attempts):
        is_last = attempt == attempts - 1
        try:
            result = await func(*args, **kwargs)
        except config.retryable_exceptions as e:
            if is_last:
                logger.error(f"{operation_name}: Failed after {attempts} attempts: {e}")
                return None
            delay = config.delay_for(attempt)
            logger.warning(
                f"{operation_name}: {type(e).__name__}, "
                f"retrying in {delay:.1f}s (attempt {attempt + 1}/{attempts})"
            )
            await asyncio.sleep(delay)
            continue

        if (
            isinstance(result, httpx.Response)
            and result.status_code in config.retryable_status_codes
            and not is_last
        ):
            delay = config.delay_for(attempt)
            logger.warning(
                f"{operation_name}: Got status {result.status_code}, "
                f"retrying in {delay:.1f}s (attempt {attempt + 1}/{attempts})"
            )
            await asyncio.sleep(delay)
            continue

        return result

    return None
