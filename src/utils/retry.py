"""
Retry utilities for the Paygate gateway
Exponential backoff with jitter for idempotent outbound reads
"""

import asyncio
import random
from dataclasses import dataclass
from functools import wraps
from typing import Optional, Callable, Any, Awaitable

import httpx

from ..models.errors import APIError, RetryableError
from ..utils.logger import log, log_error
from ..utils.metrics import record_retry_attempt, record_retry_failure


@dataclass
class RetryConfig:
    """Configuration for retry behavior"""

    max_attempts: int = 3
    base_delay: float = 0.5  # seconds
    max_delay: float = 5.0  # seconds
    exponential_base: float = 2.0
    jitter: bool = True


def is_retryable_exception(exception: Exception) -> bool:
    """
    Default classifier for retryable exceptions

    Args:
        exception: The exception to classify

    Returns:
        True if the exception should trigger a retry
    """
    if isinstance(exception, RetryableError):
        return True

    # Gateway errors are final; a missing backend never becomes available by waiting
    if isinstance(exception, APIError):
        return False

    # Network level failures from httpx or the socket layer
    if isinstance(exception, (httpx.TransportError, ConnectionError, TimeoutError)):
        return True

    # Retry 5xx server errors, 429 rate limits and status 0 (no response)
    status = getattr(exception, "status_code", None)
    if isinstance(status, int):
        return status >= 500 or status == 429 or status == 0

    return False


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """
    Calculate delay after a failed attempt with exponential backoff and jitter

    Args:
        attempt: Attempt number that just failed (1-based)
        config: Retry configuration

    Returns:
        Delay in seconds before next attempt
    """
    delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    delay = min(delay, config.max_delay)

    if config.jitter:
        # Full jitter
        delay = delay * random.random()

    return delay


async def retry_async(
    operation: Callable[[], Awaitable[Any]],
    config: Optional[RetryConfig] = None,
    classify: Optional[Callable[[Exception], bool]] = None,
    operation_name: str = "async_operation",
) -> Any:
    """
    Retry an async operation with exponential backoff

    The last exception is re-raised unchanged once attempts are exhausted,
    so callers see the same error type a single call would have produced.
    """
    config = config or RetryConfig()
    classify = classify or is_retryable_exception

    for attempt in range(1, config.max_attempts + 1):
        try:
            return await operation()
        except Exception as e:
            if not classify(e):
                raise

            if attempt >= config.max_attempts:
                log_error(
                    "retry_failed",
                    f"All retry attempts exhausted for {operation_name}",
                    operation=operation_name,
                    total_attempts=config.max_attempts,
                    exception_type=type(e).__name__,
                    exception_message=str(e),
                )
                record_retry_failure(operation_name)
                raise

            delay = calculate_delay(attempt, config)
            log.warning(
                f"Retry attempt {attempt}/{config.max_attempts} for {operation_name}",
                extra={
                    "event_type": "retry_attempt",
                    "operation": operation_name,
                    "attempt": attempt,
                    "max_attempts": config.max_attempts,
                    "delay_seconds": delay,
                    "exception_type": type(e).__name__,
                    "exception_message": str(e),
                },
            )
            record_retry_attempt(operation_name)

            if delay > 0:
                await asyncio.sleep(delay)


def retryable(
    config: Optional[RetryConfig] = None,
    classify: Optional[Callable[[Exception], bool]] = None,
):
    """
    Decorator adding retry logic to a coroutine function

    Args:
        config: Retry configuration (uses defaults if None)
        classify: Function to determine if exception is retryable
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            return await retry_async(
                lambda: func(*args, **kwargs),
                config=config,
                classify=classify,
                operation_name=func.__qualname__,
            )

        return wrapper

    return decorator


# Alias used by the provider integrations
retry_with_backoff = retryable
