"""
Backoff and retry utilities.

Provides exponential backoff with jitter, used two ways:
- pacing the coordinator's conditional writes while a resource is contended
- retrying store calls that failed with a TransientStoreError

This module provides:
- calculate_backoff: Delay with exponential growth, a cap, and jitter
- contention_delay: Poll delay for the n-th contended attempt
- transient_delay: Retry delay for the n-th transient failure
- retry_async: Retry an async operation on transient failures
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from leaselock.config import PollingConfig
from leaselock.exceptions import RetryError, TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]

TRANSIENT_EXCEPTIONS: tuple[type[Exception], ...] = (TransientStoreError,)


def calculate_backoff(
    attempt: int,
    *,
    initial_delay: float,
    max_delay: float,
    multiplier: float = 2.0,
    jitter: float = 0.1,
) -> float:
    """
    Calculate backoff delay with exponential growth and jitter.

    Random jitter spreads out waiters that started polling at the same
    moment so they do not hit the store in lockstep.

    Args:
        attempt: Current attempt number (0-based)
        initial_delay: Delay for attempt 0, in seconds
        max_delay: Cap applied before jitter, in seconds
        multiplier: Growth factor per attempt
        jitter: Fraction of the delay to add or remove at random (0-1)

    Returns:
        Delay in seconds

    Example:
        >>> calculate_backoff(3, initial_delay=1.0, max_delay=60.0, jitter=0.0)
        8.0
    """
    delay = initial_delay * (multiplier**attempt)
    delay = min(delay, max_delay)

    jitter_range = delay * jitter
    delay += random.uniform(-jitter_range, jitter_range)  # nosec B311 - not crypto

    return max(0.0, delay)


def contention_delay(attempt: int, config: PollingConfig) -> float:
    """Delay before the next conditional write after ``attempt`` contended ones (0-based)."""
    return calculate_backoff(
        attempt,
        initial_delay=config.interval,
        max_delay=config.max_interval,
        multiplier=config.backoff_multiplier,
        jitter=config.jitter,
    )


def transient_delay(attempt: int, config: PollingConfig) -> float:
    """Delay before retrying after ``attempt`` consecutive transient failures (0-based)."""
    return calculate_backoff(
        attempt,
        initial_delay=config.transient_initial_delay,
        max_delay=config.transient_max_delay,
        jitter=config.jitter,
    )


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    config: PollingConfig | None = None,
    retryable_exceptions: tuple[type[Exception], ...] = TRANSIENT_EXCEPTIONS,
    operation_name: str = "operation",
    sleep: Sleep = asyncio.sleep,
) -> T:
    """
    Retry an async operation with exponential backoff.

    Only ``retryable_exceptions`` are retried, at most
    ``config.transient_retries`` times. Anything else propagates on the
    first occurrence.

    Args:
        operation: Async function to retry
        config: Polling configuration (uses defaults if None)
        retryable_exceptions: Exception types to retry on
        operation_name: Name for logging purposes
        sleep: Awaitable sleep, replaceable for virtual-time tests

    Returns:
        Result of successful operation

    Raises:
        RetryError: If all retries exhausted
        Exception: Non-retryable exceptions are raised immediately

    Example:
        >>> await retry_async(lambda: store.release("job-42"), operation_name="release")
    """
    config = config or PollingConfig()
    last_error: Exception | None = None
    attempts = 0

    for attempt in range(config.transient_retries + 1):
        attempts += 1
        try:
            result = await operation()
        except retryable_exceptions as e:
            last_error = e
            if attempt < config.transient_retries:
                delay = transient_delay(attempt, config)
                logger.warning(
                    "Retrying %s after transient failure (attempt %d/%d, delay %.3fs): %s",
                    operation_name,
                    attempt + 1,
                    config.transient_retries + 1,
                    delay,
                    e,
                )
                await sleep(delay)
            else:
                logger.error(
                    "All retries exhausted for %s after %d attempts: %s",
                    operation_name,
                    attempts,
                    e,
                )
        else:
            if attempt > 0:
                logger.info("Operation %s succeeded after %d attempts", operation_name, attempts)
            return result

    assert last_error is not None
    raise RetryError(
        f"{operation_name} failed after {attempts} attempts: {last_error}",
        attempts=attempts,
        last_error=last_error,
    )


__all__ = [
    "TRANSIENT_EXCEPTIONS",
    "Sleep",
    "calculate_backoff",
    "contention_delay",
    "retry_async",
    "transient_delay",
]
