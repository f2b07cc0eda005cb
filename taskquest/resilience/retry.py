"""Retry logic with exponential backoff and jitter

Implements smart retry logic that:
1. Only retries transient errors (timeouts, rate limits, 5xx errors, version conflicts)
2. Uses exponential backoff with jitter to prevent thundering herd
3. Gives up after max retries to avoid infinite loops
"""

import asyncio
import random
import logging
from typing import Callable, Any, TypeVar
import httpx

from taskquest.exceptions import ConcurrencyConflict

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Retry configuration
MAX_RETRIES = 3
BASE_DELAY = 1.0  # seconds
MAX_DELAY = 30.0  # seconds
JITTER = 0.1  # 10% random jitter


def is_retryable_error(exc: Exception) -> bool:
    """
    Determine if error is transient and should be retried.

    Retryable errors:
    - Progress version conflicts (the whole read-modify-write is redone)
    - Network timeouts
    - HTTP 429 (rate limit)
    - HTTP 500/502/503/504 (server errors)

    Non-retryable errors:
    - HTTP 400/401/403/404 (client errors)
    - Validation errors
    - Anything else

    Args:
        exc: The exception to check

    Returns:
        True if error should be retried, False otherwise
    """
    if isinstance(exc, ConcurrencyConflict):
        return True

    # HTTPX errors
    if isinstance(exc, httpx.HTTPStatusError):
        # Retry on rate limits and server errors
        status_code = exc.response.status_code
        return status_code in [429, 500, 502, 503, 504]

    if isinstance(exc, httpx.TimeoutException):
        return True

    # Default: don't retry unknown errors
    return False


def calculate_backoff(attempt: int, base_delay: float = BASE_DELAY) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Formula: delay = min(base_delay * (2 ** attempt), MAX_DELAY) + jitter
    Jitter is random value between -10% and +10% of delay

    Args:
        attempt: The retry attempt number (0-indexed)
        base_delay: Delay for the first retry

    Returns:
        Delay in seconds

    Example:
        Attempt 0: ~1s
        Attempt 1: ~2s
        Attempt 2: ~4s
    """
    # Exponential backoff
    delay = min(base_delay * (2 ** attempt), MAX_DELAY)

    # Add jitter to prevent thundering herd
    jitter_amount = random.uniform(-JITTER * delay, JITTER * delay)
    final_delay = delay + jitter_amount

    return max(final_delay, 0.0)  # Ensure non-negative


async def retry_with_backoff(
    func: Callable[..., T],
    *args: Any,
    max_retries: int = MAX_RETRIES,
    base_delay: float = BASE_DELAY,
    **kwargs: Any
) -> T:
    """
    Retry async function with exponential backoff.

    Only retries transient errors. Gives up after max_retries attempts.

    Args:
        func: Async function to retry
        max_retries: Maximum number of retry attempts (default: 3)
        base_delay: Delay before the first retry in seconds
        *args, **kwargs: Arguments to pass to func

    Returns:
        Result from func

    Raises:
        Last exception if all retries exhausted or non-retryable error

    Example:
        result = await retry_with_backoff(api_call, arg1, arg2, max_retries=3)
    """
    for attempt in range(max_retries + 1):
        try:
            return await func(*args, **kwargs)

        except Exception as e:
            # If this was the last attempt, give up
            if attempt == max_retries:
                if max_retries:
                    logger.error(
                        f"[RETRY] All {max_retries} retries exhausted for {func.__name__}"
                    )
                raise

            # Check if error is retryable
            if not is_retryable_error(e):
                raise

            backoff = calculate_backoff(attempt, base_delay)

            from taskquest.observability.metrics import record_retry
            record_retry(func.__name__)

            logger.info(
                f"[RETRY] Attempt {attempt + 1}/{max_retries} for {func.__name__} "
                f"after {backoff:.2f}s (error: {type(e).__name__})"
            )

            # Wait before retrying
            await asyncio.sleep(backoff)

    raise RuntimeError("Retry logic failed unexpectedly")
