"""Retry logic with exponential backoff and jitter

Implements retry logic for storage operations that:
1. Only retries transient errors (storage unavailable, pool timeouts)
2. Uses exponential backoff with jitter to prevent thundering herd
3. Gives up after max retries to avoid infinite loops

Mutations are safe to retry because each one is a single all-or-nothing
unit of work: a failed attempt leaves nothing behind, and a retried action
with the same idempotency key is a no-op once committed.
"""

import asyncio
import random
import logging
from typing import Callable, Any, TypeVar

from progress_engine.config import STORAGE_MAX_RETRIES
from progress_engine.exceptions import StorageUnavailable
from progress_engine.observability.metrics import storage_errors_total, storage_retries_total

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Retry configuration
MAX_RETRIES = STORAGE_MAX_RETRIES
BASE_DELAY = 0.1  # seconds
MAX_DELAY = 5.0  # seconds
JITTER = 0.1  # 10% random jitter


def is_retryable_error(exc: Exception) -> bool:
    """
    Determine if error is transient and should be retried.

    Retryable errors:
    - StorageUnavailable (connection lost, pool timeout, database restarting)

    Non-retryable errors:
    - ValidationError / InvalidAmount (caller bugs)
    - NotEligible, StaleEvent (business outcomes)
    - QueryError (a bad query fails the same way every time)

    Args:
        exc: The exception to check

    Returns:
        True if error should be retried, False otherwise
    """
    return isinstance(exc, StorageUnavailable)


def calculate_backoff(attempt: int) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Formula: delay = min(BASE_DELAY * (2 ** attempt), MAX_DELAY) + jitter
    Jitter is random value between -10% and +10% of delay

    Args:
        attempt: The retry attempt number (0-indexed)

    Returns:
        Delay in seconds

    Example:
        Attempt 0: ~0.1s
        Attempt 1: ~0.2s
        Attempt 2: ~0.4s
    """
    delay = min(BASE_DELAY * (2 ** attempt), MAX_DELAY)

    jitter_amount = random.uniform(-JITTER * delay, JITTER * delay)
    final_delay = delay + jitter_amount

    return max(final_delay, 0.0)


async def retry_with_backoff(
    func: Callable[..., T],
    *args: Any,
    max_retries: int = MAX_RETRIES,
    **kwargs: Any
) -> T:
    """
    Retry async function with exponential backoff.

    Only retries transient errors. Gives up after max_retries attempts.

    Args:
        func: Async function to retry
        max_retries: Maximum number of retry attempts
        *args, **kwargs: Arguments to pass to func

    Returns:
        Result from func

    Raises:
        Last exception if all retries exhausted or non-retryable error

    Example:
        result = await retry_with_backoff(service.claim_achievement, user_id, "first_post")
    """
    for attempt in range(max_retries + 1):
        try:
            return await func(*args, **kwargs)

        except Exception as e:
            if not is_retryable_error(e):
                raise

            storage_errors_total.labels(error_type=type(e).__name__).inc()

            if attempt == max_retries:
                logger.error(
                    f"[RETRY] All {max_retries} retries exhausted for {func.__name__}"
                )
                raise

            backoff = calculate_backoff(attempt)
            storage_retries_total.labels(operation=func.__name__).inc()

            logger.info(
                f"[RETRY] Attempt {attempt + 1}/{max_retries} for {func.__name__} "
                f"after {backoff:.2f}s (error: {type(e).__name__})"
            )

            await asyncio.sleep(backoff)

    raise RuntimeError("Retry logic failed unexpectedly")
