# SPDX-License-Identifier: Apache-2.0

"""
Retry helper for retryable engine errors.

Engine operations never retry on their own; a caller that wants to re-run
an operation after a ConcurrentModification or StoreTimeout wraps it here.
Each attempt re-reads every entity, so a retry always works on fresh state.
"""

import functools
import logging
import time
from typing import Any, Callable, TypeVar

from ..domain.errors import PlacementEngineError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def call_with_retry(
    operation: Callable[[], T],
    max_retries: int = 3,
    base_delay: float = 0.05,
    sleep: Callable[[float], None] = time.sleep
) -> T:
    """
    Run an operation, retrying retryable engine errors with exponential backoff.

    Args:
        operation: Zero-argument callable to run
        max_retries: Retries after the first attempt
        base_delay: Delay before the first retry, doubled on each retry
        sleep: Sleep function

    Raises:
        The last error when retries are exhausted, or any non-retryable error at once
    """
    for attempt in range(max_retries + 1):
        try:
            return operation()
        except PlacementEngineError as e:
            if not e.retryable or attempt >= max_retries:
                raise

            delay = base_delay * (2 ** attempt)
            logger.warning(
                "Retryable error, retrying",
                extra={
                    "extra_fields": {
                        "code": e.code,
                        "entity_type": e.entity_type,
                        "entity_id": e.entity_id,
                        "attempt": attempt + 1,
                        "retry_delay": delay
                    }
                }
            )
            sleep(delay)


def retry_on_conflict(max_retries: int = 3, base_delay: float = 0.05, sleep: Callable[[float], None] = time.sleep):
    """Decorator form of `call_with_retry`."""
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            return call_with_retry(lambda: func(*args, **kwargs), max_retries, base_delay, sleep)
        return wrapper
    return decorator
