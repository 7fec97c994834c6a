"""
Retry with exponential backoff for idempotent provider calls.

Only calls whose repetition cannot change provider-side state (user info,
revocation) go through here. Code exchange and refresh are never retried
automatically: their outcome may be unknown after a timeout.
"""

import random
import time
from typing import Callable, Optional, TypeVar

from ..config import RetryConfig, get_config
from ..exceptions import ProviderError
from .logger import get_logger

T = TypeVar("T")


def calculate_exponential_backoff(
    retry_count: int,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    multiplier: float = 2.0,
    jitter: bool = True,
) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Args:
        retry_count: Current retry attempt (0-based)
        base_delay: Base delay in seconds
        max_delay: Maximum delay in seconds
        multiplier: Exponential multiplier
        jitter: Add +/-25% randomization

    Returns:
        Delay in seconds before next retry
    """
    if retry_count < 0:
        return base_delay

    delay = min(base_delay * (multiplier**retry_count), max_delay)

    if jitter:
        jitter_range = delay * 0.25
        delay = delay + random.uniform(-jitter_range, jitter_range)

    return max(delay, 0.0)


def retry_with_backoff(
    func: Callable[[], T],
    operation_name: str,
    retry_config: Optional[RetryConfig] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``func`` until it succeeds or fails with a non-retryable error.

    Retries only ``ProviderError`` whose ``retryable`` is true; everything
    else propagates immediately. The last error is re-raised once the attempt
    budget is spent.
    """
    config = retry_config or get_config().retry
    logger = get_logger()

    attempt = 0
    while True:
        try:
            return func()
        except ProviderError as e:
            attempt += 1
            if not e.retryable or attempt >= config.max_attempts:
                raise
            delay = calculate_exponential_backoff(
                attempt - 1,
                base_delay=config.backoff_base_seconds,
                max_delay=config.backoff_max_seconds,
            )
            logger.warning(
                f"Retrying {operation_name}",
                extra={
                    "provider": e.provider,
                    "attempt": attempt,
                    "max_attempts": config.max_attempts,
                    "delay_seconds": round(delay, 3),
                    "reason": e.reason,
                },
            )
            sleep(delay)
