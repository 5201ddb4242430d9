"""Fixed-delay retry executor.

This module provides:
- retry: Run an operation up to N times with a fixed delay between attempts
- RetryAttempt: Structured report of a failed attempt, passed to observers

Attempt counts are small (3) in practice, so there is no backoff.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from cloudxfer.core.config import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryAttempt:
    """A failed attempt.

    Attributes:
        attempt: 1-based attempt number.
        max_attempts: Configured number of attempts.
        error: Exception raised by the attempt.
    """

    attempt: int
    max_attempts: int
    error: Exception

    @property
    def is_last(self) -> bool:
        """Check whether no attempt follows this one."""
        return self.attempt >= self.max_attempts


# Type alias for retry observers
RetryObserver = Callable[[RetryAttempt], None]


def retry(
    operation: Callable[[], T],
    max_attempts: int = 3,
    delay: float = 2.0,
    on_failure: RetryObserver | None = None,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
) -> T:
    """Execute an operation, retrying with a fixed delay.

    Args:
        operation: Callable to execute.
        max_attempts: Total number of attempts.
        delay: Seconds to sleep after a failed attempt (except the last).
        on_failure: Optional observer notified of every failed attempt.
        retryable_exceptions: Exceptions that trigger another attempt; other
            exceptions propagate immediately.

    Returns:
        Result of the first successful attempt.

    Raises:
        The exception of the last attempt if all attempts fail.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    for attempt in range(1, max_attempts + 1):
        try:
            return operation()
        except retryable_exceptions as e:
            report = RetryAttempt(attempt=attempt, max_attempts=max_attempts, error=e)
            if on_failure:
                on_failure(report)
            if report.is_last:
                logger.error(f"All {max_attempts} attempts failed: {e}")
                raise
            logger.warning(
                f"Attempt {attempt}/{max_attempts} failed: {e}. "
                f"Retrying in {delay:.1f}s..."
            )
            time.sleep(delay)

    # Should not reach here, but satisfy type checker
    raise RuntimeError("Unexpected retry loop exit")


def retry_with_policy(
    operation: Callable[[], T],
    policy: RetryPolicy,
    on_failure: RetryObserver | None = None,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
) -> T:
    """Execute an operation with a RetryPolicy."""
    return retry(
        operation,
        max_attempts=policy.max_attempts,
        delay=policy.delay,
        on_failure=on_failure,
        retryable_exceptions=retryable_exceptions,
    )
