"""
Bounded exponential-backoff retries for calls to remote services.

NLDI and StreamCat both fail intermittently under load, so every remote call
in the pipeline goes through call_with_retry. Clients signal a retryable
failure by raising RemoteServiceError; anything else propagates immediately.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from watershed_metrics.config.defaults import DEFAULT_BASE_DELAY, DEFAULT_MAX_ATTEMPTS, DEFAULT_MAX_DELAY

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RemoteServiceError(Exception):
    """Transient failure talking to a remote service (retryable)."""


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry settings for one remote call.

    Attributes:
        max_attempts: Total attempts, including the first one
        base_delay: Delay before the second attempt, in seconds
        max_delay: Cap on any single delay, in seconds
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_BASE_DELAY
    max_delay: float = DEFAULT_MAX_DELAY

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("Retry delays must be non-negative")

    def delay(self, attempt: int) -> float:
        """Backoff delay after the given (1-based) failed attempt."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


def call_with_retry(func: Callable[[], T], policy: RetryPolicy, description: str) -> T:
    """
    Call func, retrying RemoteServiceError with exponential backoff.

    Args:
        func: Zero-argument callable performing the remote call
        policy: Retry policy to apply
        description: Short label used in log messages

    Returns:
        Whatever func returns on the first successful attempt

    Raises:
        RemoteServiceError: The last failure, once attempts are exhausted
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return func()
        except RemoteServiceError as e:
            if attempt < policy.max_attempts:
                delay = policy.delay(attempt)
                logger.warning(
                    f"{description}: attempt {attempt}/{policy.max_attempts} failed: {e}. Retrying in {delay:.1f}s..."
                )
                time.sleep(delay)
            else:
                logger.error(f"{description}: failed after {policy.max_attempts} attempts: {e}")
                raise

    raise AssertionError("unreachable")
