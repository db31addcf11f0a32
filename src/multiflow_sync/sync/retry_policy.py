"""Backoff calculation and failure classification shared by the queue and executor."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from enum import StrEnum

import aiohttp

from multiflow_sync.errors import (
    ApiError,
    ConversationNotFoundError,
    OfflineError,
    PayloadValidationError,
)


class ErrorClass(StrEnum):
    """How a failed attempt should be treated."""

    RETRYABLE = "retryable"
    """Network, timeout, 5xx or offline. Worth another attempt."""

    NOT_IMPLEMENTED = "not_implemented"
    """404 on an optional endpoint. Retrying cannot help."""

    AUTH_FAILURE = "auth_failure"
    """401/403. Credentials were rejected."""

    PERMANENT = "permanent"
    """Any other client error."""


class Backoff(StrEnum):
    """Shape of the delay curve between attempts."""

    EXPONENTIAL = "exponential"
    LINEAR = "linear"


# Client errors that behave like transient server conditions
_RETRYABLE_4XX = frozenset({408, 425, 429})


@dataclass(frozen=True)
class RetryPolicy:
    """Immutable retry configuration.

    ``max_attempts`` counts every attempt, the first one included. Delays are
    in seconds. ``compute_delay`` takes the zero-based retry index, so the
    delay before the k-th retry is ``compute_delay(k - 1)``.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter_fraction: float = 0.3
    backoff: Backoff = Backoff.EXPONENTIAL
    retry_auth_failures: bool = True
    retry_permanent_failures: bool = True

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")
        if not 0.0 <= self.jitter_fraction <= 1.0:
            raise ValueError("jitter_fraction must be within [0, 1]")

    def compute_delay(self, attempt: int, rng: random.Random | None = None) -> float:
        """Delay before retry number ``attempt + 1``, capped and jittered."""
        attempt = max(attempt, 0)
        if self.backoff == Backoff.LINEAR:
            delay = self.base_delay * (attempt + 1)
        else:
            delay = self.base_delay * (2**attempt)
        delay = min(delay, self.max_delay)

        if self.jitter_fraction > 0 and delay > 0:
            spread = delay * self.jitter_fraction
            uniform = rng.uniform if rng is not None else random.uniform
            delay += uniform(-spread, spread)

        return max(delay, 0.0)

    def classify(self, error: BaseException) -> ErrorClass:
        """Map an exception raised by a remote call to an ErrorClass."""
        return classify_error(error)

    def should_retry(self, error_class: ErrorClass, attempts_made: int) -> bool:
        """Whether a failure of ``error_class`` earns another attempt."""
        if attempts_made >= self.max_attempts:
            return False
        if error_class == ErrorClass.NOT_IMPLEMENTED:
            return False
        if error_class == ErrorClass.AUTH_FAILURE:
            return self.retry_auth_failures
        if error_class == ErrorClass.PERMANENT:
            return self.retry_permanent_failures
        return True


def classify_error(error: BaseException) -> ErrorClass:
    """Classify an error independently of any policy instance."""
    if isinstance(error, OfflineError):
        return ErrorClass.RETRYABLE

    if isinstance(error, ApiError):
        status = error.status_code
        if status is None or error.timeout:
            return ErrorClass.RETRYABLE
        if status >= 500 or status in _RETRYABLE_4XX:
            return ErrorClass.RETRYABLE
        if status in (401, 403):
            return ErrorClass.AUTH_FAILURE
        if status == 404:
            return ErrorClass.NOT_IMPLEMENTED
        if status >= 400:
            return ErrorClass.PERMANENT
        return ErrorClass.RETRYABLE

    if isinstance(error, (ConversationNotFoundError, PayloadValidationError)):
        return ErrorClass.PERMANENT

    if isinstance(error, (asyncio.TimeoutError, aiohttp.ClientError, OSError)):
        return ErrorClass.RETRYABLE

    # Unknown failures are treated as transient; the attempt cap bounds them.
    return ErrorClass.RETRYABLE
