"""Foreground retry wrapper for user-initiated actions."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar

from multiflow_sync.errors import OperationFailedError
from multiflow_sync.sync.retry_policy import Backoff, ErrorClass, RetryPolicy

if TYPE_CHECKING:
    from multiflow_sync.utils.config import Config

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ACTION_POLICY = RetryPolicy(
    max_attempts=3,
    base_delay=1.0,
    max_delay=3.0,
    jitter_fraction=0.0,
    backoff=Backoff.LINEAR,
    retry_auth_failures=False,
)


class RetryableOperationExecutor:
    """Runs an action with a few quick retries while the user waits.

    Delays grow linearly (``attempt * base_delay``) and are much shorter than
    the background queue's. The executor keeps no state between calls, so any
    number of runs may be in flight at once for different actions.

    Credential failures are not retried: they surface on the first attempt.
    """

    def __init__(self, policy: RetryPolicy | None = None) -> None:
        self._policy = policy or DEFAULT_ACTION_POLICY

    @classmethod
    def from_config(cls, config: Config | None = None) -> RetryableOperationExecutor:
        """Build an executor using the configured foreground attempts and delay."""
        from multiflow_sync.utils.config import get_config

        return cls((config or get_config()).action_policy())

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def run(
        self,
        action: Callable[[], Awaitable[T]],
        max_attempts: int | None = None,
        *,
        name: str = "operation",
    ) -> T:
        """Invoke ``action`` until it succeeds or the attempts run out.

        Args:
            action: Zero-argument coroutine factory, called once per attempt
            max_attempts: Overrides the policy's attempt count
            name: Label used in logs and in the raised error

        Returns:
            The first successful result.

        Raises:
            OperationFailedError: wrapping the last error once no attempt is left.
        """
        limit = max_attempts if max_attempts is not None else self._policy.max_attempts
        if limit < 1:
            raise ValueError("max_attempts must be at least 1")

        attempts = 0
        while True:
            try:
                return await action()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                attempts += 1
                error_class = self._policy.classify(e)
                logger.warning("Attempt %d/%d for %s failed: %s", attempts, limit, name, e)

                if attempts >= limit or not self._should_retry(error_class):
                    raise OperationFailedError(
                        name,
                        attempts=attempts,
                        error_class=error_class,
                        last_error=e,
                    ) from e

                await asyncio.sleep(self._policy.compute_delay(attempts - 1))

    def _should_retry(self, error_class: ErrorClass) -> bool:
        # Attempt limits are enforced by run(); only the class matters here.
        return self._policy.should_retry(error_class, 0)
