"""Exception hierarchy for the synchronization core."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pydantic import ValidationError

    from multiflow_sync.sync.retry_policy import ErrorClass


class MultiflowError(Exception):
    """Base class for all multiflow-sync errors."""


class ApiError(MultiflowError):
    """Error from a remote service call.

    ``status_code`` is None for transport-level failures (connection refused,
    DNS, reset). ``timeout`` marks requests that exceeded their deadline.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        *,
        timeout: bool = False,
        body: str = "",
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.timeout = timeout
        self.body = body


class OfflineError(ApiError):
    """The remote service was unreachable when the operation started."""

    def __init__(self, message: str = "API not available right now") -> None:
        super().__init__(message)


class ConversationNotFoundError(MultiflowError):
    """The remote service reports that a conversation does not exist."""

    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


class PayloadValidationError(MultiflowError, ValueError):
    """Malformed input rejected before any network call."""

    def __init__(self, message: str, errors: ValidationError | None = None) -> None:
        super().__init__(message)
        self.errors = errors


class SyncFailedError(MultiflowError):
    """A background sync operation reached a terminal failure."""

    def __init__(
        self,
        message: str,
        *,
        error_class: ErrorClass,
        attempts: int,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.error_class = error_class
        self.attempts = attempts
        self.cause = cause


class SyncCancelledError(MultiflowError):
    """The queue was stopped before the operation finished."""


class OperationFailedError(MultiflowError):
    """A foreground operation failed on every allowed attempt."""

    def __init__(
        self,
        name: str,
        *,
        attempts: int,
        error_class: ErrorClass,
        last_error: BaseException,
    ) -> None:
        super().__init__(f"{name} failed after {attempts} attempt(s): {last_error}")
        self.name = name
        self.attempts = attempts
        self.error_class = error_class
        self.last_error = last_error
