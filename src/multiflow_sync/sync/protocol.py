"""Data structures for background synchronization."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class SyncKind(StrEnum):
    """Entity type a sync operation propagates."""

    USER = "user"
    SECTOR = "sector"


class OperationState(StrEnum):
    """Lifecycle of a queued operation."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    RESCHEDULED = "rescheduled"
    SUCCEEDED = "succeeded"
    FAILED_PERMANENT = "failed_permanent"
    FAILED_NOT_IMPLEMENTED = "failed_not_implemented"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {
        OperationState.SUCCEEDED,
        OperationState.FAILED_PERMANENT,
        OperationState.FAILED_NOT_IMPLEMENTED,
        OperationState.CANCELLED,
    }
)


SuccessCallback = Callable[[dict[str, Any]], Any]
ErrorCallback = Callable[[BaseException], Any]


@dataclass(frozen=True)
class ConnectionState:
    """Result of the latest health probe."""

    is_online: bool = False
    last_checked_at: datetime | None = None
    last_error: str | None = None

    @property
    def checked(self) -> bool:
        """Whether at least one probe has completed."""
        return self.last_checked_at is not None


@dataclass
class SyncOperation:
    """A queued request to propagate one local change to the remote service.

    ``attempt`` counts attempts already made and only ever grows.
    """

    kind: SyncKind
    payload: dict[str, Any]
    on_success: SuccessCallback | None = None
    on_error: ErrorCallback | None = None
    attempt: int = 0
    state: OperationState = OperationState.PENDING
    last_error: BaseException | None = None
    op_id: str = field(default_factory=lambda: f"op-{uuid.uuid4().hex[:8]}")
    future: asyncio.Future[dict[str, Any]] | None = field(default=None, repr=False)

    @property
    def entity_id(self) -> str:
        """Identifier of the synced entity, for logging."""
        if self.kind == SyncKind.USER:
            return str(self.payload.get("firebaseUid", ""))
        return str(self.payload.get("firebaseId") or self.payload.get("_id", ""))
