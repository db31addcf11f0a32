"""Aggregated sync status for status badges and admin tools."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from multiflow_sync.errors import OfflineError
from multiflow_sync.sync.payloads import build_payload
from multiflow_sync.sync.protocol import OperationState, SyncKind, SyncOperation
from multiflow_sync.utils.timeutils import utcnow

if TYPE_CHECKING:
    from multiflow_sync.api.client import ApiClient
    from multiflow_sync.sync.connection import ConnectionMonitor
    from multiflow_sync.sync.queue import SyncQueue

logger = logging.getLogger(__name__)


class SyncStatus(StrEnum):
    UNKNOWN = "unknown"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"


_FAILED_STATES = frozenset({OperationState.FAILED_PERMANENT, OperationState.FAILED_NOT_IMPLEMENTED})


class SyncStatusTracker:
    """
    Follows queue outcomes and runs forced syncs.

    Forced syncs bypass the queue: they check connectivity on demand, call
    the API directly and record the outcome. They never raise; failures are
    kept in ``error`` until ``clear_error()`` or the next success.
    """

    def __init__(
        self,
        client: ApiClient,
        monitor: ConnectionMonitor,
        queue: SyncQueue | None = None,
    ) -> None:
        self._client = client
        self._monitor = monitor
        self._queue = queue
        self._status = SyncStatus.UNKNOWN
        self._last_sync: datetime | None = None
        self._error: str | None = None
        self._forcing = 0
        self._in_flight: set[str] = set()

        if queue is not None:
            queue.add_observer(self._on_operation)

    def detach(self) -> None:
        """Stop following the queue."""
        if self._queue is not None:
            self._queue.remove_observer(self._on_operation)

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def is_synced(self) -> bool:
        return self._status == SyncStatus.SUCCESS

    @property
    def is_syncing(self) -> bool:
        return self._forcing > 0 or bool(self._in_flight)

    @property
    def last_sync(self) -> datetime | None:
        return self._last_sync

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def is_api_online(self) -> bool:
        return self._monitor.is_online

    @property
    def last_checked(self) -> datetime | None:
        return self._monitor.state.last_checked_at

    def clear_error(self) -> None:
        self._error = None
        if self._status == SyncStatus.ERROR:
            self._status = SyncStatus.UNKNOWN

    async def force_sync_user(self, user: dict[str, Any]) -> dict[str, Any] | None:
        """Push ``user`` now. Returns the server's answer, or None on failure."""

        async def call() -> dict[str, Any]:
            payload = build_payload(SyncKind.USER, user)
            return await self._client.sync_user(payload)

        return await self._force("user", call)

    async def force_sync_sector(self, sector_id: str) -> dict[str, Any] | None:
        """Ask the server to re-sync ``sector_id`` now. Returns None on failure."""
        return await self._force(f"sector {sector_id}", lambda: self._client.force_sync_sector(sector_id))

    async def _force(
        self, label: str, call: Callable[[], Awaitable[dict[str, Any]]]
    ) -> dict[str, Any] | None:
        self._forcing += 1
        self._status = SyncStatus.SYNCING
        try:
            if not await self._monitor.check():
                raise OfflineError()
            result = await call()
        except Exception as e:
            logger.warning("Forced sync of %s failed: %s", label, e)
            self._record_error(e)
            return None
        finally:
            self._forcing -= 1

        self._record_success()
        return result

    def _record_success(self) -> None:
        self._status = SyncStatus.SUCCESS
        self._last_sync = utcnow()
        self._error = None

    def _record_error(self, error: BaseException | None) -> None:
        self._status = SyncStatus.ERROR
        self._error = str(error) if error is not None else "sync failed"

    def _on_operation(self, op: SyncOperation) -> None:
        if op.state == OperationState.IN_FLIGHT:
            self._in_flight.add(op.op_id)
            self._status = SyncStatus.SYNCING
            return

        self._in_flight.discard(op.op_id)
        if op.state == OperationState.SUCCEEDED:
            self._record_success()
        elif op.state in _FAILED_STATES:
            self._record_error(op.last_error)
