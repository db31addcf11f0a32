"""Single-consumer background queue for propagating local changes."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol

from multiflow_sync.errors import OfflineError, SyncCancelledError, SyncFailedError
from multiflow_sync.sync.payloads import build_payload
from multiflow_sync.sync.protocol import (
    ErrorCallback,
    OperationState,
    SuccessCallback,
    SyncKind,
    SyncOperation,
)
from multiflow_sync.sync.retry_policy import ErrorClass, RetryPolicy

if TYPE_CHECKING:
    from multiflow_sync.utils.config import Config

logger = logging.getLogger(__name__)

OperationObserver = Callable[[SyncOperation], Any]


class SyncTransport(Protocol):
    """Performs the remote call for one operation."""

    async def sync(self, kind: SyncKind, payload: dict[str, Any]) -> dict[str, Any]: ...


class ConnectivityGate(Protocol):
    """Answers whether the remote service is reachable right now."""

    async def check(self) -> bool: ...


def _mark_retrieved(future: asyncio.Future[Any]) -> None:
    # Outcomes are also delivered through callbacks and logs, so a caller
    # that never awaits the future must not trigger asyncio's warning.
    if not future.cancelled():
        future.exception()


class SyncQueue:
    """
    Ordered, single-consumer queue of background sync operations.

    Operations drain serially in FIFO order. Before each remote call the
    connectivity gate is consulted; while offline no remote call is made and
    the operation is rescheduled like any transient failure. Rescheduled
    operations re-enter at the tail once their backoff delay elapses, so a slow
    retry never blocks later entries.

    Each operation reaches exactly one terminal outcome: ``on_success`` with the
    server's response, or ``on_error`` with a SyncFailedError. The future
    returned by ``enqueue`` resolves the same way.

    Usage:
        queue = SyncQueue(client, monitor, policy)
        await queue.start()
        future = queue.enqueue("user", profile, on_success=..., on_error=...)
        ...
        await queue.stop()
    """

    def __init__(
        self,
        transport: SyncTransport,
        gate: ConnectivityGate | None = None,
        policy: RetryPolicy | None = None,
    ) -> None:
        self._transport = transport
        self._gate = gate
        self._policy = policy or RetryPolicy()
        self._queue: deque[SyncOperation] = deque()
        self._timers: dict[str, tuple[asyncio.TimerHandle, SyncOperation]] = {}
        self._observers: list[OperationObserver] = []
        self._drain_task: asyncio.Task[None] | None = None
        self._current: SyncOperation | None = None
        self._running = False

    @classmethod
    def from_config(
        cls,
        transport: SyncTransport,
        gate: ConnectivityGate | None = None,
        config: Config | None = None,
    ) -> SyncQueue:
        """Build a queue using the configured background retry policy."""
        from multiflow_sync.utils.config import get_config

        return cls(transport, gate, (config or get_config()).sync_policy())

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_draining(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    @property
    def pending_count(self) -> int:
        """Operations waiting in the queue or in a backoff delay."""
        return len(self._queue) + len(self._timers) + (1 if self._current else 0)

    def add_observer(self, observer: OperationObserver) -> None:
        """Register a callable notified on every operation state change."""
        if observer not in self._observers:
            self._observers.append(observer)

    def remove_observer(self, observer: OperationObserver) -> None:
        self._observers = [fn for fn in self._observers if fn != observer]

    async def start(self) -> None:
        """Accept operations and drain anything already queued."""
        self._running = True
        self._kick()

    async def stop(self) -> None:
        """Cancel the drain loop and backoff timers; fail outstanding operations."""
        self._running = False

        if self._drain_task:
            self._drain_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._drain_task
            self._drain_task = None

        leftovers = list(self._queue)
        self._queue.clear()
        for handle, op in self._timers.values():
            handle.cancel()
            leftovers.append(op)
        self._timers.clear()

        for op in leftovers:
            await self._cancel(op)

    def enqueue(
        self,
        kind: SyncKind | str,
        data: dict[str, Any],
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> asyncio.Future[dict[str, Any]]:
        """Queue a local change for background propagation.

        Raises:
            PayloadValidationError: if ``data`` is malformed; nothing is queued.
            RuntimeError: if the queue has not been started.
        """
        payload = build_payload(kind, data)
        if not self._running:
            raise RuntimeError("SyncQueue is not running; call start() first")

        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        future.add_done_callback(_mark_retrieved)
        op = SyncOperation(
            kind=SyncKind(kind),
            payload=payload,
            on_success=on_success,
            on_error=on_error,
            future=future,
        )
        self._queue.append(op)
        logger.debug("Enqueued %s sync %s (%s)", op.kind, op.entity_id, op.op_id)
        self._notify(op)
        self._kick()
        return future

    def _kick(self) -> None:
        """Start a drain pass unless one is active."""
        if not self._running or not self._queue:
            return
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.create_task(self._drain(), name="sync-queue-drain")

    async def _drain(self) -> None:
        while self._running and self._queue:
            op = self._queue.popleft()
            self._current = op
            try:
                await self._process(op)
            finally:
                self._current = None

    async def _process(self, op: SyncOperation) -> None:
        op.state = OperationState.IN_FLIGHT
        self._notify(op)

        try:
            if self._gate is not None and not await self._gate.check():
                raise OfflineError()
            result = await self._transport.sync(op.kind, op.payload)
        except asyncio.CancelledError:
            await self._cancel(op)
            raise
        except Exception as e:
            op.attempt += 1
            op.last_error = e
            await self._handle_failure(op, e)
            return

        op.attempt += 1
        await self._succeed(op, result)

    async def _handle_failure(self, op: SyncOperation, error: Exception) -> None:
        error_class = self._policy.classify(error)

        if error_class == ErrorClass.NOT_IMPLEMENTED:
            logger.info("Sync endpoint for %s is not implemented; dropping %s", op.kind, op.op_id)
            await self._fail(op, error, error_class, OperationState.FAILED_NOT_IMPLEMENTED)
            return

        if self._policy.should_retry(error_class, op.attempt):
            delay = self._policy.compute_delay(op.attempt - 1)
            op.state = OperationState.RESCHEDULED
            self._notify(op)
            logger.debug(
                "Rescheduling %s sync %s in %.2fs (attempt %d/%d, %s): %s",
                op.kind,
                op.entity_id,
                delay,
                op.attempt,
                self._policy.max_attempts,
                error_class,
                error,
            )
            self._schedule_retry(op, delay)
            return

        logger.warning(
            "Giving up on %s sync %s after %d attempt(s) (%s): %s",
            op.kind,
            op.entity_id,
            op.attempt,
            error_class,
            error,
        )
        await self._fail(op, error, error_class, OperationState.FAILED_PERMANENT)

    def _schedule_retry(self, op: SyncOperation, delay: float) -> None:
        handle = asyncio.get_running_loop().call_later(delay, self._requeue, op)
        self._timers[op.op_id] = (handle, op)

    def _requeue(self, op: SyncOperation) -> None:
        self._timers.pop(op.op_id, None)
        if not self._running:
            return
        op.state = OperationState.PENDING
        self._queue.append(op)
        self._notify(op)
        self._kick()

    async def _succeed(self, op: SyncOperation, result: dict[str, Any]) -> None:
        op.state = OperationState.SUCCEEDED
        op.last_error = None
        logger.debug("Synced %s %s after %d attempt(s)", op.kind, op.entity_id, op.attempt)
        self._resolve(op, result=result)
        self._notify(op)
        await self._invoke(op.on_success, result, op)

    async def _fail(
        self,
        op: SyncOperation,
        error: Exception,
        error_class: ErrorClass,
        state: OperationState,
    ) -> None:
        op.state = state
        failure = SyncFailedError(
            f"{op.kind} sync failed ({error_class}): {error}",
            error_class=error_class,
            attempts=op.attempt,
            cause=error,
        )
        self._resolve(op, error=failure)
        self._notify(op)
        await self._invoke(op.on_error, failure, op)

    async def _cancel(self, op: SyncOperation) -> None:
        if op.state.is_terminal:
            return
        op.state = OperationState.CANCELLED
        failure = SyncCancelledError(f"{op.kind} sync cancelled before completion")
        self._resolve(op, error=failure)
        self._notify(op)
        await self._invoke(op.on_error, failure, op)

    @staticmethod
    def _resolve(
        op: SyncOperation,
        *,
        result: dict[str, Any] | None = None,
        error: Exception | None = None,
    ) -> None:
        # Settled before callbacks run; a callback cut short by stop() must not
        # leave the future pending.
        if op.future is None or op.future.done():
            return
        if error is not None:
            op.future.set_exception(error)
        else:
            op.future.set_result(result or {})

    async def _invoke(self, callback: Callable[[Any], Any] | None, arg: Any, op: SyncOperation) -> None:
        if callback is None:
            return
        try:
            result = callback(arg)
            if asyncio.iscoroutine(result):
                await result
        except Exception:
            logger.warning("Callback for %s sync %s raised", op.kind, op.op_id, exc_info=True)

    def _notify(self, op: SyncOperation) -> None:
        for observer in list(self._observers):
            try:
                observer(op)
            except Exception:
                logger.warning("Sync queue observer failed", exc_info=True)
