"""Connection-health monitor for the remote service."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol

from multiflow_sync.sync.protocol import ConnectionState
from multiflow_sync.utils.timeutils import utcnow

if TYPE_CHECKING:
    from multiflow_sync.utils.config import Config

logger = logging.getLogger(__name__)

StateListener = Callable[[ConnectionState], Any]


class HealthProbe(Protocol):
    """What the monitor needs from an API client."""

    async def check_health(self, timeout: float = 5.0) -> bool: ...

    async def check_root(self, timeout: float = 5.0) -> bool: ...


class ConnectionMonitor:
    """
    Periodically probes the remote health endpoint and caches the result.

    The cached ConnectionState gates SyncQueue and is published to listeners
    (status badges, the queue) on every probe. A failed probe is just
    "offline"; the monitor never retries on its own beyond its interval.

    Usage:
        monitor = ConnectionMonitor(client, interval=300)
        monitor.add_listener(lambda state: print(state.is_online))
        await monitor.start()
        ...
        online = await monitor.check()  # on-demand before a user action
        await monitor.stop()
    """

    def __init__(
        self,
        client: HealthProbe,
        *,
        timeout: float = 5.0,
        interval: float = 300.0,
        root_fallback: bool = False,
    ) -> None:
        """
        Args:
            client: Object exposing ``check_health`` (and ``check_root``)
            timeout: Per-probe deadline in seconds
            interval: Seconds between background probes
            root_fallback: When /health fails, accept any non-5xx answer from the API root
        """
        self._client = client
        self._timeout = timeout
        self._interval = interval
        self._root_fallback = root_fallback
        self._state = ConnectionState()
        self._listeners: list[StateListener] = []
        self._loop_task: asyncio.Task[None] | None = None
        self._probe_task: asyncio.Task[ConnectionState] | None = None

    @classmethod
    def from_config(
        cls,
        client: HealthProbe,
        config: Config | None = None,
        *,
        root_fallback: bool = False,
    ) -> ConnectionMonitor:
        """Build a monitor using the configured probe timeout and interval."""
        from multiflow_sync.utils.config import get_config

        config = config or get_config()
        return cls(
            client,
            timeout=config.health_timeout,
            interval=config.probe_interval,
            root_fallback=root_fallback,
        )

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_online(self) -> bool:
        return self._state.is_online

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def add_listener(self, listener: StateListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        self._listeners = [fn for fn in self._listeners if fn != listener]

    async def start(self) -> None:
        """Probe once now, then keep probing every ``interval`` seconds."""
        if self.is_running:
            return
        await self.probe()
        self._loop_task = asyncio.create_task(self._run(), name="connection-monitor")

    async def stop(self) -> None:
        """Stop background probing and any probe in flight. The last state stays readable."""
        for task in (self._loop_task, self._probe_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._loop_task = None
        self._probe_task = None

    async def check(self) -> bool:
        """On-demand probe; returns whether the service is reachable."""
        state = await self.probe()
        return state.is_online

    async def probe(self) -> ConnectionState:
        """Run a probe, sharing one in-flight request among concurrent callers."""
        if self._probe_task is None or self._probe_task.done():
            self._probe_task = asyncio.create_task(self._probe_once())
        return await asyncio.shield(self._probe_task)

    async def _probe_once(self) -> ConnectionState:
        error: str | None = None
        try:
            online = await self._client.check_health(timeout=self._timeout)
            if not online:
                error = "Health endpoint did not answer 200"
        except Exception as e:
            online = False
            error = str(e) or type(e).__name__

        if not online and self._root_fallback:
            try:
                online = await self._client.check_root(timeout=self._timeout)
            except Exception as e:
                logger.debug("Root fallback probe failed: %s", e)

        state = ConnectionState(
            is_online=online,
            last_checked_at=utcnow(),
            last_error=None if online else error,
        )
        await self._publish(state)
        return state

    async def _publish(self, state: ConnectionState) -> None:
        previous = self._state
        self._state = state

        if previous.is_online != state.is_online or not previous.checked:
            if state.is_online:
                logger.info("Remote service is online")
            else:
                logger.info("Remote service is offline: %s", state.last_error)

        for listener in list(self._listeners):
            try:
                result = listener(state)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.warning("Connection state listener failed", exc_info=True)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.probe()
