"""Tests for sync/connection.py: health probing and state publication."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from multiflow_sync.errors import ApiError
from multiflow_sync.sync.connection import ConnectionMonitor
from multiflow_sync.sync.protocol import ConnectionState


def _probe_client(*answers: object) -> MagicMock:
    client = MagicMock()
    client.check_health = AsyncMock(side_effect=list(answers))
    client.check_root = AsyncMock(return_value=False)
    return client


class TestConnectionMonitorProbe:
    """Tests for probe() and check()."""

    def test_initial_state_unknown(self) -> None:
        monitor = ConnectionMonitor(_probe_client())
        assert monitor.state == ConnectionState()
        assert monitor.is_online is False
        assert monitor.state.checked is False

    @pytest.mark.asyncio
    async def test_flips_online_and_offline(self) -> None:
        client = _probe_client(True, ApiError("refused"), True)
        monitor = ConnectionMonitor(client, timeout=2.0)

        assert await monitor.check() is True
        assert monitor.state.last_error is None

        assert await monitor.check() is False
        assert monitor.state.last_error == "refused"
        assert monitor.state.last_checked_at is not None

        assert await monitor.check() is True
        client.check_health.assert_awaited_with(timeout=2.0)

    @pytest.mark.asyncio
    async def test_non_200_is_offline(self) -> None:
        monitor = ConnectionMonitor(_probe_client(False))
        state = await monitor.probe()
        assert state.is_online is False
        assert state.last_error

    @pytest.mark.asyncio
    async def test_root_fallback(self) -> None:
        client = _probe_client(False)
        client.check_root = AsyncMock(return_value=True)
        monitor = ConnectionMonitor(client, root_fallback=True)

        assert await monitor.check() is True
        client.check_root.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_root_fallback_disabled_by_default(self) -> None:
        client = _probe_client(False)
        monitor = ConnectionMonitor(client)

        assert await monitor.check() is False
        client.check_root.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_concurrent_probes_share_request(self) -> None:
        release = asyncio.Event()

        async def slow_health(timeout: float = 5.0) -> bool:
            await release.wait()
            return True

        client = MagicMock()
        client.check_health = AsyncMock(side_effect=slow_health)
        monitor = ConnectionMonitor(client)

        waiters = [asyncio.create_task(monitor.check()) for _ in range(3)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*waiters)

        assert results == [True, True, True]
        assert client.check_health.await_count == 1


class TestConnectionMonitorListeners:
    """Tests for listener notification."""

    @pytest.mark.asyncio
    async def test_listeners_receive_every_probe(self) -> None:
        monitor = ConnectionMonitor(_probe_client(True, False))
        seen: list[bool] = []
        monitor.add_listener(lambda state: seen.append(state.is_online))

        await monitor.check()
        await monitor.check()

        assert seen == [True, False]

    @pytest.mark.asyncio
    async def test_async_listener_and_failing_listener(self) -> None:
        monitor = ConnectionMonitor(_probe_client(True))
        received = AsyncMock()

        def broken(_: ConnectionState) -> None:
            raise RuntimeError("badge unmounted")

        monitor.add_listener(broken)
        monitor.add_listener(received)
        await monitor.check()

        received.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_remove_listener(self) -> None:
        monitor = ConnectionMonitor(_probe_client(True))
        listener = MagicMock()
        monitor.add_listener(listener)
        monitor.remove_listener(listener)

        await monitor.check()
        listener.assert_not_called()


class TestConnectionMonitorLoop:
    """Tests for start()/stop()."""

    @pytest.mark.asyncio
    async def test_start_probes_immediately_and_periodically(self) -> None:
        client = MagicMock()
        client.check_health = AsyncMock(return_value=True)
        monitor = ConnectionMonitor(client, interval=0.01)

        await monitor.start()
        assert monitor.is_online
        assert monitor.is_running

        await asyncio.sleep(0.05)
        await monitor.stop()

        assert client.check_health.await_count >= 2
        assert not monitor.is_running
        assert monitor.is_online

    @pytest.mark.asyncio
    async def test_stop_cancels_health_check_in_flight(self) -> None:
        started = asyncio.Event()

        async def hanging_health(timeout: float = 5.0) -> bool:
            started.set()
            await asyncio.sleep(10)
            return True

        client = MagicMock()
        client.check_health = AsyncMock(side_effect=hanging_health)
        monitor = ConnectionMonitor(client)
        listener = MagicMock()
        monitor.add_listener(listener)

        waiter = asyncio.create_task(monitor.check())
        await asyncio.wait_for(started.wait(), 2)
        await monitor.stop()
        await asyncio.sleep(0.01)

        assert waiter.done()
        assert waiter.cancelled()
        listener.assert_not_called()
        assert monitor.state.checked is False

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self) -> None:
        client = MagicMock()
        client.check_health = AsyncMock(return_value=True)
        monitor = ConnectionMonitor(client, interval=60)

        await monitor.start()
        await monitor.start()
        await monitor.stop()

        assert client.check_health.await_count == 1
