"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Callable
from typing import Any

import pytest
import pytest_asyncio

from multiflow_sync.sync.protocol import SyncKind
from multiflow_sync.sync.queue import SyncQueue
from multiflow_sync.sync.retry_policy import RetryPolicy
from multiflow_sync.utils.config import reset_config


class FakeTransport:
    """Scripted stand-in for ApiClient.sync.

    Each entry in ``script`` is either an exception to raise or a value to
    return; once the script is exhausted the payload is echoed back.
    """

    def __init__(self, script: list[Any] | None = None) -> None:
        self.script = list(script or [])
        self.calls: list[tuple[SyncKind, dict[str, Any]]] = []

    async def sync(self, kind: SyncKind, payload: dict[str, Any]) -> dict[str, Any]:
        self.calls.append((kind, payload))
        if self.script:
            outcome = self.script.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return {"success": True, "data": payload}


class FakeGate:
    """Connectivity gate with a switchable answer."""

    def __init__(self, online: bool = True) -> None:
        self.online = online
        self.checks = 0

    async def check(self) -> bool:
        self.checks += 1
        return self.online


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds or ``timeout`` expires."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture(autouse=True)
def _fresh_config() -> None:
    """Every test starts from an unloaded config singleton."""
    reset_config()


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Three attempts with millisecond delays and no jitter."""
    return RetryPolicy(max_attempts=3, base_delay=0.01, max_delay=0.05, jitter_fraction=0.0)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def gate() -> FakeGate:
    return FakeGate()


@pytest_asyncio.fixture
async def queue(
    transport: FakeTransport, gate: FakeGate, fast_policy: RetryPolicy
) -> AsyncGenerator[SyncQueue, None]:
    """A started queue, stopped after the test."""
    q = SyncQueue(transport, gate, fast_policy)
    await q.start()
    yield q
    await q.stop()


@pytest.fixture
def user_record() -> dict[str, Any]:
    return {
        "firebaseUid": "uid-1",
        "email": "ana@example.com",
        "displayName": "Ana",
        "role": "agent",
        "sector": "s1",
        "sectorName": "Suporte",
    }


@pytest.fixture
def sector_record() -> dict[str, Any]:
    return {"_id": "s1", "nome": "Suporte", "descricao": "Atendimento", "responsavel": "uid-1"}


@pytest.fixture
def make_transport() -> Callable[..., FakeTransport]:
    """Factory for transports with a scripted sequence of outcomes."""
    return FakeTransport


@pytest.fixture(name="wait_until")
def wait_until_fixture() -> Callable[..., Any]:
    return wait_until
