"""Tests for conversation/actions.py: optimistic sends and executor-wrapped actions."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from multiflow_sync.conversation.actions import MAX_MESSAGE_LENGTH, ConversationActions
from multiflow_sync.conversation.models import DeliveryStatus, Message, MessageSender
from multiflow_sync.errors import ApiError, PayloadValidationError
from multiflow_sync.sync.executor import RetryableOperationExecutor
from multiflow_sync.sync.retry_policy import Backoff, RetryPolicy


@pytest.fixture
def executor() -> RetryableOperationExecutor:
    return RetryableOperationExecutor(
        RetryPolicy(
            max_attempts=3,
            base_delay=0.001,
            max_delay=0.01,
            jitter_fraction=0.0,
            backoff=Backoff.LINEAR,
            retry_auth_failures=False,
        )
    )


@pytest.fixture
def client() -> MagicMock:
    client = MagicMock()
    client.send_message = AsyncMock(return_value={"_id": "m-99", "conteudo": "Olá"})
    client.transfer_conversation = AsyncMock(return_value={"_id": "c1", "setorId": "s2"})
    client.finalize_conversation = AsyncMock(return_value={"_id": "c1", "status": "finalizada"})
    client.archive_conversation = AsyncMock(return_value={"_id": "c1", "arquivada": True})
    client.unarchive_conversation = AsyncMock(return_value={"_id": "c1", "arquivada": False})
    return client


@pytest.fixture
def reconciler() -> MagicMock:
    return MagicMock()


@pytest.fixture
def actions(client, executor, reconciler) -> ConversationActions:
    return ConversationActions(client, executor, reconciler=reconciler)


class TestSendMessage:
    """Tests for send_message()."""

    @pytest.mark.asyncio
    async def test_success_marks_sent_with_server_id(self, actions, client, reconciler) -> None:
        pending: list[Message] = []

        outcome = await actions.send_message("c1", "  Olá  ", on_pending=pending.append)

        assert outcome.ok
        assert outcome.message.delivery_status == DeliveryStatus.SENT
        assert outcome.message.id == "m-99"
        assert outcome.message.body == "Olá"
        assert outcome.restore_text is None
        assert pending[0].delivery_status == DeliveryStatus.SENDING
        assert pending[0].sender == MessageSender.ATTENDANT
        assert pending[0].id.startswith("local-")
        client.send_message.assert_awaited_once_with("c1", "Olá")
        reconciler.refresh_if_open.assert_called_once_with("c1")

    @pytest.mark.asyncio
    async def test_failure_restores_text(self, actions, client, reconciler) -> None:
        client.send_message = AsyncMock(side_effect=ApiError("down", 503))

        outcome = await actions.send_message("c1", "Olá")

        assert not outcome.ok
        assert outcome.message.delivery_status == DeliveryStatus.FAILED
        assert outcome.message.id.startswith("local-")
        assert outcome.restore_text == "Olá"
        assert outcome.error is not None
        assert outcome.error.attempts == 3
        reconciler.refresh_if_open.assert_not_called()

    @pytest.mark.asyncio
    async def test_transient_failure_recovers(self, actions, client) -> None:
        client.send_message = AsyncMock(side_effect=[ApiError("down", 503), {"id": "m-1"}])

        outcome = await actions.send_message("c1", "Olá")

        assert outcome.ok
        assert outcome.message.id == "m-1"
        assert client.send_message.await_count == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", ["", "   ", "x" * (MAX_MESSAGE_LENGTH + 1)])
    async def test_invalid_body_raises(self, actions, client, body: str) -> None:
        with pytest.raises(PayloadValidationError):
            await actions.send_message("c1", body)
        client.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_conversation_raises(self, actions) -> None:
        with pytest.raises(PayloadValidationError):
            await actions.send_message("", "Olá")


class TestConversationActions:
    """Tests for transfer/finalize/archive/unarchive."""

    @pytest.mark.asyncio
    async def test_transfer(self, actions, client, reconciler) -> None:
        outcome = await actions.transfer("c1", "s2")

        assert outcome.ok
        assert outcome.result == {"_id": "c1", "setorId": "s2"}
        client.transfer_conversation.assert_awaited_once_with("c1", "s2")
        reconciler.refresh_if_open.assert_called_once_with("c1")

    @pytest.mark.asyncio
    async def test_transfer_requires_sector(self, actions) -> None:
        with pytest.raises(PayloadValidationError):
            await actions.transfer("c1", "")

    @pytest.mark.asyncio
    async def test_finalize_archive_unarchive(self, actions, client) -> None:
        assert (await actions.finalize("c1")).ok
        assert (await actions.archive("c1")).ok
        assert (await actions.unarchive("c1")).ok

        client.finalize_conversation.assert_awaited_once_with("c1")
        client.archive_conversation.assert_awaited_once_with("c1")
        client.unarchive_conversation.assert_awaited_once_with("c1")

    @pytest.mark.asyncio
    async def test_failure_returns_outcome(self, actions, client, reconciler) -> None:
        client.finalize_conversation = AsyncMock(side_effect=ApiError("forbidden", 403))

        outcome = await actions.finalize("c1")

        assert outcome.ok is False
        assert outcome.error is not None
        assert outcome.error.attempts == 1
        client.finalize_conversation.assert_awaited_once()
        reconciler.refresh_if_open.assert_not_called()

    @pytest.mark.asyncio
    async def test_without_reconciler(self, client, executor) -> None:
        actions = ConversationActions(client, executor)
        assert (await actions.archive("c1")).ok

    @pytest.mark.asyncio
    async def test_attach_reconciler(self, client, executor) -> None:
        actions = ConversationActions(client, executor)
        reconciler = MagicMock()
        actions.attach_reconciler(reconciler)

        await actions.unarchive("c1")
        reconciler.refresh_if_open.assert_called_once_with("c1")
