"""User-initiated conversation actions with optimistic message handling."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from multiflow_sync.conversation.models import DeliveryStatus, Message
from multiflow_sync.errors import OperationFailedError, PayloadValidationError
from multiflow_sync.sync.executor import RetryableOperationExecutor

if TYPE_CHECKING:
    from multiflow_sync.api.client import ApiClient
    from multiflow_sync.conversation.reconciler import ConversationStateReconciler

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4096


@dataclass(frozen=True)
class SendOutcome:
    """Result of sending one message.

    ``message`` is the optimistic message in its final state. On failure
    ``restore_text`` holds the text to put back into the input box.
    """

    message: Message
    error: OperationFailedError | None = None
    restore_text: str | None = None

    @property
    def ok(self) -> bool:
        return self.message.delivery_status == DeliveryStatus.SENT


@dataclass(frozen=True)
class ActionOutcome:
    """Result of a transfer/finalize/archive/unarchive action."""

    ok: bool
    result: dict[str, Any] | None = None
    error: OperationFailedError | None = None


class ConversationActions:
    """
    Foreground conversation operations run through the retry executor.

    None of these methods raise into the caller for remote failures; they
    return outcome objects. Blank input raises PayloadValidationError before
    anything is sent. After a successful action the attached reconciler is
    asked to refresh when it is showing the affected conversation.
    """

    def __init__(
        self,
        client: ApiClient,
        executor: RetryableOperationExecutor | None = None,
        *,
        reconciler: ConversationStateReconciler | None = None,
    ) -> None:
        self._client = client
        self._executor = executor or RetryableOperationExecutor()
        self._reconciler = reconciler

    def attach_reconciler(self, reconciler: ConversationStateReconciler | None) -> None:
        self._reconciler = reconciler

    async def send_message(
        self,
        conversation_id: str,
        body: str,
        *,
        on_pending: Callable[[Message], Any] | None = None,
    ) -> SendOutcome:
        """Send ``body`` optimistically.

        ``on_pending`` receives the ``sending`` message before the network call
        so the caller can render it immediately.
        """
        text = body.strip()
        if not conversation_id:
            raise PayloadValidationError("conversation_id is required")
        if not text:
            raise PayloadValidationError("Message body is empty")
        if len(text) > MAX_MESSAGE_LENGTH:
            raise PayloadValidationError(f"Message exceeds {MAX_MESSAGE_LENGTH} characters")

        pending = Message.outgoing(text)
        if on_pending is not None:
            on_pending(pending)

        try:
            result = await self._executor.run(
                lambda: self._client.send_message(conversation_id, text),
                name="send message",
            )
        except OperationFailedError as e:
            logger.warning("Message to %s not delivered: %s", conversation_id, e.last_error)
            return SendOutcome(
                message=pending.with_status(DeliveryStatus.FAILED),
                error=e,
                restore_text=body,
            )

        server_id = result.get("_id") or result.get("id")
        self._refresh(conversation_id)
        return SendOutcome(
            message=pending.with_status(DeliveryStatus.SENT, message_id=str(server_id) if server_id else None)
        )

    async def transfer(self, conversation_id: str, sector_id: str) -> ActionOutcome:
        """Move a conversation to ``sector_id``."""
        if not conversation_id or not sector_id:
            raise PayloadValidationError("conversation_id and sector_id are required")
        return await self._perform(
            conversation_id,
            lambda: self._client.transfer_conversation(conversation_id, sector_id),
            "transfer conversation",
        )

    async def finalize(self, conversation_id: str) -> ActionOutcome:
        return await self._perform(
            conversation_id,
            lambda: self._client.finalize_conversation(conversation_id),
            "finalize conversation",
        )

    async def archive(self, conversation_id: str) -> ActionOutcome:
        return await self._perform(
            conversation_id,
            lambda: self._client.archive_conversation(conversation_id),
            "archive conversation",
        )

    async def unarchive(self, conversation_id: str) -> ActionOutcome:
        return await self._perform(
            conversation_id,
            lambda: self._client.unarchive_conversation(conversation_id),
            "unarchive conversation",
        )

    async def _perform(
        self,
        conversation_id: str,
        action: Callable[[], Awaitable[dict[str, Any]]],
        name: str,
    ) -> ActionOutcome:
        if not conversation_id:
            raise PayloadValidationError("conversation_id is required")
        try:
            result = await self._executor.run(action, name=name)
        except OperationFailedError as e:
            logger.warning("Could not %s %s: %s", name, conversation_id, e.last_error)
            return ActionOutcome(ok=False, error=e)

        self._refresh(conversation_id)
        return ActionOutcome(ok=True, result=result)

    def _refresh(self, conversation_id: str) -> None:
        if self._reconciler is not None:
            self._reconciler.refresh_if_open(conversation_id)
