"""Conversation and message models as rendered by the client."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from typing import Any

from multiflow_sync.utils.timeutils import parse_timestamp, utcnow


class ConversationStatus(StrEnum):
    """Lifecycle of a customer conversation."""

    AGUARDANDO = "aguardando"
    EM_ANDAMENTO = "em_andamento"
    FINALIZADA = "finalizada"
    ARQUIVADA = "arquivada"


class MessageSender(StrEnum):
    """Who authored a message."""

    CLIENT = "client"
    ATTENDANT = "attendant"
    BOT = "bot"
    SYSTEM = "system"


class DeliveryStatus(StrEnum):
    """Delivery state of an outgoing message."""

    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


_ATTENDANT_SENDERS = frozenset({"atendente", "attendant", "agent"})
_SYSTEM_SENDERS = frozenset({"sistema", "system"})
_BOT_SENDERS = frozenset({"ai", "assistente", "bot"})


def normalize_sender(raw: dict[str, Any]) -> MessageSender:
    """Map the remote sender fields to a MessageSender."""
    sender = str(raw.get("remetente") or raw.get("sender") or "").lower()
    if sender in _ATTENDANT_SENDERS:
        return MessageSender.ATTENDANT
    if sender in _SYSTEM_SENDERS:
        return MessageSender.SYSTEM
    if sender in _BOT_SENDERS or raw.get("tipo") == "ai":
        return MessageSender.BOT
    return MessageSender.CLIENT


@dataclass(frozen=True)
class Message:
    """A single chat message. Never mutated; status changes produce a copy."""

    id: str
    sender: MessageSender
    body: str
    timestamp: datetime
    delivery_status: DeliveryStatus = DeliveryStatus.SENT

    @classmethod
    def outgoing(cls, body: str) -> Message:
        """Create an optimistic attendant message in ``sending`` state."""
        return cls(
            id=f"local-{uuid.uuid4().hex[:12]}",
            sender=MessageSender.ATTENDANT,
            body=body,
            timestamp=utcnow(),
            delivery_status=DeliveryStatus.SENDING,
        )

    def with_status(self, status: DeliveryStatus, *, message_id: str | None = None) -> Message:
        """Return a copy in a new delivery state."""
        return replace(self, delivery_status=status, id=message_id or self.id)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            id=str(data.get("_id") or data.get("id") or f"msg-{uuid.uuid4().hex[:8]}"),
            sender=normalize_sender(data),
            body=data.get("conteudo") or data.get("texto") or data.get("content") or "",
            timestamp=parse_timestamp(data.get("timestamp") or data.get("createdAt")) or utcnow(),
        )


@dataclass(frozen=True)
class ConversationSnapshot:
    """Full server-side view of one conversation, replaced wholesale on fetch."""

    id: str
    messages: tuple[Message, ...] = field(default_factory=tuple)
    status: ConversationStatus = ConversationStatus.AGUARDANDO
    sector_id: str | None = None
    attendant_id: str | None = None
    archived: bool = False
    updated_at: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationSnapshot:
        """Parse the remote conversation document."""
        raw_status = data.get("status") or ConversationStatus.AGUARDANDO.value
        try:
            status = ConversationStatus(raw_status)
        except ValueError:
            status = ConversationStatus.AGUARDANDO

        raw_messages = data.get("mensagens") or data.get("messages") or []
        sector = data.get("setorId") or data.get("sectorId") or data.get("setor")
        if isinstance(sector, dict):
            sector = sector.get("_id") or sector.get("id")
        attendant = data.get("atendenteId") or data.get("attendantId")
        if isinstance(attendant, dict):
            attendant = attendant.get("_id") or attendant.get("id")

        return cls(
            id=str(data.get("_id") or data.get("id") or ""),
            messages=tuple(Message.from_dict(m) for m in raw_messages if isinstance(m, dict)),
            status=status,
            sector_id=str(sector) if sector else None,
            attendant_id=str(attendant) if attendant else None,
            archived=bool(data.get("arquivada") or data.get("archived")),
            updated_at=parse_timestamp(data.get("updatedAt") or data.get("ultimaAtualizacao")),
        )
