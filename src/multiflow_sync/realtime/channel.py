"""WebSocket client for real-time conversation events."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import aiohttp

from multiflow_sync.utils.timeutils import parse_timestamp, utcnow

if TYPE_CHECKING:
    from multiflow_sync.utils.config import Config

logger = logging.getLogger(__name__)


class ChannelState(StrEnum):
    """Channel connection state."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


# Event names the server emits, normalized to one spelling
EVENT_ALIASES = {
    "nova_mensagem": "new_message",
    "new_message": "new_message",
    "conversa_atualizada": "conversation_updated",
    "conversation_updated": "conversation_updated",
    "digitando": "typing",
    "typing": "typing",
}


def user_room(user_id: str) -> str:
    return f"user_{user_id}"


def sector_room(user_id: str, sector_id: str) -> str:
    return f"user_{user_id}_setor_{sector_id}"


def conversation_room(conversation_id: str) -> str:
    return f"conversa_{conversation_id}"


_SCHEMES = {"http": "ws", "https": "wss", "ws": "ws", "wss": "wss"}


def to_ws_url(url: str) -> str:
    """Map an API origin onto its socket URL (http -> ws, https -> wss)."""
    scheme, sep, rest = url.partition("://")
    if not sep or scheme.lower() not in _SCHEMES:
        raise ValueError(f"Unsupported realtime URL: {url!r}")
    return f"{_SCHEMES[scheme.lower()]}://{rest}"


def _extract_conversation_id(data: dict[str, Any]) -> str | None:
    for key in ("conversationId", "conversation_id", "conversaId"):
        if data.get(key):
            return str(data[key])
    for nested_key in ("conversation", "conversa"):
        nested = data.get(nested_key)
        if isinstance(nested, dict) and (nested.get("_id") or nested.get("id")):
            return str(nested.get("_id") or nested.get("id"))
    return None


@dataclass
class RealtimeEvent:
    """A push event received from the server."""

    type: str
    conversation_id: str | None
    timestamp: datetime
    data: dict[str, Any] = field(default_factory=dict)
    room: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RealtimeEvent | None:
        """Create from a wire message. Returns None if the type is missing."""
        raw_type = data.get("type") or data.get("event")
        if not raw_type:
            return None
        payload = data.get("data") if isinstance(data.get("data"), dict) else {}
        conversation_id = _extract_conversation_id(data) or _extract_conversation_id(payload)
        return cls(
            type=EVENT_ALIASES.get(raw_type, raw_type),
            conversation_id=conversation_id,
            timestamp=parse_timestamp(data.get("timestamp")) or utcnow(),
            data=payload,
            room=data.get("room"),
        )


EventHandler = Callable[[RealtimeEvent], Any]


class RealtimeChannel:
    """
    WebSocket client that joins rooms and dispatches push events.

    Rooms survive reconnects: every joined room is joined again once the
    connection comes back.

    Usage:
        async with RealtimeChannel("wss://host", user_id="u1") as channel:
            await channel.join(user_room("u1"))
            channel.on("new_message", reconciler.handle_event)
            await channel.run_forever()
    """

    def __init__(
        self,
        server_url: str,
        *,
        user_id: str | None = None,
        api_key: str = "",
        client_id: str | None = None,
        auto_reconnect: bool = True,
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 5.0,
        max_reconnect_attempts: int = 10,
    ) -> None:
        """
        Args:
            server_url: Socket URL; http(s) origins are mapped to ws(s)
            user_id: User the connection authenticates as
            api_key: Fixed API key sent in the connect handshake
            client_id: Identifier announced to the server (random when omitted)
            auto_reconnect: Reconnect after the socket drops
            reconnect_delay: First reconnect wait, doubled on each failure
            max_reconnect_delay: Upper bound for the reconnect wait
            max_reconnect_attempts: Failed reconnects tolerated (0 = no limit)
        """
        self._server_url = to_ws_url(server_url)
        self._user_id = user_id
        self._api_key = api_key
        self._client_id = client_id or f"mf-{uuid.uuid4().hex[:10]}"
        self._auto_reconnect = auto_reconnect
        self._backoff = (reconnect_delay, max_reconnect_delay)
        self._attempt_limit = max_reconnect_attempts

        self._session: aiohttp.ClientSession | None = None
        self._socket: aiohttp.ClientWebSocketResponse | None = None
        self._state = ChannelState.DISCONNECTED
        self._rooms: set[str] = set()
        self._handlers: dict[str, list[EventHandler]] = {}
        self._reconnect_attempts = 0
        self._running = False

    @classmethod
    def from_config(
        cls,
        config: Config | None = None,
        *,
        user_id: str | None = None,
        **kwargs: Any,
    ) -> RealtimeChannel:
        """Build a channel for the configured socket URL and API key."""
        from multiflow_sync.utils.config import get_config

        config = config or get_config()
        return cls(config.realtime_url, user_id=user_id, api_key=config.api_key, **kwargs)

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ChannelState.CONNECTED

    @property
    def rooms(self) -> frozenset[str]:
        return frozenset(self._rooms)

    async def connect(self) -> None:
        """Open the socket, announce this client and wait for the ack.

        Rooms joined earlier are joined again once the server acknowledges.
        Any failure leaves the channel DISCONNECTED and raises ConnectionError.
        """
        if self._state == ChannelState.CONNECTED:
            return

        self._state = ChannelState.CONNECTING
        if self._session is None:
            self._session = aiohttp.ClientSession()

        try:
            self._socket = await self._session.ws_connect(self._server_url)
            await self._handshake()
        except Exception as e:
            self._state = ChannelState.DISCONNECTED
            raise ConnectionError(f"Realtime handshake with {self._server_url} failed: {e}") from e

        self._state = ChannelState.CONNECTED
        self._reconnect_attempts = 0
        for room in sorted(self._rooms):
            await self._send({"action": "join", "room": room})
        logger.debug("Realtime channel up, rejoined %d room(s)", len(self._rooms))

    async def _handshake(self) -> None:
        await self._send(
            {
                "action": "connect",
                "client_id": self._client_id,
                "user_id": self._user_id,
                "token": self._api_key,
            }
        )
        ack = await self._socket.receive()  # type: ignore[union-attr]
        if ack.type != aiohttp.WSMsgType.TEXT or json.loads(ack.data).get("type") != "connected":
            raise ConnectionError("server did not acknowledge the connection")

    async def disconnect(self) -> None:
        """Stop the receive loop and release the socket and session."""
        self._running = False
        await self._drop_socket()
        if self._session is not None:
            await self._session.close()
            self._session = None
        self._state = ChannelState.DISCONNECTED

    async def __aenter__(self) -> RealtimeChannel:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.disconnect()

    async def join(self, room: str) -> None:
        """Join a room now, or on the next connect."""
        if room in self._rooms and self.is_connected:
            return
        self._rooms.add(room)
        if self.is_connected:
            await self._send({"action": "join", "room": room})

    async def leave(self, room: str) -> None:
        if room not in self._rooms:
            return
        self._rooms.discard(room)
        if self.is_connected:
            await self._send({"action": "leave", "room": room})

    async def send_typing(self, conversation_id: str) -> None:
        """Tell other participants the user is typing."""
        if self.is_connected:
            await self._send({"action": "typing", "conversationId": conversation_id})

    def on(self, event_type: str, handler: EventHandler) -> None:
        """Register a handler for ``event_type`` ("*" receives every event)."""
        self._handlers.setdefault(EVENT_ALIASES.get(event_type, event_type), []).append(handler)

    def off(self, event_type: str, handler: EventHandler | None = None) -> None:
        """Remove one handler, or every handler for ``event_type``."""
        key = EVENT_ALIASES.get(event_type, event_type)
        if handler is None:
            self._handlers.pop(key, None)
        elif key in self._handlers:
            self._handlers[key] = [h for h in self._handlers[key] if h != handler]

    async def run_forever(self) -> None:
        """Dispatch events until disconnect() or until reconnects run out."""
        self._running = True

        while self._running:
            if not self.is_connected:
                if not self._auto_reconnect:
                    break
                await self._try_reconnect()
                continue

            payload = await self._next_payload()
            if payload is not None:
                await self._dispatch(payload)

    async def _next_payload(self) -> dict[str, Any] | None:
        """Read one frame. Returns None for frames that carry no event."""
        if self._socket is None:
            self._state = ChannelState.DISCONNECTED
            return None

        try:
            frame = await self._socket.receive()
        except (aiohttp.ClientError, OSError, RuntimeError):
            logger.warning("Realtime socket read failed", exc_info=True)
            self._state = ChannelState.DISCONNECTED
            if not self._auto_reconnect:
                raise
            return None

        if frame.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
            logger.info("Realtime socket closed by server")
            self._state = ChannelState.DISCONNECTED
            return None
        if frame.type != aiohttp.WSMsgType.TEXT:
            return None

        try:
            payload = json.loads(frame.data)
        except json.JSONDecodeError:
            logger.debug("Skipping non-JSON realtime frame")
            return None
        return payload if isinstance(payload, dict) else None

    async def _send(self, message: dict[str, Any]) -> None:
        if self._socket is not None:
            await self._socket.send_str(json.dumps(message))

    async def _drop_socket(self) -> None:
        if self._socket is None:
            return
        with contextlib.suppress(Exception):
            await self._socket.close()
        self._socket = None

    async def _dispatch(self, data: dict[str, Any]) -> None:
        event = RealtimeEvent.from_dict(data)
        if event is None:
            return

        for handler in (*self._handlers.get(event.type, ()), *self._handlers.get("*", ())):
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.warning("Realtime handler for %s raised: %s", event.type, e)

    async def _try_reconnect(self) -> None:
        if self._attempt_limit and self._reconnect_attempts >= self._attempt_limit:
            logger.warning("Realtime channel gave up after %d reconnects", self._reconnect_attempts)
            self._running = False
            return

        self._state = ChannelState.RECONNECTING
        self._reconnect_attempts += 1
        base, cap = self._backoff
        await asyncio.sleep(min(cap, base * 2 ** (self._reconnect_attempts - 1)))

        await self._drop_socket()
        try:
            await self.connect()
        except ConnectionError as e:
            logger.debug("Reconnect %d failed: %s", self._reconnect_attempts, e)
