"""Real-time push events over WebSocket."""

from multiflow_sync.realtime.channel import (
    ChannelState,
    RealtimeChannel,
    RealtimeEvent,
    conversation_room,
    sector_room,
    to_ws_url,
    user_room,
)

__all__ = [
    "ChannelState",
    "RealtimeChannel",
    "RealtimeEvent",
    "conversation_room",
    "sector_room",
    "to_ws_url",
    "user_room",
]
