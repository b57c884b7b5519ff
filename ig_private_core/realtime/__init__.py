"""Realtime push transport.

Components:
- backends: RealtimeSocket implementations (MQTT, websockets, aiohttp)
- client: reconnecting RealtimeClient state machine
- events: event types and the EventBus
- parsers: inbound frame decoding
"""

from .backends import (
    AiohttpRealtimeSocket,
    MqttRealtimeSocket,
    RealtimeSocket,
    SocketFrame,
    SocketFrameType,
    WebsocketsRealtimeSocket,
    create_socket_factory,
)
from .client import RealtimeClient, RealtimeState
from .events import (
    ConnectedEvent,
    DisconnectedEvent,
    ErrorEvent,
    EventBus,
    MessageEvent,
    RawFrameEvent,
    RealtimeEvent,
    UnknownMessageEvent,
)
from .parsers import DecodedFrame, decode_frame, expand_message_sync, thread_id_from_path

__all__ = [
    "AiohttpRealtimeSocket",
    "ConnectedEvent",
    "DecodedFrame",
    "DisconnectedEvent",
    "ErrorEvent",
    "EventBus",
    "MessageEvent",
    "MqttRealtimeSocket",
    "RawFrameEvent",
    "RealtimeClient",
    "RealtimeEvent",
    "RealtimeSocket",
    "RealtimeState",
    "SocketFrame",
    "SocketFrameType",
    "UnknownMessageEvent",
    "WebsocketsRealtimeSocket",
    "create_socket_factory",
    "decode_frame",
    "expand_message_sync",
    "thread_id_from_path",
]
