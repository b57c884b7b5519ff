"""Socket backends for the realtime transport.

Three implementations of one ``RealtimeSocket`` capability. The default
speaks MQTT 3.1.1 over a secure WebSocket through aiomqtt; the plain
WebSocket backends (websockets or aiohttp) are fallbacks for brokers that
do not talk MQTT, and carry payloads without topics or subscriptions.
The backend is chosen once, when the realtime client is constructed.
"""

from __future__ import annotations

import asyncio
import logging
import ssl
import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum

import aiohttp
import aiomqtt
import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    ConnectionClosed,
    InvalidHandshake,
    InvalidURI,
    WebSocketException,
)
from yarl import URL

from ..errors import RealtimeConnectionError, RealtimeError, RealtimeNotConnectedError

_LOGGER = logging.getLogger(__name__)

SUBSCRIBE_QOS = 1
PUBLISH_QOS = 0


class SocketFrameType(Enum):
    """Normalized socket frame types."""

    DATA = "data"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class SocketFrame:
    """Normalized inbound frame; ``topic`` is set by topic-aware backends."""

    type: SocketFrameType
    data: bytes | None = None
    reason: str | None = None
    topic: str | None = None


class RealtimeSocket(ABC):
    """One persistent connection to a broker."""

    @abstractmethod
    async def connect(self, url: str, *, headers: Mapping[str, str]) -> None:
        """Complete the handshake or raise RealtimeConnectionError."""

    @abstractmethod
    async def subscribe(self, topics: Sequence[str], qos: int = SUBSCRIBE_QOS) -> None:
        """Subscribe to ``topics``; a no-op for backends without topics."""

    @abstractmethod
    async def publish(self, topic: str, payload: bytes, qos: int = PUBLISH_QOS) -> None:
        """Send ``payload`` on ``topic``."""

    @abstractmethod
    async def ping(self) -> None:
        """Return once the broker has proven it is alive.

        Raises RealtimeError when the link is gone. A ping that never
        returns means no pong arrived.
        """

    @abstractmethod
    async def close(self) -> None:
        """Close the connection; safe to call more than once."""

    @abstractmethod
    def frames(self) -> AsyncIterator[SocketFrame]:
        """Yield inbound frames, ending with a CLOSED or ERROR frame."""


def _payload_bytes(payload: object) -> bytes:
    if payload is None:
        return b""
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    return str(payload).encode("utf-8")


class MqttRealtimeSocket(RealtimeSocket):
    """RealtimeSocket speaking MQTT over a WebSocket through aiomqtt.

    MQTT keepalive (PINGREQ/PINGRESP) is run by the protocol itself: a
    missing PINGRESP drops the connection, which ends ``frames()``.
    """

    def __init__(self, *, keepalive: float = 30.0) -> None:
        self._keepalive = max(1, int(keepalive))
        self._client: aiomqtt.Client | None = None
        self.client_id: str | None = None

    def _require(self) -> aiomqtt.Client:
        if self._client is None:
            raise RealtimeNotConnectedError("MQTT client is not connected")
        return self._client

    async def connect(self, url: str, *, headers: Mapping[str, str]) -> None:
        target = URL(url)
        if target.host is None:
            raise RealtimeConnectionError(f"Invalid broker URL: {url}")

        self.client_id = f"ig_{uuid.uuid4()}"
        client = aiomqtt.Client(
            target.host,
            port=target.port or 443,
            identifier=self.client_id,
            protocol=aiomqtt.ProtocolVersion.V311,
            clean_session=True,
            transport="websockets",
            websocket_path=target.path or "/",
            websocket_headers=dict(headers),
            tls_context=ssl.create_default_context() if target.scheme == "wss" else None,
            keepalive=self._keepalive,
        )
        try:
            await client.__aenter__()
        except aiomqtt.MqttError as err:
            raise RealtimeConnectionError(f"MQTT connection to {url} failed") from err
        self._client = client

    async def subscribe(self, topics: Sequence[str], qos: int = SUBSCRIBE_QOS) -> None:
        client = self._require()
        for topic in topics:
            try:
                await client.subscribe(topic, qos=qos)
            except aiomqtt.MqttError as err:
                raise RealtimeError(f"Subscribe to {topic} failed") from err

    async def publish(self, topic: str, payload: bytes, qos: int = PUBLISH_QOS) -> None:
        client = self._require()
        try:
            await client.publish(topic, payload, qos=qos)
        except aiomqtt.MqttError as err:
            raise RealtimeNotConnectedError(f"Publish to {topic} failed") from err

    async def ping(self) -> None:
        self._require()

    async def close(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.__aexit__(None, None, None)
        except aiomqtt.MqttError as err:
            _LOGGER.debug("MQTT disconnect failed: %s", err)

    async def frames(self) -> AsyncIterator[SocketFrame]:
        client = self._require()
        try:
            async for message in client.messages:
                yield SocketFrame(
                    SocketFrameType.DATA,
                    _payload_bytes(message.payload),
                    topic=message.topic.value,
                )
        except aiomqtt.MqttError as err:
            yield SocketFrame(SocketFrameType.CLOSED, reason=str(err))
        except Exception as err:
            yield SocketFrame(SocketFrameType.ERROR, reason=str(err))
        else:
            yield SocketFrame(SocketFrameType.CLOSED, reason="closed by broker")


class WebsocketsRealtimeSocket(RealtimeSocket):
    """Plain WebSocket fallback on top of the websockets library."""

    def __init__(self) -> None:
        self._ws: ClientConnection | None = None

    def _require(self) -> ClientConnection:
        if self._ws is None:
            raise RealtimeNotConnectedError("WebSocket is not connected")
        return self._ws

    async def connect(self, url: str, *, headers: Mapping[str, str]) -> None:
        extra = {k: v for k, v in headers.items() if k.lower() != "user-agent"}
        try:
            self._ws = await websockets.connect(
                url,
                additional_headers=extra,
                user_agent_header=headers.get("User-Agent"),
                # Keepalive is driven by the realtime client.
                ping_interval=None,
                open_timeout=None,
                close_timeout=5,
                max_size=None,
            )
        except (InvalidHandshake, InvalidURI) as err:
            raise RealtimeConnectionError(f"WebSocket handshake with {url} failed") from err
        except (OSError, WebSocketException) as err:
            raise RealtimeConnectionError(f"WebSocket connection to {url} failed") from err

    async def subscribe(self, topics: Sequence[str], qos: int = SUBSCRIBE_QOS) -> None:
        self._require()

    async def publish(self, topic: str, payload: bytes, qos: int = PUBLISH_QOS) -> None:
        ws = self._require()
        try:
            await ws.send(payload.decode("utf-8"))
        except ConnectionClosed as err:
            raise RealtimeNotConnectedError("WebSocket is closed") from err

    async def ping(self) -> None:
        ws = self._require()
        try:
            pong_waiter = await ws.ping()
            await pong_waiter
        except ConnectionClosed as err:
            raise RealtimeError("Ping failed: connection closed") from err

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()

    async def frames(self) -> AsyncIterator[SocketFrame]:
        ws = self._require()
        try:
            async for msg in ws:
                data = msg.encode("utf-8") if isinstance(msg, str) else bytes(msg)
                yield SocketFrame(SocketFrameType.DATA, data)
        except ConnectionClosed as err:
            yield SocketFrame(SocketFrameType.CLOSED, reason=str(err))
        except Exception as err:
            yield SocketFrame(SocketFrameType.ERROR, reason=str(err))
        else:
            # Normal iteration completion means the peer closed gracefully.
            yield SocketFrame(SocketFrameType.CLOSED, reason="closed by broker")


class AiohttpRealtimeSocket(RealtimeSocket):
    """Plain WebSocket fallback on top of aiohttp's WebSocket client.

    Control frames are handled here rather than by aiohttp's autoping so
    that ``ping()`` can wait for the matching PONG.
    """

    def __init__(self, session: aiohttp.ClientSession) -> None:
        self._session = session
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._pong = asyncio.Event()

    def _require(self) -> aiohttp.ClientWebSocketResponse:
        if self._ws is None:
            raise RealtimeNotConnectedError("WebSocket is not connected")
        return self._ws

    async def connect(self, url: str, *, headers: Mapping[str, str]) -> None:
        try:
            self._ws = await self._session.ws_connect(
                url,
                headers=dict(headers),
                autoping=False,
                max_msg_size=0,
            )
        except aiohttp.WSServerHandshakeError as err:
            raise RealtimeConnectionError(f"WebSocket handshake with {url} failed") from err
        except (OSError, aiohttp.ClientError) as err:
            raise RealtimeConnectionError(f"WebSocket connection to {url} failed") from err

    async def subscribe(self, topics: Sequence[str], qos: int = SUBSCRIBE_QOS) -> None:
        self._require()

    async def publish(self, topic: str, payload: bytes, qos: int = PUBLISH_QOS) -> None:
        ws = self._require()
        if ws.closed:
            raise RealtimeNotConnectedError("WebSocket is closed")
        await ws.send_str(payload.decode("utf-8"))

    async def ping(self) -> None:
        ws = self._require()
        if ws.closed:
            raise RealtimeError("Ping failed: connection closed")
        self._pong.clear()
        await ws.ping()
        await self._pong.wait()

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()

    async def frames(self) -> AsyncIterator[SocketFrame]:
        ws = self._require()
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                yield SocketFrame(SocketFrameType.DATA, msg.data.encode("utf-8"))
            elif msg.type == aiohttp.WSMsgType.BINARY:
                yield SocketFrame(SocketFrameType.DATA, msg.data)
            elif msg.type == aiohttp.WSMsgType.PING:
                await ws.pong(msg.data)
            elif msg.type == aiohttp.WSMsgType.PONG:
                self._pong.set()
            elif msg.type == aiohttp.WSMsgType.ERROR:
                yield SocketFrame(SocketFrameType.ERROR, reason=str(ws.exception()))
                return
        yield SocketFrame(SocketFrameType.CLOSED, reason="closed by broker")


SocketFactory = Callable[[], RealtimeSocket]


def create_socket_factory(
    backend: str,
    *,
    session: aiohttp.ClientSession | None = None,
    keepalive: float = 30.0,
) -> SocketFactory:
    """Return a factory for the named backend ("mqtt", "websockets" or "aiohttp")."""
    if backend == "mqtt":
        return lambda: MqttRealtimeSocket(keepalive=keepalive)
    if backend == "websockets":
        return WebsocketsRealtimeSocket
    if backend == "aiohttp":
        if session is None:
            raise ValueError("The aiohttp realtime backend needs a ClientSession")
        return lambda: AiohttpRealtimeSocket(session)
    raise ValueError(f"Unknown realtime backend: {backend!r}")
