"""Reconnecting realtime client.

State machine:

    IDLE -> CONNECTING -> CONNECTED -> DISCONNECTED
                 ^                          |
                 +------ reconnect timer ---+

After an unrequested disconnect a reconnect is scheduled after
``min(cap, base * 2**min(retries, 6))`` seconds; a successful connect
resets ``retries``. ``disconnect()`` stops all of it. Faults inside the
loop are published as events, never raised.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Sequence
from enum import Enum
from typing import TYPE_CHECKING, Any

from .. import constants
from ..config import RealtimeConfig
from ..errors import RealtimeConnectionError, RealtimeError, RealtimeNotConnectedError
from .backends import (
    PUBLISH_QOS,
    SUBSCRIBE_QOS,
    RealtimeSocket,
    SocketFactory,
    SocketFrameType,
    create_socket_factory,
)
from .events import (
    ConnectedEvent,
    DisconnectedEvent,
    ErrorEvent,
    EventBus,
    MessageEvent,
    RawFrameEvent,
    UnknownMessageEvent,
)
from .parsers import decode_frame, expand_message_sync

if TYPE_CHECKING:
    import aiohttp

    from ..state import SessionState

_LOGGER = logging.getLogger(__name__)

CLOSE_TIMEOUT = 2.0


class RealtimeState(Enum):
    """Connection states."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class RealtimeClient:
    """Push transport bound to one SessionState.

    Usage:
        realtime = RealtimeClient(state)
        realtime.events.subscribe(on_message, MessageEvent)
        await realtime.connect()
        await realtime.send_direct_message("340282366841710300949128", "hi")
        await realtime.disconnect()
    """

    def __init__(
        self,
        state: SessionState,
        *,
        config: RealtimeConfig | None = None,
        socket_factory: SocketFactory | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._session_state = state
        self._config = config or RealtimeConfig()
        self._socket_factory = socket_factory or create_socket_factory(
            self._config.backend,
            session=session,
            keepalive=self._config.keepalive_interval,
        )
        self.events = EventBus()

        self._state = RealtimeState.IDLE
        self._socket: RealtimeSocket | None = None
        self._broker: str | None = None
        self._retries = 0
        self._shutdown_requested = False
        self._last_activity = 0.0

        self._connect_task: asyncio.Task[None] | None = None
        self._listen_task: asyncio.Task[None] | None = None
        self._keepalive_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None

    @property
    def _tag(self) -> str:
        return self._session_state.device_id

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def state(self) -> RealtimeState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is RealtimeState.CONNECTED

    @property
    def retries(self) -> int:
        return self._retries

    @property
    def broker(self) -> str | None:
        """Broker of the current (or last) connection."""
        return self._broker

    async def connect(self) -> None:
        """Connect to the first broker that completes a handshake.

        Returns immediately when already connected; a call made while a
        connect is in flight waits for that attempt instead of starting one.

        Raises:
            RealtimeConnectionError: Every broker failed, or disconnect()
                aborted the attempt
        """
        self._shutdown_requested = False
        if self._state is RealtimeState.CONNECTED:
            return
        self._cancel_reconnect()

        task = self._start_connect()
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                raise RealtimeConnectionError("Connect aborted by disconnect") from None
            raise

    async def disconnect(self) -> None:
        """Close the connection and stop reconnecting; safe from any state.

        Always ends DISCONNECTED, even when tearing the socket down fails.
        """
        self._shutdown_requested = True
        previous = self._state

        try:
            self._cancel_reconnect()
            # The connect task goes first: it may still spawn listener tasks.
            await self._cancel_tasks(self._connect_task)
            await self._cancel_tasks(self._listen_task, self._keepalive_task)
        finally:
            self._listen_task = None
            self._keepalive_task = None
            socket, self._socket = self._socket, None
            try:
                if socket is not None:
                    await self._close_quietly(socket)
            finally:
                self._set_state(RealtimeState.DISCONNECTED)
                if previous in (RealtimeState.CONNECTING, RealtimeState.CONNECTED):
                    _LOGGER.info("[%s] Realtime disconnected on request", self._tag)
                    await self.events.publish(DisconnectedEvent("disconnect requested"))

    async def publish(self, topic: str, payload: dict[str, Any]) -> None:
        """Send ``payload`` on ``topic``.

        Raises:
            RealtimeNotConnectedError: Not currently connected
        """
        socket = self._socket
        if self._state is not RealtimeState.CONNECTED or socket is None:
            raise RealtimeNotConnectedError("Realtime not connected")
        await socket.publish(topic, json.dumps(payload).encode("utf-8"), qos=PUBLISH_QOS)

    async def send_direct_message(self, thread_id: str, text: str) -> None:
        """Push a direct message over the socket.

        Raises:
            RealtimeNotConnectedError: Not currently connected
        """
        await self.publish(
            constants.TOPIC_SEND_DIRECT,
            {
                "type": "direct_message",
                "thread_id": thread_id,
                "text": text,
                "ts": int(time.time() * 1000),
            },
        )

    # -------------------------------------------------------------------------
    # Internal: connection state machine
    # -------------------------------------------------------------------------

    def _set_state(self, state: RealtimeState) -> None:
        if self._state is not state:
            _LOGGER.debug(
                "[%s] Realtime state: %s → %s", self._tag, self._state.value, state.value
            )
            self._state = state

    def _start_connect(self) -> asyncio.Task[None]:
        if self._connect_task is None or self._connect_task.done():
            self._connect_task = asyncio.create_task(self._open())
        return self._connect_task

    def _handshake_headers(self) -> dict[str, str]:
        state = self._session_state
        headers = {
            "User-Agent": state.app_user_agent,
            "Origin": constants.WEB_ORIGIN,
        }
        cookie_header = state.cookie_header()
        if cookie_header:
            headers["Cookie"] = cookie_header
        if state.authorization:
            headers["Authorization"] = state.authorization
        return headers

    async def _open(self) -> None:
        self._set_state(RealtimeState.CONNECTING)
        headers = self._handshake_headers()
        last_error: BaseException | None = None

        for broker in self._config.brokers:
            socket = self._socket_factory()
            _LOGGER.info(
                "[%s] Connecting to %s (attempt #%d)", self._tag, broker, self._retries + 1
            )
            try:
                await asyncio.wait_for(
                    socket.connect(broker, headers=headers),
                    timeout=self._config.connect_timeout,
                )
            except asyncio.CancelledError:
                await self._close_quietly(socket)
                raise
            except (TimeoutError, RealtimeError, OSError) as err:
                _LOGGER.warning("[%s] Broker %s failed: %s", self._tag, broker, err)
                last_error = err
                await self._close_quietly(socket)
                continue

            await self._on_connected(socket, broker)
            return

        self._set_state(RealtimeState.DISCONNECTED)
        error = RealtimeConnectionError("All realtime brokers failed to connect")
        error.__cause__ = last_error
        await self.events.publish(ErrorEvent(error))
        delay = self._schedule_reconnect()
        await self.events.publish(DisconnectedEvent("connect failed", reconnect_in=delay))
        raise error

    async def _on_connected(self, socket: RealtimeSocket, broker: str) -> None:
        self._socket = socket
        self._broker = broker
        self._retries = 0
        self._last_activity = asyncio.get_running_loop().time()
        self._set_state(RealtimeState.CONNECTED)
        _LOGGER.info("[%s] Realtime connected to %s", self._tag, broker)

        await self._subscribe(socket, self._config.topics)
        self._listen_task = asyncio.create_task(self._listen(socket))
        self._keepalive_task = asyncio.create_task(self._keepalive_loop(socket))
        await self.events.publish(ConnectedEvent(broker))

    async def _subscribe(self, socket: RealtimeSocket, topics: Sequence[str]) -> None:
        try:
            await socket.subscribe(topics, qos=SUBSCRIBE_QOS)
        except (RealtimeError, OSError) as err:
            _LOGGER.warning("[%s] Topic subscription failed: %s", self._tag, err)
            await self.events.publish(ErrorEvent(err))

    async def _handle_disconnect(self, socket: RealtimeSocket, reason: str) -> None:
        if socket is not self._socket:
            return
        self._socket = None

        current = asyncio.current_task()
        for task in (self._listen_task, self._keepalive_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._listen_task = None
        self._keepalive_task = None

        try:
            await self._close_quietly(socket)
        finally:
            self._set_state(RealtimeState.DISCONNECTED)

        delay: float | None = None
        if not self._shutdown_requested:
            delay = self._schedule_reconnect()
        _LOGGER.info("[%s] Realtime disconnected: %s", self._tag, reason)
        await self.events.publish(DisconnectedEvent(reason, reconnect_in=delay))

    def _schedule_reconnect(self) -> float | None:
        """Schedule a reconnect with exponential backoff; returns the delay."""
        if self._shutdown_requested or self._reconnect_task is not None:
            return None

        delay = self._config.reconnect_delay(self._retries)
        self._retries += 1
        _LOGGER.info(
            "[%s] Reconnecting in %.1fs (attempt %d)", self._tag, delay, self._retries
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after_delay(delay))
        return delay

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _reconnect_after_delay(self, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
            # Cleared before connecting so a failed attempt can schedule the next one.
            if self._reconnect_task is asyncio.current_task():
                self._reconnect_task = None
            if self._shutdown_requested:
                return
            await self._start_connect()
        except asyncio.CancelledError:
            _LOGGER.debug("[%s] Reconnect cancelled", self._tag)
        except RealtimeError as err:
            _LOGGER.debug("[%s] Reconnect attempt failed: %s", self._tag, err)
        finally:
            if self._reconnect_task is asyncio.current_task():
                self._reconnect_task = None

    @staticmethod
    async def _cancel_tasks(*tasks: asyncio.Task[None] | None) -> None:
        current = asyncio.current_task()
        pending = [
            task
            for task in tasks
            if task is not None and task is not current and not task.done()
        ]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _close_quietly(self, socket: RealtimeSocket) -> None:
        try:
            await asyncio.wait_for(socket.close(), timeout=CLOSE_TIMEOUT)
        except Exception as err:
            _LOGGER.warning("[%s] Socket close failed: %s", self._tag, err)
            await self.events.publish(ErrorEvent(err))

    # -------------------------------------------------------------------------
    # Internal: listener and keepalive
    # -------------------------------------------------------------------------

    async def _listen(self, socket: RealtimeSocket) -> None:
        reason = "closed by broker"
        frame_count = 0
        try:
            async for frame in socket.frames():
                if frame.type is SocketFrameType.DATA and frame.data is not None:
                    frame_count += 1
                    self._last_activity = asyncio.get_running_loop().time()
                    await self._handle_frame(frame.data, frame.topic)
                elif frame.type is SocketFrameType.CLOSED:
                    reason = frame.reason or reason
                    break
                elif frame.type is SocketFrameType.ERROR:
                    reason = f"socket error: {frame.reason}"
                    await self.events.publish(ErrorEvent(RealtimeError(reason)))
                    break
        except asyncio.CancelledError:
            _LOGGER.debug("[%s] Listener cancelled (%d frames)", self._tag, frame_count)
            raise
        except Exception as err:
            _LOGGER.exception("[%s] Unexpected realtime error: %s", self._tag, err)
            reason = f"listener failed: {err}"
            await self.events.publish(ErrorEvent(err))

        await self._handle_disconnect(socket, reason)

    async def _handle_frame(self, data: bytes, topic: str | None = None) -> None:
        await self.events.publish(RawFrameEvent(data))
        decoded = decode_frame(data, topic)
        topic = decoded.topic

        if topic is None or topic not in self._config.topics:
            _LOGGER.debug("[%s] Unknown realtime topic: %s", self._tag, topic)
            await self.events.publish(UnknownMessageEvent(topic, decoded.payload, data))
            return

        if topic == constants.TOPIC_MESSAGE_SYNC:
            for item in expand_message_sync(decoded.payload):
                await self.events.publish(MessageEvent(topic, item, data))
            return

        await self.events.publish(MessageEvent(topic, decoded.payload, data))

    async def _keepalive_loop(self, socket: RealtimeSocket) -> None:
        """Ping every interval; two silent intervals mean the link is dead."""
        interval = self._config.keepalive_interval
        loop = asyncio.get_running_loop()
        try:
            while socket is self._socket:
                await asyncio.sleep(interval)
                try:
                    await asyncio.wait_for(socket.ping(), timeout=interval)
                    self._last_activity = loop.time()
                except (TimeoutError, RealtimeError, OSError) as err:
                    _LOGGER.debug("[%s] Ping failed: %s", self._tag, err)

                silent_for = loop.time() - self._last_activity
                if silent_for >= 2 * interval:
                    _LOGGER.warning(
                        "[%s] Connection dead (%.1fs without traffic)", self._tag, silent_for
                    )
                    await self._handle_disconnect(socket, "keepalive timeout")
                    return
        except asyncio.CancelledError:
            _LOGGER.debug("[%s] Keepalive cancelled", self._tag)
        except Exception as err:
            _LOGGER.exception("[%s] Keepalive error: %s", self._tag, err)
            await self.events.publish(ErrorEvent(err))

