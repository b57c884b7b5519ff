"""Realtime event types and the publish/subscribe bus that delivers them."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeAlias, TypeVar

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ConnectedEvent:
    """A broker handshake completed."""

    broker: str


@dataclass(frozen=True, slots=True)
class DisconnectedEvent:
    """The connection ended.

    ``reconnect_in`` is the scheduled reconnect delay in seconds, or None
    when no reconnect will follow.
    """

    reason: str
    reconnect_in: float | None = None


@dataclass(frozen=True, slots=True)
class MessageEvent:
    """Decoded payload received on a subscribed topic."""

    topic: str
    payload: Any
    raw: bytes = b""


@dataclass(frozen=True, slots=True)
class UnknownMessageEvent:
    """Frame whose topic has no handler (or carried no topic at all)."""

    topic: str | None
    payload: Any
    raw: bytes = b""


@dataclass(frozen=True, slots=True)
class RawFrameEvent:
    """Every inbound frame, before decoding."""

    data: bytes


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    """Fault inside the realtime loop; the loop itself keeps running."""

    cause: BaseException


RealtimeEvent: TypeAlias = (
    ConnectedEvent
    | DisconnectedEvent
    | MessageEvent
    | UnknownMessageEvent
    | RawFrameEvent
    | ErrorEvent
)

EventT = TypeVar("EventT")
EventHandler: TypeAlias = Callable[[Any], Awaitable[None] | None]


class EventBus:
    """Fan-out of realtime events to subscribed handlers.

    Handlers may be plain callables or coroutine functions. A failing
    handler is logged and does not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._handlers: list[tuple[type | None, EventHandler]] = []

    def subscribe(
        self,
        handler: Callable[[EventT], Awaitable[None] | None],
        event_type: type[EventT] | None = None,
    ) -> Callable[[], None]:
        """Register ``handler`` for ``event_type`` (all events when None).

        Returns:
            A callable that removes the subscription.
        """
        entry: tuple[type | None, EventHandler] = (event_type, handler)
        self._handlers.append(entry)

        def unsubscribe() -> None:
            if entry in self._handlers:
                self._handlers.remove(entry)

        return unsubscribe

    def clear(self) -> None:
        self._handlers.clear()

    async def publish(self, event: RealtimeEvent) -> None:
        for event_type, handler in list(self._handlers):
            if event_type is not None and not isinstance(event, event_type):
                continue
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as err:
                _LOGGER.exception(
                    "Realtime handler error for %s: %s", type(event).__name__, err
                )
