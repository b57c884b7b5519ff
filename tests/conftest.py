"""Pytest configuration and fixtures for ig_private_core tests."""

from __future__ import annotations

import asyncio
import base64
import json
from collections.abc import AsyncIterator, Callable, Iterable, Mapping, Sequence
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from multidict import CIMultiDict

from ig_private_core.cookies import set_cookie
from ig_private_core.errors import RealtimeConnectionError
from ig_private_core.realtime.backends import RealtimeSocket, SocketFrame, SocketFrameType
from ig_private_core.state import SessionState


@pytest.fixture
def mock_session() -> MagicMock:
    """Create a mock aiohttp ClientSession."""
    import aiohttp

    return MagicMock(spec=aiohttp.ClientSession)


@pytest.fixture
async def state() -> SessionState:
    return SessionState("test-seed")


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def public_key_b64(rsa_private_key: rsa.RSAPrivateKey) -> str:
    """Server-style public key: base64 of the PEM document."""
    pem = rsa_private_key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return base64.b64encode(pem).decode("ascii")


def create_mock_response(
    status: int = 200,
    json_data: Any = None,
    text_data: str | None = None,
    raw_data: bytes | None = None,
    headers: Iterable[tuple[str, str]] | Mapping[str, str] | None = None,
) -> AsyncMock:
    """Create a configured mock response.

    Args:
        status: HTTP status code
        json_data: Body to serve as JSON text
        text_data: Body text, overrides json_data
        raw_data: Body bytes, overrides text_data
        headers: Response headers (pairs allow repeated Set-Cookie)

    Returns:
        Configured AsyncMock response
    """
    response = AsyncMock()
    response.status = status
    response.headers = CIMultiDict(headers or {})

    if text_data is None:
        text_data = json.dumps(json_data) if json_data is not None else ""
    response.read.return_value = raw_data if raw_data is not None else text_data.encode()

    response.__aenter__.return_value = response
    response.__aexit__.return_value = None

    return response


def set_logged_in_cookies(state: SessionState, user_id: str = "42") -> None:
    for name, value in (
        ("ds_user_id", user_id),
        ("ds_user", "someone"),
        ("csrftoken", "csrf123"),
        ("sessionid", "sess456"),
    ):
        set_cookie(state.cookies, name, value, "instagram.com")


class FakeSocket(RealtimeSocket):
    """In-memory RealtimeSocket driven by the test.

    ``behaviour`` maps a broker URL to flag overrides applied once the URL
    is known, so one factory can model brokers that behave differently.
    """

    def __init__(
        self,
        behaviour: Mapping[str, Mapping[str, bool]] | None = None,
        *,
        refuse: bool = False,
        hang_connect: bool = False,
        close_on_connect: bool = False,
        hang_ping: bool = False,
        close_error: Exception | None = None,
    ) -> None:
        self.behaviour = behaviour or {}
        self.refuse = refuse
        self.hang_connect = hang_connect
        self.close_on_connect = close_on_connect
        self.hang_ping = hang_ping
        self.close_error = close_error
        self.url: str | None = None
        self.headers: Mapping[str, str] = {}
        self.handshake_done = False
        self.subscriptions: list[tuple[str, int]] = []
        self.published: list[tuple[str, bytes, int]] = []
        self.pings = 0
        self.closed = False
        self._inbound: asyncio.Queue[SocketFrame] = asyncio.Queue()

    async def connect(self, url: str, *, headers: Mapping[str, str]) -> None:
        self.url = url
        self.headers = headers
        for name, value in self.behaviour.get(url, {}).items():
            setattr(self, name, value)
        await asyncio.sleep(0)
        if self.hang_connect:
            await asyncio.Event().wait()
        if self.refuse:
            raise RealtimeConnectionError(f"{url} refused")
        self.handshake_done = True
        if self.close_on_connect:
            self.drop("closed by broker")

    async def subscribe(self, topics: Sequence[str], qos: int = 1) -> None:
        self.subscriptions.extend((topic, qos) for topic in topics)

    async def publish(self, topic: str, payload: bytes, qos: int = 0) -> None:
        self.published.append((topic, payload, qos))

    async def ping(self) -> None:
        self.pings += 1
        if self.hang_ping:
            await asyncio.Event().wait()

    async def close(self) -> None:
        self.closed = True
        if self.close_error is not None:
            raise self.close_error

    async def frames(self) -> AsyncIterator[SocketFrame]:
        while True:
            frame = await self._inbound.get()
            yield frame
            if frame.type is not SocketFrameType.DATA:
                return

    def feed(self, data: bytes | dict[str, Any] | list[Any], topic: str | None = None) -> None:
        if not isinstance(data, bytes):
            data = json.dumps(data).encode("utf-8")
        self._inbound.put_nowait(SocketFrame(SocketFrameType.DATA, data, topic=topic))

    def drop(self, reason: str = "closed by broker") -> None:
        self._inbound.put_nowait(SocketFrame(SocketFrameType.CLOSED, reason=reason))

    def published_json(self) -> list[tuple[str, Any]]:
        return [(topic, json.loads(payload)) for topic, payload, _ in self.published]


class FakeSocketFactory:
    """Socket factory recording every socket it hands out."""

    def __init__(
        self,
        behaviour: Mapping[str, Mapping[str, bool]] | None = None,
        **flags: Any,
    ) -> None:
        self.behaviour = behaviour
        self.flags = flags
        self.sockets: list[FakeSocket] = []

    def __call__(self) -> FakeSocket:
        socket = FakeSocket(self.behaviour, **self.flags)
        self.sockets.append(socket)
        return socket

    @property
    def attempts(self) -> list[str | None]:
        return [socket.url for socket in self.sockets]

    @property
    def handshakes(self) -> list[FakeSocket]:
        return [socket for socket in self.sockets if socket.handshake_done]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds or ``timeout`` expires."""

    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)
