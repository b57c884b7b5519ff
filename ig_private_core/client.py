"""High-level client tying session, HTTP transport, login and realtime together.

Usage:
    async with IgApiClient(seed="my-account") as client:
        await client.login("user", "password")
        client.realtime.events.subscribe(on_message, MessageEvent)
        snapshot = client.save_session()

Login never waits for the realtime connection: the push transport is
started in the background and its failures surface only as realtime events
and log records.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from . import constants
from .account import AccountRepository
from .config import RealtimeConfig, RetryPolicy
from .errors import IgResponseError
from .http import DEFAULT_TIMEOUT, IgHttpClient, IgResponse, RequestSpec
from .realtime import RealtimeClient
from .realtime.backends import SocketFactory
from .state import SessionState

_LOGGER = logging.getLogger(__name__)


class IgApiClient:
    """One logical account: SessionState, HTTP transport and realtime client.

    Must be constructed inside a running event loop when no aiohttp session
    is supplied.
    """

    def __init__(
        self,
        *,
        session: aiohttp.ClientSession | None = None,
        state: SessionState | None = None,
        seed: str = constants.DEFAULT_DEVICE_SEED,
        retry: RetryPolicy | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        cache_get_responses: bool = False,
        realtime_config: RealtimeConfig | None = None,
        realtime_socket_factory: SocketFactory | None = None,
    ) -> None:
        self._owns_session = session is None
        # SessionState.cookies is the only jar; load_session swaps it with the state.
        self._session = session or aiohttp.ClientSession(
            cookie_jar=aiohttp.DummyCookieJar()
        )
        self._retry = retry
        self._timeout = timeout
        self._cache_get_responses = cache_get_responses
        self._realtime_config = realtime_config
        self._realtime_socket_factory = realtime_socket_factory

        self.realtime: RealtimeClient | None = None
        self._realtime_start: asyncio.Task[None] | None = None
        self._bind_state(state or SessionState(seed))

    def _bind_state(self, state: SessionState) -> None:
        self.state = state
        self.http = IgHttpClient(
            self._session,
            state,
            retry=self._retry,
            timeout=self._timeout,
            cache_get_responses=self._cache_get_responses,
        )
        self.account = AccountRepository(self.http)

    async def __aenter__(self) -> IgApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Collaborator contract
    # -------------------------------------------------------------------------

    async def send(self, spec: RequestSpec) -> IgResponse:
        return await self.http.send(spec)

    def sign(self, payload: dict[str, Any] | str) -> dict[str, str]:
        return self.http.sign(payload)

    # -------------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------------

    async def login(
        self, username: str, password: str, *, start_realtime: bool = True
    ) -> dict[str, Any]:
        """Log in, then start realtime in the background when requested."""
        user = await self.account.login(username, password)
        if start_realtime:
            self.start_realtime()
        return user

    async def logout(self) -> dict[str, Any]:
        """Log out; the realtime connection is closed even if logout fails."""
        try:
            return await self.account.logout()
        finally:
            await self.stop_realtime()

    def is_logged_in(self) -> bool:
        return self.state.user_id() is not None

    async def is_session_valid(self) -> bool:
        """Probe the server with the current session.

        Skips the network call when the local session is incomplete.
        """
        if not self.state.has_valid_session():
            return False
        try:
            await self.account.current_user()
        except IgResponseError as err:
            _LOGGER.info("[%s] Session rejected: %s", self.state.device_id, err)
            return False
        return True

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def save_session(self) -> dict[str, Any]:
        return self.state.serialize()

    async def load_session(self, data: dict[str, Any] | str) -> None:
        """Replace the session with a saved snapshot; no network access."""
        await self.stop_realtime()
        self._bind_state(SessionState.deserialize(data))

    # -------------------------------------------------------------------------
    # Realtime
    # -------------------------------------------------------------------------

    def ensure_realtime(self) -> RealtimeClient:
        """Return the realtime client, creating it on first use."""
        if self.realtime is None:
            self.realtime = RealtimeClient(
                self.state,
                config=self._realtime_config,
                socket_factory=self._realtime_socket_factory,
                session=self._session,
            )
        return self.realtime

    def start_realtime(self) -> asyncio.Task[None]:
        """Connect realtime in the background; failures are logged, not raised."""
        realtime = self.ensure_realtime()
        if self._realtime_start is None or self._realtime_start.done():
            self._realtime_start = asyncio.create_task(realtime.connect())
            self._realtime_start.add_done_callback(self._on_realtime_started)
        return self._realtime_start

    def _on_realtime_started(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        err = task.exception()
        if err is not None:
            _LOGGER.warning(
                "[%s] Background realtime connect failed (non-fatal): %s",
                self.state.device_id,
                err,
            )

    async def stop_realtime(self) -> None:
        if self.realtime is not None:
            await self.realtime.disconnect()
        self.realtime = None

    async def close(self) -> None:
        await self.stop_realtime()
        if self._owns_session and not self._session.closed:
            await self._session.close()
