"""Durable session state for one logical account.

SessionState owns everything the server needs to recognise the emulated
client between requests and across restarts:
- device identity (deterministic from a seed)
- an aiohttp cookie jar
- bearer authorization and WWW-claim tokens
- password encryption key material
- checkpoint payloads set by the server

Accessors for cookie-derived values are explicit query methods returning
``None`` when a value is absent; only ``require_cookie`` raises.

The cookie jar binds to the running event loop, so build SessionState
inside async code.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import time
from dataclasses import replace
from typing import Any

import aiohttp

from . import constants
from . import cookies as cookiejar
from .device import DeviceIdentity, generate_device, temporary_guid
from .errors import CookieNotFoundError

_LOGGER = logging.getLogger(__name__)

DEFAULT_GUID_LIFETIME_MS = 1_200_000

_SERIALIZED_FIELDS: tuple[str, ...] = (
    "authorization",
    "www_claim",
    "password_encryption_key_id",
    "password_encryption_pub_key",
    "language",
    "timezone_offset",
    "radio_type",
    "capabilities_header",
    "connection_type_header",
    "checkpoint",
    "challenge",
    "client_session_id_lifetime",
    "pigeon_session_id_lifetime",
)


class SessionState:
    """Identity, cookies and tokens for one logical session.

    Exactly one SessionState should back a logical session; concurrent
    sessions need independent instances.
    """

    def __init__(self, seed: str = constants.DEFAULT_DEVICE_SEED) -> None:
        self.host = constants.HOST
        self.base_url = constants.BASE_URL
        self.language = "en_US"
        self.timezone_offset = str(time.localtime().tm_gmtoff)
        self.radio_type = "wifi-none"
        self.capabilities_header = "3brTv10="
        self.connection_type_header = "WIFI"

        self.cookies = aiohttp.CookieJar()
        self.authorization: str | None = None
        self.www_claim: str | None = None
        self.password_encryption_key_id: int | None = None
        self.password_encryption_pub_key: str | None = None
        self.checkpoint: dict[str, Any] | None = None
        self.challenge: dict[str, Any] | None = None

        self.client_session_id_lifetime = DEFAULT_GUID_LIFETIME_MS
        self.pigeon_session_id_lifetime = DEFAULT_GUID_LIFETIME_MS

        self._parsed_authorization: dict[str, Any] | None = None
        self._parsed_authorization_tag: str | None = None

        # Serialises "apply response to session" across concurrent requests.
        self.update_lock = asyncio.Lock()

        self.device: DeviceIdentity = generate_device(seed)

    # -------------------------------------------------------------------------
    # Device identity
    # -------------------------------------------------------------------------

    def regenerate_device(self, seed: str = constants.DEFAULT_DEVICE_SEED) -> None:
        """Replace the device identity with the one derived from ``seed``."""
        _LOGGER.debug("[%s] Regenerating device identity", self.device.device_id)
        self.device = generate_device(seed)

    @property
    def device_id(self) -> str:
        return self.device.device_id

    @property
    def uuid(self) -> str:
        return self.device.uuid

    @property
    def phone_id(self) -> str:
        return self.device.phone_id

    @property
    def adid(self) -> str:
        return self.device.adid

    @property
    def app_user_agent(self) -> str:
        return (
            f"Instagram {constants.APP_VERSION} Android "
            f"({self.device.device_string}; {self.language}; "
            f"{constants.APP_VERSION_CODE})"
        )

    def temporary_guid(self, name: str, lifetime_ms: int) -> str:
        """Return a GUID stable within one ``lifetime_ms`` window."""
        return temporary_guid(name, self.device_id, lifetime_ms)

    @property
    def client_session_id(self) -> str:
        return self.temporary_guid("clientSessionId", self.client_session_id_lifetime)

    @property
    def pigeon_session_id(self) -> str:
        return self.temporary_guid("pigeonSessionId", self.pigeon_session_id_lifetime)

    # -------------------------------------------------------------------------
    # Cookies
    # -------------------------------------------------------------------------

    def cookie_value(self, name: str) -> str | None:
        """Return the value of cookie ``name`` for the API host, if present."""
        return cookiejar.cookie_value(self.cookies, name, self.base_url)

    def cookie_header(self) -> str:
        """``Cookie`` header value for the API host."""
        return cookiejar.cookie_header(self.cookies, self.base_url)

    def require_cookie(self, name: str) -> str:
        """Return the value of cookie ``name``.

        Raises:
            CookieNotFoundError: If the cookie is absent.
        """
        value = self.cookie_value(name)
        if value is None:
            raise CookieNotFoundError(name)
        return value

    def csrf_token(self) -> str:
        """CSRF token echoed in signed bodies; ``"missing"`` before the first response."""
        return self.cookie_value("csrftoken") or "missing"

    def user_id(self) -> str | None:
        """Logged-in user id from the ``ds_user_id`` cookie or the bearer token."""
        value = self.cookie_value("ds_user_id")
        if value:
            return value
        parsed = self.parsed_authorization()
        if parsed and parsed.get("ds_user_id"):
            return str(parsed["ds_user_id"])
        return None

    def username(self) -> str | None:
        return self.cookie_value("ds_user")

    def clear_cookies(self) -> None:
        _LOGGER.debug("[%s] Clearing cookies", self.device_id)
        self.cookies.clear()

    # -------------------------------------------------------------------------
    # Authorization
    # -------------------------------------------------------------------------

    def parsed_authorization(self) -> dict[str, Any] | None:
        """Return the decoded bearer token payload, refreshing the cache first."""
        self.update_authorization()
        return self._parsed_authorization

    def update_authorization(self) -> None:
        """Re-parse the bearer token when the raw string has changed.

        Tokens that are absent, not of the ``Bearer IGT:2:`` form, or not
        valid base64 JSON leave no parsed authorization behind.
        """
        if (
            self._parsed_authorization_tag is not None
            and self._parsed_authorization_tag == self.authorization
        ):
            return

        self._parsed_authorization_tag = self.authorization
        self._parsed_authorization = None
        token = self.authorization
        if not token or not token.startswith(constants.AUTHORIZATION_PREFIX):
            return
        encoded = token[len(constants.AUTHORIZATION_PREFIX) :]
        try:
            data = json.loads(base64.b64decode(encoded, validate=True))
        except (binascii.Error, ValueError):
            _LOGGER.debug("[%s] Unparseable authorization token", self.device_id)
            return
        if isinstance(data, dict):
            self._parsed_authorization = data

    def has_valid_session(self) -> bool:
        """True when user id, username, CSRF and session cookies are all present."""
        return bool(
            self.user_id()
            and self.username()
            and self.cookie_value("csrftoken")
            and self.cookie_value("sessionid")
        )

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def serialize(self) -> dict[str, Any]:
        """Snapshot the session as a JSON-compatible dict."""
        data: dict[str, Any] = {
            "device": {
                "device_id": self.device.device_id,
                "uuid": self.device.uuid,
                "phone_id": self.device.phone_id,
                "adid": self.device.adid,
                "device_string": self.device.device_string,
                "build": self.device.build,
            },
            "cookies": cookiejar.snapshot(self.cookies),
        }
        for name in _SERIALIZED_FIELDS:
            data[name] = getattr(self, name)
        return data

    @classmethod
    def deserialize(cls, data: dict[str, Any] | str) -> SessionState:
        """Restore a session produced by :meth:`serialize`, without network access."""
        if isinstance(data, str):
            data = json.loads(data)

        state = cls()
        device = data.get("device")
        if device:
            state.device = replace(state.device, **device)
        cookiejar.restore(state.cookies, data.get("cookies", []))
        for name in _SERIALIZED_FIELDS:
            if name in data:
                setattr(state, name, data[name])

        if state.authorization:
            state.update_authorization()
        return state
