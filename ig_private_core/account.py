"""Login flow: encryption key sync, encrypted login and key-refresh retry."""

from __future__ import annotations

import json
import logging
from typing import Any

from . import constants
from .crypto import encrypt_password, format_enc_password
from .errors import EncryptionKeyInvalidError
from .http import IgHttpClient, RequestSpec
from .protocol import create_jazoest
from .state import SessionState

_LOGGER = logging.getLogger(__name__)


class AccountRepository:
    """Account endpoints the session engine itself depends on."""

    def __init__(self, http: IgHttpClient) -> None:
        self._http = http

    @property
    def _state(self) -> SessionState:
        return self._http.state

    async def sync_login_experiments(self) -> dict[str, Any]:
        """Fetch login experiments; also delivers the password encryption key."""
        state = self._state
        response = await self._http.send(
            RequestSpec(
                path="/api/v1/qe/sync/",
                method="POST",
                form=self._http.sign(
                    {
                        "_csrftoken": state.csrf_token(),
                        "id": state.uuid,
                        "server_config_retrieval": "1",
                        "experiments": constants.LOGIN_EXPERIMENTS,
                    }
                ),
            )
        )
        body = response.body if isinstance(response.body, dict) else {}
        encryption = body.get("encryption") or {}
        if encryption.get("key_id") and encryption.get("public_key"):
            state.password_encryption_key_id = int(encryption["key_id"])
            state.password_encryption_pub_key = encryption["public_key"]
            _LOGGER.debug("[%s] Encryption key synced from body", state.device_id)
        return body

    async def login(self, username: str, password: str) -> dict[str, Any]:
        """Log in and return the ``logged_in_user`` record.

        A rejected encryption key triggers one key refresh and a single retry
        of the whole attempt; a second rejection propagates.

        Raises:
            IgResponseError: A subclass describing why login failed
        """
        if not self._state.password_encryption_pub_key:
            await self.sync_login_experiments()

        try:
            return await self._login_once(username, password)
        except EncryptionKeyInvalidError:
            _LOGGER.info(
                "[%s] Encryption key rejected, refreshing and retrying login",
                self._state.device_id,
            )
            await self.sync_login_experiments()
            return await self._login_once(username, password)

    async def _login_once(self, username: str, password: str) -> dict[str, Any]:
        state = self._state
        encrypted = encrypt_password(
            password,
            state.password_encryption_pub_key,
            state.password_encryption_key_id,
        )
        if not encrypted.encrypted:
            _LOGGER.warning(
                "[%s] No encryption key available, sending plaintext password",
                state.device_id,
            )

        response = await self._http.send(
            RequestSpec(
                path="/api/v1/accounts/login/",
                method="POST",
                form=self._http.sign(
                    {
                        "username": username,
                        "enc_password": format_enc_password(encrypted),
                        "guid": state.uuid,
                        "phone_id": state.phone_id,
                        "_csrftoken": state.csrf_token(),
                        "device_id": state.device_id,
                        "adid": state.adid,
                        "google_tokens": "[]",
                        "login_attempt_count": 0,
                        "country_codes": json.dumps(
                            [{"country_code": "1", "source": "default"}],
                            separators=(",", ":"),
                        ),
                        "jazoest": create_jazoest(state.phone_id),
                    }
                ),
            )
        )
        body = response.body if isinstance(response.body, dict) else {}
        _LOGGER.info("[%s] Logged in as %s", state.device_id, username)
        return body.get("logged_in_user") or {}

    async def logout(self) -> dict[str, Any]:
        state = self._state
        response = await self._http.send(
            RequestSpec(
                path="/api/v1/accounts/logout/",
                method="POST",
                form=self._http.sign(
                    {"_csrftoken": state.csrf_token(), "_uuid": state.uuid}
                ),
            )
        )
        return response.body if isinstance(response.body, dict) else {}

    async def current_user(self) -> dict[str, Any]:
        response = await self._http.send(
            RequestSpec(
                path="/api/v1/accounts/current_user/",
                params={"edit": "true"},
                cache=False,
            )
        )
        return response.body if isinstance(response.body, dict) else {}
