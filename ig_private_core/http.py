"""HTTP transport for the private API.

Every call gets a freshly synthesised header set, is retried on transient
failures with exponential backoff, feeds rotated cookies/tokens back into
the SessionState, and maps failure responses onto the typed taxonomy in
``errors``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import aiohttp
from multidict import CIMultiDict, CIMultiDictProxy

from . import constants
from .config import TRANSIENT_STATUSES, RetryPolicy
from .cookies import update_from_headers
from .errors import (
    ActionSpamError,
    BadPasswordError,
    CheckpointError,
    EncryptionKeyInvalidError,
    GenericResponseError,
    IgResponseError,
    InactiveUserError,
    InvalidUserError,
    LoginRequiredError,
    NotFoundError,
    SentryBlockError,
    SessionExpiredError,
    TransientNetworkError,
    TwoFactorRequiredError,
)
from .protocol import build_default_headers, sign
from .state import SessionState

_LOGGER = logging.getLogger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded; charset=UTF-8"
DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True, slots=True)
class RequestSpec:
    """Description of one API call.

    ``form`` is sent URL-encoded, ``json`` as a JSON document; ``params`` is
    the query string. ``cache`` opts a GET out of the response cache when
    False.
    """

    path: str
    method: str = "GET"
    form: Mapping[str, Any] | None = None
    json: Any = None
    params: Mapping[str, Any] | None = None
    headers: Mapping[str, str] | None = None
    cache: bool = True


@dataclass(frozen=True, slots=True)
class IgResponse:
    """Decoded API response."""

    status: int
    body: Any
    headers: CIMultiDictProxy[str]


_CacheKey = tuple[str, tuple[tuple[str, str], ...]]


def _body_field(body: dict[str, Any], name: str) -> str:
    value = body.get(name)
    return str(value) if value is not None else ""


# Ordered: the first matching rule decides the error type.
_FAILURE_RULES: tuple[tuple[Callable[[int, dict[str, Any]], bool], type[IgResponseError]], ...] = (
    (
        lambda status, body: _body_field(body, "message") == "challenge_required"
        or _body_field(body, "error_type") == "checkpoint_challenge_required",
        CheckpointError,
    ),
    (
        lambda status, body: _body_field(body, "message") == "user_has_logged_out",
        SessionExpiredError,
    ),
    (
        lambda status, body: _body_field(body, "message") == "login_required",
        LoginRequiredError,
    ),
    (lambda status, body: bool(body.get("two_factor_required")), TwoFactorRequiredError),
    (
        lambda status, body: _body_field(body, "error_type")
        == "invalid_password_encryption_key"
        or "invalid password key" in _body_field(body, "message").lower(),
        EncryptionKeyInvalidError,
    ),
    (lambda status, body: _body_field(body, "error_type") == "bad_password", BadPasswordError),
    (lambda status, body: _body_field(body, "error_type") == "invalid_user", InvalidUserError),
    (lambda status, body: _body_field(body, "error_type") == "sentry_block", SentryBlockError),
    (
        lambda status, body: _body_field(body, "error_type")
        in {"inactive user", "inactive_user"},
        InactiveUserError,
    ),
    (lambda status, body: bool(body.get("spam")), ActionSpamError),
    (lambda status, body: status == 404, NotFoundError),
)


def classify_failure(status: int, body: Any) -> type[IgResponseError]:
    """Return the error type for a failed response."""
    fields = body if isinstance(body, dict) else {}
    for matches, error_type in _FAILURE_RULES:
        if matches(status, fields):
            return error_type
    return GenericResponseError


def _decode_body(text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


def _form_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


class IgHttpClient:
    """Signed HTTP transport bound to one SessionState."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        state: SessionState,
        *,
        base_url: str = constants.BASE_URL,
        retry: RetryPolicy | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        cache_get_responses: bool = False,
    ) -> None:
        self._session = session
        self._state = state
        self._base_url = base_url.rstrip("/")
        self._retry = retry or RetryPolicy()
        self._timeout = timeout
        self._cache_enabled = cache_get_responses
        # Entries never expire; clear_cache() is the only invalidation.
        self._cache: dict[_CacheKey, IgResponse] = {}

    @property
    def state(self) -> SessionState:
        return self._state

    def sign(self, payload: dict[str, Any] | str) -> dict[str, str]:
        """Sign ``payload`` for use as a request form."""
        return sign(payload)

    def clear_cache(self) -> None:
        self._cache.clear()

    async def send(self, spec: RequestSpec) -> IgResponse:
        """Issue ``spec`` and return the decoded response.

        Raises:
            TransientNetworkError: Retries exhausted on a transient failure
            IgResponseError: A subclass matching the failure response
        """
        cache_key = self._cache_key(spec)
        if cache_key is not None and cache_key in self._cache:
            _LOGGER.debug("[%s] Cache hit %s", self._state.device_id, spec.path)
            return self._cache[cache_key]

        attempt = 0
        while True:
            try:
                response = await self._request_once(spec)
            except TransientNetworkError as err:
                if attempt >= self._retry.max_retries:
                    raise
                await self._backoff(spec, attempt, str(err))
                attempt += 1
                continue

            if response.status in TRANSIENT_STATUSES:
                if attempt >= self._retry.max_retries:
                    raise TransientNetworkError(
                        f"{spec.method} {spec.path} failed with HTTP {response.status}"
                        f" after {attempt} retries",
                        status=response.status,
                    )
                await self._backoff(spec, attempt, f"HTTP {response.status}")
                attempt += 1
                continue

            if self._is_success(response):
                if cache_key is not None:
                    self._cache[cache_key] = response
                return response

            raise self._error_for(response)

    async def _backoff(self, spec: RequestSpec, attempt: int, reason: str) -> None:
        delay = self._retry.delay_for(attempt)
        _LOGGER.warning(
            "[%s] %s %s: %s, retrying in %.1fs (retry %d/%d)",
            self._state.device_id,
            spec.method,
            spec.path,
            reason,
            delay,
            attempt + 1,
            self._retry.max_retries,
        )
        await asyncio.sleep(delay)

    async def _request_once(self, spec: RequestSpec) -> IgResponse:
        url = f"{self._base_url}/{spec.path.lstrip('/')}"
        headers = build_default_headers(self._state)
        kwargs: dict[str, Any] = {
            "timeout": aiohttp.ClientTimeout(total=self._timeout),
        }
        if spec.params:
            kwargs["params"] = {k: _form_value(v) for k, v in spec.params.items()}
        if spec.form is not None:
            headers["Content-Type"] = FORM_CONTENT_TYPE
            kwargs["data"] = urlencode(
                {k: _form_value(v) for k, v in spec.form.items()}
            )
        elif spec.json is not None:
            kwargs["json"] = spec.json
        if spec.headers:
            headers.update(spec.headers)
        kwargs["headers"] = headers

        _LOGGER.debug("[%s] %s %s", self._state.device_id, spec.method, url)
        try:
            async with self._session.request(spec.method, url, **kwargs) as resp:
                raw = await resp.read()
                response_headers = CIMultiDictProxy(CIMultiDict(resp.headers))
                await self._apply_response(response_headers, url)
                return IgResponse(
                    status=resp.status,
                    body=_decode_body(raw.decode("utf-8", errors="replace")),
                    headers=response_headers,
                )
        except TimeoutError as err:
            raise TransientNetworkError(f"{spec.method} {spec.path} timed out") from err
        except aiohttp.ClientError as err:
            raise TransientNetworkError(f"{spec.method} {spec.path} failed") from err

    async def _apply_response(self, headers: CIMultiDictProxy[str], url: str) -> None:
        """Feed cookies and rotated tokens from ``headers`` into the session."""
        state = self._state
        async with state.update_lock:
            set_cookies = headers.getall("Set-Cookie", [])
            if set_cookies:
                update_from_headers(state.cookies, set_cookies, url)

            claim = headers.get(constants.HEADER_SET_WWW_CLAIM)
            if claim:
                state.www_claim = claim

            authorization = headers.get(constants.HEADER_SET_AUTHORIZATION)
            if authorization and not authorization.endswith(":"):
                state.authorization = authorization
                state.update_authorization()

            key_id = headers.get(constants.HEADER_SET_ENC_KEY_ID)
            if key_id:
                try:
                    state.password_encryption_key_id = int(key_id)
                except ValueError:
                    _LOGGER.warning(
                        "[%s] Ignoring non-numeric encryption key id %r",
                        state.device_id,
                        key_id,
                    )

            pub_key = headers.get(constants.HEADER_SET_ENC_PUB_KEY)
            if pub_key:
                state.password_encryption_pub_key = pub_key

    @staticmethod
    def _is_success(response: IgResponse) -> bool:
        if response.status == 200:
            return True
        return isinstance(response.body, dict) and response.body.get("status") == "ok"

    def _error_for(self, response: IgResponse) -> IgResponseError:
        error_type = classify_failure(response.status, response.body)
        if error_type is CheckpointError and isinstance(response.body, dict):
            self._state.checkpoint = response.body
        _LOGGER.debug(
            "[%s] HTTP %d mapped to %s",
            self._state.device_id,
            response.status,
            error_type.__name__,
        )
        return error_type(response.status, response.body)

    def _cache_key(self, spec: RequestSpec) -> _CacheKey | None:
        if not self._cache_enabled or not spec.cache or spec.method.upper() != "GET":
            return None
        query = tuple(
            sorted((str(k), _form_value(v)) for k, v in (spec.params or {}).items())
        )
        return spec.path, query
