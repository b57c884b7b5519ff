"""Request signing and header synthesis for the private API."""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from typing import TYPE_CHECKING, Any

from . import constants

if TYPE_CHECKING:
    from .state import SessionState


def signature(data: str, key: str = constants.SIGNATURE_KEY) -> str:
    """Hex HMAC-SHA256 of ``data``."""
    return hmac.new(key.encode(), data.encode("utf-8"), hashlib.sha256).hexdigest()


def sign(
    payload: dict[str, Any] | str,
    *,
    key: str = constants.SIGNATURE_KEY,
    key_version: str = constants.SIGNATURE_VERSION,
) -> dict[str, str]:
    """Build the signed form fields for ``payload``.

    Returns:
        ``{"ig_sig_key_version": ..., "signed_body": "<hmac>.<json>"}``
    """
    body = payload if isinstance(payload, str) else json.dumps(payload, separators=(",", ":"))
    return {
        "ig_sig_key_version": key_version,
        "signed_body": f"{signature(body, key)}.{body}",
    }


def create_jazoest(value: str) -> str:
    """Checksum parameter sent alongside login: ``"2"`` plus the byte sum."""
    return f"2{sum(value.encode('ascii'))}"


def build_default_headers(state: SessionState) -> dict[str, str]:
    """Headers the Android client sends with every API call."""
    headers = {
        "User-Agent": state.app_user_agent,
        "X-IG-App-ID": constants.FACEBOOK_ANALYTICS_APPLICATION_ID,
        "X-IG-App-Locale": state.language,
        "X-IG-Device-Locale": state.language,
        "X-IG-Mapped-Locale": state.language,
        "X-IG-Device-ID": state.uuid,
        "X-IG-Android-ID": state.device_id,
        "X-IG-WWW-Claim": state.www_claim or "0",
        "X-IG-Timezone-Offset": state.timezone_offset,
        "X-IG-Connection-Type": state.connection_type_header,
        "X-IG-Capabilities": state.capabilities_header,
        "X-IG-Bandwidth-Speed-KBPS": "-1.000",
        "X-IG-Bandwidth-TotalBytes-B": "0",
        "X-IG-Bandwidth-TotalTime-MS": "0",
        "X-Bloks-Version-Id": constants.BLOKS_VERSION_ID,
        "X-Pigeon-Session-Id": state.pigeon_session_id,
        "X-Pigeon-Rawclienttime": f"{time.time():.3f}",
        "X-FB-HTTP-Engine": "Liger",
        "Accept-Language": state.language.replace("_", "-"),
        "Host": constants.HOST,
        "Connection": "keep-alive",
    }
    if state.authorization:
        headers["Authorization"] = state.authorization
    user_id = state.user_id()
    if user_id:
        headers["IG-U-DS-USER-ID"] = user_id
    mid = state.cookie_value("mid")
    if mid:
        headers["X-MID"] = mid
    cookie_header = state.cookie_header()
    if cookie_header:
        headers["Cookie"] = cookie_header
    return headers
