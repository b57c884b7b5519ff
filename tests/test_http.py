"""Tests for IgHttpClient: retries, error mapping, header rotation and caching."""

from __future__ import annotations

import base64
import json
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from ig_private_core.config import RetryPolicy
from ig_private_core.errors import (
    ActionSpamError,
    BadPasswordError,
    CheckpointError,
    EncryptionKeyInvalidError,
    GenericResponseError,
    InactiveUserError,
    InvalidUserError,
    LoginRequiredError,
    NotFoundError,
    SentryBlockError,
    SessionExpiredError,
    TransientNetworkError,
    TwoFactorRequiredError,
)
from ig_private_core.http import IgHttpClient, RequestSpec, classify_failure
from ig_private_core.state import SessionState

from .conftest import create_mock_response


@pytest.fixture
def client(mock_session: MagicMock, state: SessionState) -> IgHttpClient:
    return IgHttpClient(mock_session, state)


class TestRetries:
    """Tests for transient failure handling."""

    async def test_retries_transient_status_then_succeeds(
        self, client: IgHttpClient, mock_session: MagicMock
    ) -> None:
        """503, 503, 200 succeeds after two backoff sleeps of 2s then 4s."""
        mock_session.request.side_effect = [
            create_mock_response(status=503),
            create_mock_response(status=503),
            create_mock_response(status=200, json_data={"status": "ok", "n": 1}),
        ]

        with patch("ig_private_core.http.asyncio.sleep", new_callable=AsyncMock) as sleep:
            response = await client.send(RequestSpec(path="/api/v1/x/"))

        assert response.body == {"status": "ok", "n": 1}
        assert [call.args[0] for call in sleep.await_args_list] == [2.0, 4.0]
        assert mock_session.request.call_count == 3

    async def test_non_transient_failure_not_retried(
        self, client: IgHttpClient, mock_session: MagicMock
    ) -> None:
        mock_session.request.return_value = create_mock_response(
            status=404, json_data={"status": "fail", "message": "Not Found"}
        )

        with patch("ig_private_core.http.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(NotFoundError) as exc_info:
                await client.send(RequestSpec(path="/api/v1/missing/"))

        sleep.assert_not_awaited()
        assert mock_session.request.call_count == 1
        assert exc_info.value.status == 404

    async def test_exhausted_retries_raise_transient_error(
        self, mock_session: MagicMock, state: SessionState
    ) -> None:
        client = IgHttpClient(
            mock_session, state, retry=RetryPolicy(max_retries=2, base_delay=1.0)
        )
        mock_session.request.side_effect = [create_mock_response(status=429) for _ in range(3)]

        with patch("ig_private_core.http.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(TransientNetworkError) as exc_info:
                await client.send(RequestSpec(path="/api/v1/x/"))

        assert exc_info.value.status == 429
        assert [call.args[0] for call in sleep.await_args_list] == [1.0, 2.0]
        assert mock_session.request.call_count == 3

    async def test_backoff_is_capped(self, mock_session: MagicMock, state: SessionState) -> None:
        client = IgHttpClient(
            mock_session,
            state,
            retry=RetryPolicy(max_retries=4, base_delay=2.0, max_delay=5.0),
        )
        mock_session.request.side_effect = [create_mock_response(status=502) for _ in range(5)]

        with patch("ig_private_core.http.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(TransientNetworkError):
                await client.send(RequestSpec(path="/api/v1/x/"))

        assert [call.args[0] for call in sleep.await_args_list] == [2.0, 4.0, 5.0, 5.0]

    async def test_client_error_is_retried(
        self, client: IgHttpClient, mock_session: MagicMock
    ) -> None:
        mock_session.request.side_effect = [
            aiohttp.ClientConnectionError("reset"),
            TimeoutError(),
            create_mock_response(status=200, json_data={"status": "ok"}),
        ]

        with patch("ig_private_core.http.asyncio.sleep", new_callable=AsyncMock):
            response = await client.send(RequestSpec(path="/api/v1/x/"))

        assert response.status == 200

    async def test_network_error_exhausted(
        self, mock_session: MagicMock, state: SessionState
    ) -> None:
        client = IgHttpClient(mock_session, state, retry=RetryPolicy(max_retries=0))
        mock_session.request.side_effect = aiohttp.ClientConnectionError("reset")

        with pytest.raises(TransientNetworkError) as exc_info:
            await client.send(RequestSpec(path="/api/v1/x/"))

        assert isinstance(exc_info.value.__cause__, aiohttp.ClientConnectionError)


class TestErrorMapping:
    """Tests for failure classification."""

    @pytest.mark.parametrize(
        ("status", "body", "expected"),
        [
            (400, {"message": "challenge_required", "challenge": {}}, CheckpointError),
            (400, {"error_type": "checkpoint_challenge_required"}, CheckpointError),
            (403, {"message": "user_has_logged_out"}, SessionExpiredError),
            (403, {"message": "login_required"}, LoginRequiredError),
            (400, {"two_factor_required": True, "two_factor_info": {}}, TwoFactorRequiredError),
            (400, {"error_type": "invalid_password_encryption_key"}, EncryptionKeyInvalidError),
            (400, {"error_type": "bad_password"}, BadPasswordError),
            (400, {"error_type": "invalid_user"}, InvalidUserError),
            (400, {"error_type": "sentry_block"}, SentryBlockError),
            (400, {"error_type": "inactive user"}, InactiveUserError),
            (400, {"spam": True, "feedback_title": "Try Again Later"}, ActionSpamError),
            (404, {"status": "fail"}, NotFoundError),
            (400, {"status": "fail", "message": "something else"}, GenericResponseError),
            (400, "<html>oops</html>", GenericResponseError),
        ],
    )
    def test_classify_failure(self, status, body, expected) -> None:
        assert classify_failure(status, body) is expected

    def test_first_rule_wins(self) -> None:
        body = {"message": "challenge_required", "error_type": "bad_password"}
        assert classify_failure(400, body) is CheckpointError

    async def test_error_carries_payload_and_message(
        self, client: IgHttpClient, mock_session: MagicMock
    ) -> None:
        body = {"status": "fail", "message": "login_required"}
        mock_session.request.return_value = create_mock_response(status=403, json_data=body)

        with pytest.raises(LoginRequiredError) as exc_info:
            await client.send(RequestSpec(path="/api/v1/feed/"))

        assert exc_info.value.payload == body
        assert exc_info.value.status == 403
        assert "login_required" in str(exc_info.value)

    async def test_checkpoint_recorded_on_state(
        self, client: IgHttpClient, mock_session: MagicMock, state: SessionState
    ) -> None:
        body = {"message": "challenge_required", "challenge": {"api_path": "/challenge/1/"}}
        mock_session.request.return_value = create_mock_response(status=400, json_data=body)

        with pytest.raises(CheckpointError) as exc_info:
            await client.send(RequestSpec(path="/api/v1/feed/"))

        assert state.checkpoint == body
        assert exc_info.value.challenge == {"api_path": "/challenge/1/"}

    async def test_ok_status_body_is_success(
        self, client: IgHttpClient, mock_session: MagicMock
    ) -> None:
        mock_session.request.return_value = create_mock_response(
            status=201, json_data={"status": "ok"}
        )
        response = await client.send(RequestSpec(path="/api/v1/x/", method="POST"))
        assert response.status == 201

    async def test_non_json_success_body(
        self, client: IgHttpClient, mock_session: MagicMock
    ) -> None:
        mock_session.request.return_value = create_mock_response(status=200, text_data="plain")
        response = await client.send(RequestSpec(path="/api/v1/x/"))
        assert response.body == "plain"

    async def test_non_utf8_body_does_not_raise(
        self, client: IgHttpClient, mock_session: MagicMock
    ) -> None:
        mock_session.request.return_value = create_mock_response(
            status=200, raw_data=b"caf\xe9 \xff"
        )
        response = await client.send(RequestSpec(path="/api/v1/x/"))
        assert response.body == "caf\ufffd \ufffd"


class TestRequestShape:
    """Tests for what goes over the wire."""

    async def test_signed_form_post(
        self, client: IgHttpClient, mock_session: MagicMock
    ) -> None:
        mock_session.request.return_value = create_mock_response(json_data={"status": "ok"})

        await client.send(
            RequestSpec(path="/api/v1/qe/sync/", method="POST", form=client.sign({"id": "u"}))
        )

        call = mock_session.request.call_args
        assert call.args == ("POST", "https://i.instagram.com/api/v1/qe/sync/")
        assert call.kwargs["headers"]["Content-Type"].startswith(
            "application/x-www-form-urlencoded"
        )
        assert "signed_body=" in call.kwargs["data"]
        assert "ig_sig_key_version=4" in call.kwargs["data"]

    async def test_params_and_extra_headers(
        self, client: IgHttpClient, mock_session: MagicMock
    ) -> None:
        mock_session.request.return_value = create_mock_response(json_data={"status": "ok"})

        await client.send(
            RequestSpec(
                path="/api/v1/accounts/current_user/",
                params={"edit": True},
                headers={"X-Custom": "1"},
            )
        )

        kwargs = mock_session.request.call_args.kwargs
        assert kwargs["params"] == {"edit": "true"}
        assert kwargs["headers"]["X-Custom"] == "1"
        assert "data" not in kwargs


class TestResponseRotation:
    """Tests for cookies and tokens fed back into the session."""

    async def test_rotated_headers_update_state(
        self, client: IgHttpClient, mock_session: MagicMock, state: SessionState
    ) -> None:
        token = "Bearer IGT:2:" + base64.b64encode(json.dumps({"ds_user_id": "9"}).encode()).decode()
        mock_session.request.return_value = create_mock_response(
            json_data={"status": "ok"},
            headers=[
                ("Set-Cookie", "csrftoken=newcsrf; Domain=.instagram.com; Path=/"),
                ("Set-Cookie", "mid=m2; Domain=.instagram.com; Path=/"),
                ("ig-set-www-claim", "hmac.new"),
                ("ig-set-authorization", token),
                ("ig-set-password-encryption-key-id", "212"),
                ("ig-set-password-encryption-pub-key", "cHVia2V5"),
            ],
        )

        await client.send(RequestSpec(path="/api/v1/x/"))

        assert state.csrf_token() == "newcsrf"
        assert state.cookie_value("mid") == "m2"
        assert state.www_claim == "hmac.new"
        assert state.authorization == token
        assert state.user_id() == "9"
        assert state.password_encryption_key_id == 212
        assert state.password_encryption_pub_key == "cHVia2V5"

    async def test_cookies_replayed_as_received(
        self, client: IgHttpClient, mock_session: MagicMock
    ) -> None:
        mock_session.request.side_effect = [
            create_mock_response(
                json_data={"status": "ok"},
                headers=[
                    (
                        "Set-Cookie",
                        'rur="CLN\\05412345\\0541700000000:01f7abc"; '
                        "Domain=.instagram.com; Path=/; Secure; HttpOnly",
                    ),
                    ("Set-Cookie", "csrftoken=abc; Path=/; Secure; Priority=High"),
                ],
            ),
            create_mock_response(json_data={"status": "ok"}),
        ]

        await client.send(RequestSpec(path="/api/v1/x/"))
        await client.send(RequestSpec(path="/api/v1/y/"))

        cookies = mock_session.request.call_args.kwargs["headers"]["Cookie"].split("; ")
        assert 'rur="CLN\\05412345\\0541700000000:01f7abc"' in cookies
        assert "csrftoken=abc" in cookies
        assert len(cookies) == 2

    async def test_empty_authorization_ignored(
        self, client: IgHttpClient, mock_session: MagicMock, state: SessionState
    ) -> None:
        state.authorization = "Bearer IGT:2:e30="
        mock_session.request.return_value = create_mock_response(
            json_data={"status": "ok"},
            headers={"ig-set-authorization": "Bearer IGT:2:"},
        )

        await client.send(RequestSpec(path="/api/v1/x/"))

        assert state.authorization == "Bearer IGT:2:e30="

    async def test_rotation_applied_on_failure_response(
        self, client: IgHttpClient, mock_session: MagicMock, state: SessionState
    ) -> None:
        mock_session.request.return_value = create_mock_response(
            status=400,
            json_data={"error_type": "bad_password"},
            headers={"Set-Cookie": "csrftoken=fresh; Path=/"},
        )

        with pytest.raises(BadPasswordError):
            await client.send(RequestSpec(path="/api/v1/accounts/login/", method="POST"))

        assert state.csrf_token() == "fresh"


class TestCache:
    """Tests for the optional GET response cache."""

    async def test_cache_disabled_by_default(
        self, client: IgHttpClient, mock_session: MagicMock
    ) -> None:
        mock_session.request.side_effect = [
            create_mock_response(json_data={"n": 1}),
            create_mock_response(json_data={"n": 2}),
        ]
        first = await client.send(RequestSpec(path="/api/v1/x/"))
        second = await client.send(RequestSpec(path="/api/v1/x/"))
        assert (first.body, second.body) == ({"n": 1}, {"n": 2})

    async def test_cached_get(self, mock_session: MagicMock, state: SessionState) -> None:
        client = IgHttpClient(mock_session, state, cache_get_responses=True)
        mock_session.request.side_effect = [
            create_mock_response(json_data={"n": 1}),
            create_mock_response(json_data={"n": 2}),
            create_mock_response(json_data={"n": 3}),
            create_mock_response(json_data={"n": 4}),
        ]

        first = await client.send(RequestSpec(path="/api/v1/x/", params={"a": 1}))
        again = await client.send(RequestSpec(path="/api/v1/x/", params={"a": 1}))
        other = await client.send(RequestSpec(path="/api/v1/x/", params={"a": 2}))
        opted_out = await client.send(RequestSpec(path="/api/v1/x/", params={"a": 1}, cache=False))

        assert first is again
        assert other.body == {"n": 2}
        assert opted_out.body == {"n": 3}

        client.clear_cache()
        refreshed = await client.send(RequestSpec(path="/api/v1/x/", params={"a": 1}))
        assert refreshed.body == {"n": 4}

    async def test_post_never_cached(self, mock_session: MagicMock, state: SessionState) -> None:
        client = IgHttpClient(mock_session, state, cache_get_responses=True)
        mock_session.request.side_effect = [
            create_mock_response(json_data={"n": 1}),
            create_mock_response(json_data={"n": 2}),
        ]
        await client.send(RequestSpec(path="/api/v1/x/", method="POST", form={}))
        second = await client.send(RequestSpec(path="/api/v1/x/", method="POST", form={}))
        assert second.body == {"n": 2}
