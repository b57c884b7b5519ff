"""Client error types for private API interactions."""

from __future__ import annotations

from typing import Any


class IgClientError(Exception):
    """Base error for private API client failures."""


class TransientNetworkError(IgClientError):
    """Transient failure that survived every local retry."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class CookieNotFoundError(IgClientError):
    """A required cookie is missing from the session."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Required cookie '{name}' not found")
        self.cookie_name = name


class IgResponseError(IgClientError):
    """Error response returned by the API."""

    default_message = "Request failed"

    def __init__(
        self,
        status: int,
        payload: Any = None,
        message: str | None = None,
    ) -> None:
        if message is None and isinstance(payload, dict):
            message = payload.get("message") or None
        super().__init__(message or self.default_message)
        self.status = status
        self.payload = payload


class GenericResponseError(IgResponseError):
    """Failure response that matched no known signal."""


class LoginRequiredError(IgResponseError):
    """The session is not authenticated."""

    default_message = "Login required"


class SessionExpiredError(IgResponseError):
    """The server logged the user out."""

    default_message = "User has logged out"


class BadPasswordError(IgResponseError):
    """The submitted password was rejected."""

    default_message = "Bad password"


class InvalidUserError(IgResponseError):
    """The username does not belong to an account."""

    default_message = "Invalid user"


class TwoFactorRequiredError(IgResponseError):
    """Login needs a second factor."""

    default_message = "Two factor authentication required"

    @property
    def two_factor_info(self) -> dict[str, Any] | None:
        if isinstance(self.payload, dict):
            return self.payload.get("two_factor_info")
        return None


class CheckpointError(IgResponseError):
    """The server requires a checkpoint challenge."""

    default_message = "Checkpoint challenge required"

    @property
    def challenge(self) -> dict[str, Any] | None:
        if isinstance(self.payload, dict):
            return self.payload.get("challenge")
        return None


class ActionSpamError(IgResponseError):
    """Action blocked as spam."""

    default_message = "Action blocked as spam"


class SentryBlockError(IgResponseError):
    """Request blocked by the sentry filter."""

    default_message = "Request blocked by security measures"


class InactiveUserError(IgResponseError):
    """Account is inactive or suspended."""

    default_message = "User account is inactive"


class NotFoundError(IgResponseError):
    """Requested resource does not exist."""

    default_message = "Requested resource not found"


class EncryptionKeyInvalidError(IgResponseError):
    """The password encryption key id is no longer accepted."""

    default_message = "Invalid password encryption key"


class RealtimeError(IgClientError):
    """Base error for the realtime transport."""


class RealtimeConnectionError(RealtimeError):
    """No broker could be connected."""


class RealtimeNotConnectedError(RealtimeError):
    """Operation needs an established realtime connection."""
