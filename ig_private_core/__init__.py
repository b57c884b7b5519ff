"""Session, transport and realtime engine for the Android private API."""

__version__ = "0.1.0"

from .account import AccountRepository
from .client import IgApiClient
from .config import RealtimeConfig, RetryPolicy
from .crypto import EncryptedPassword, encrypt_password, format_enc_password
from .device import DeviceIdentity, generate_device, temporary_guid
from .errors import (
    ActionSpamError,
    BadPasswordError,
    CheckpointError,
    CookieNotFoundError,
    EncryptionKeyInvalidError,
    GenericResponseError,
    IgClientError,
    IgResponseError,
    InactiveUserError,
    InvalidUserError,
    LoginRequiredError,
    NotFoundError,
    RealtimeConnectionError,
    RealtimeError,
    RealtimeNotConnectedError,
    SentryBlockError,
    SessionExpiredError,
    TransientNetworkError,
    TwoFactorRequiredError,
)
from .http import IgHttpClient, IgResponse, RequestSpec
from .protocol import create_jazoest, sign
from .realtime import (
    ConnectedEvent,
    DisconnectedEvent,
    ErrorEvent,
    MessageEvent,
    RawFrameEvent,
    RealtimeClient,
    RealtimeState,
    UnknownMessageEvent,
)
from .state import SessionState

__all__ = [
    "AccountRepository",
    "ActionSpamError",
    "BadPasswordError",
    "CheckpointError",
    "ConnectedEvent",
    "CookieNotFoundError",
    "DeviceIdentity",
    "DisconnectedEvent",
    "EncryptedPassword",
    "EncryptionKeyInvalidError",
    "ErrorEvent",
    "GenericResponseError",
    "IgApiClient",
    "IgClientError",
    "IgHttpClient",
    "IgResponse",
    "IgResponseError",
    "InactiveUserError",
    "InvalidUserError",
    "LoginRequiredError",
    "MessageEvent",
    "NotFoundError",
    "RawFrameEvent",
    "RealtimeClient",
    "RealtimeConfig",
    "RealtimeConnectionError",
    "RealtimeError",
    "RealtimeNotConnectedError",
    "RealtimeState",
    "RequestSpec",
    "RetryPolicy",
    "SentryBlockError",
    "SessionExpiredError",
    "SessionState",
    "TransientNetworkError",
    "TwoFactorRequiredError",
    "UnknownMessageEvent",
    "__version__",
    "create_jazoest",
    "encrypt_password",
    "format_enc_password",
    "generate_device",
    "sign",
    "temporary_guid",
]
