"""Protocol constants for the Android private API."""

from __future__ import annotations

from typing import Final

HOST: Final = "i.instagram.com"
BASE_URL: Final = f"https://{HOST}"
WEB_ORIGIN: Final = "https://www.instagram.com"

APP_VERSION: Final = "222.0.0.13.114"
APP_VERSION_CODE: Final = "350696709"
SIGNATURE_KEY: Final = (
    "9193488027538fd3450b83b7d05286d4ca9599a0f7eeed90d8c85925698a05dc"
)
SIGNATURE_VERSION: Final = "4"
FACEBOOK_ANALYTICS_APPLICATION_ID: Final = "567067343352427"
BLOKS_VERSION_ID: Final = (
    "388ece79ebc0e70e87873505ed1b0ee0486a6ea3e2b2d1cd3a8bc6ca3bd1c1e1"
)

DEVICE_STRING: Final = (
    "26/8.0.0; 480dpi; 1080x1920; samsung; SM-G930F; herolte; samsungexynos8890"
)
DEVICE_BUILD: Final = "OPM7.181205.001"
DEFAULT_DEVICE_SEED: Final = "instagram-private-api"

LOGIN_EXPERIMENTS: Final = (
    "ig_android_fci_onboarding_friend_search,ig_android_device_detection_info_upload,"
    "ig_android_account_linking_upsell_universe,ig_android_direct_main_tab_universe_v2,"
    "ig_android_sms_retriever_backtest_universe,ig_growth_android_profile_pic_prefill_with_fb_pic_2,"
    "ig_android_passwordless_account_password_creation_universe,"
    "ig_android_security_intent_switchoff,ig_android_direct_add_local_thread_in_inbox"
)

AUTHORIZATION_PREFIX: Final = "Bearer IGT:2:"
PASSWORD_ENC_VERSION: Final = 4

# Response headers that rotate session material.
HEADER_SET_WWW_CLAIM: Final = "ig-set-www-claim"
HEADER_SET_AUTHORIZATION: Final = "ig-set-authorization"
HEADER_SET_ENC_KEY_ID: Final = "ig-set-password-encryption-key-id"
HEADER_SET_ENC_PUB_KEY: Final = "ig-set-password-encryption-pub-key"

DEFAULT_BROKERS: Final[tuple[str, ...]] = (
    "wss://edge-mqtt.facebook.com:443/mqtt",
    "wss://edge-mqtt.instagram.com:443/mqtt",
    "wss://edge-mqtt.facebook.com:443/ws",
)

TOPIC_PUSH: Final = "/fbns_msg"
TOPIC_DIRECT: Final = "/ig_message"
TOPIC_PRESENCE: Final = "/ig_presence"
TOPIC_TYPING: Final = "/ig_typing"
TOPIC_ACTIVITY: Final = "/ig_activity"
TOPIC_MESSAGE_SYNC: Final = "/ig_message_sync"
TOPIC_SEND_DIRECT: Final = "direct_v2"

DEFAULT_TOPICS: Final[tuple[str, ...]] = (
    TOPIC_PUSH,
    TOPIC_DIRECT,
    TOPIC_PRESENCE,
    TOPIC_TYPING,
    TOPIC_ACTIVITY,
    TOPIC_MESSAGE_SYNC,
)
