"""Tunable settings for the HTTP and realtime transports."""

from __future__ import annotations

from dataclasses import dataclass, field

from .constants import DEFAULT_BROKERS, DEFAULT_TOPICS

TRANSIENT_STATUSES: frozenset[int] = frozenset({429, 500, 502, 503, 504})


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Retry/backoff policy for transient HTTP failures.

    Attributes:
        max_retries: Retries after the first attempt (0 disables retrying)
        base_delay: Delay before the first retry (seconds)
        max_delay: Ceiling applied to every computed delay (seconds)
    """

    max_retries: int = 3
    base_delay: float = 2.0
    max_delay: float = 30.0

    def delay_for(self, attempt: int) -> float:
        """Return the backoff delay before retry number ``attempt`` (0-based)."""
        return min(self.max_delay, self.base_delay * (2**attempt))


@dataclass(frozen=True, slots=True)
class RealtimeConfig:
    """Realtime transport settings.

    Attributes:
        brokers: Candidate broker URLs in priority order
        topics: Topics subscribed after every successful connect
        connect_timeout: Per-broker handshake timeout (seconds)
        keepalive_interval: Ping interval; two silent intervals mark the link dead
        retry_base_delay: Base reconnect delay (seconds)
        retry_max_delay: Reconnect delay ceiling (seconds)
        backend: Socket implementation: "mqtt" (MQTT over WebSocket), or the
            plain WebSocket fallbacks "websockets" and "aiohttp"
    """

    brokers: tuple[str, ...] = DEFAULT_BROKERS
    topics: tuple[str, ...] = field(default=DEFAULT_TOPICS)
    connect_timeout: float = 12.0
    keepalive_interval: float = 30.0
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    backend: str = "mqtt"

    def reconnect_delay(self, retries: int) -> float:
        """Return the delay before the next reconnect attempt."""
        return min(
            self.retry_max_delay,
            self.retry_base_delay * (2 ** min(retries, 6)),
        )
