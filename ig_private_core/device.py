"""Deterministic Android device identity synthesis."""

from __future__ import annotations

import hashlib
import random
import time
import uuid
from dataclasses import dataclass

from .constants import DEVICE_BUILD, DEVICE_STRING

_HEX_POOL = "abcdef0123456789"


@dataclass(frozen=True, slots=True)
class DeviceIdentity:
    """Identifiers presented to the API as the emulated handset."""

    device_id: str
    uuid: str
    phone_id: str
    adid: str
    device_string: str = DEVICE_STRING
    build: str = DEVICE_BUILD


def _guid(rng: random.Random) -> str:
    return str(uuid.UUID(int=rng.getrandbits(128), version=4))


def generate_device(seed: str) -> DeviceIdentity:
    """Derive a device identity from ``seed``.

    The same seed always yields the same identifiers, which keeps fixtures
    and persisted accounts reproducible.
    """
    rng = random.Random(seed)
    suffix = "".join(rng.choice(_HEX_POOL) for _ in range(16))
    return DeviceIdentity(
        device_id=f"android-{suffix}",
        uuid=_guid(rng),
        phone_id=_guid(rng),
        adid=_guid(rng),
    )


def temporary_guid(
    name: str,
    device_id: str,
    lifetime_ms: int,
    *,
    now_ms: int | None = None,
) -> str:
    """Return a GUID that is stable for one ``lifetime_ms`` bucket.

    Args:
        name: Logical name of the identifier (e.g. "pigeonSessionId")
        device_id: Device the identifier belongs to
        lifetime_ms: Bucket width in milliseconds
        now_ms: Clock override, defaults to the wall clock
    """
    if lifetime_ms <= 0:
        raise ValueError("lifetime_ms must be positive")
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    bucket = now_ms // lifetime_ms
    digest = hashlib.sha256(f"{name}{device_id}{bucket}".encode()).digest()
    return str(uuid.UUID(bytes=digest[:16], version=4))
