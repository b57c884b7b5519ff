"""Hybrid password encryption (RSA-wrapped AES-256-GCM).

Envelope layout before base64:

    [version=1][key_id][iv(12)][u16-LE rsa length][rsa ciphertext][tag(16)][aes ciphertext]

The Unix-seconds timestamp used as GCM associated data is returned with the
envelope; both must be sent together.
"""

from __future__ import annotations

import base64
import os
import struct
import time
from dataclasses import dataclass

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .constants import PASSWORD_ENC_VERSION

ENVELOPE_VERSION = 1
AES_KEY_SIZE = 32
IV_SIZE = 12
TAG_SIZE = 16


@dataclass(frozen=True, slots=True)
class EncryptedPassword:
    """Encrypted password plus the timestamp bound into it as AAD."""

    timestamp: str
    envelope: str
    encrypted: bool = True


def load_public_key(public_key_b64: str) -> rsa.RSAPublicKey:
    """Load the server key, delivered as base64 of a PEM document."""
    pem = base64.b64decode(public_key_b64)
    key = serialization.load_pem_public_key(pem)
    if not isinstance(key, rsa.RSAPublicKey):
        raise ValueError("Password encryption key is not an RSA public key")
    return key


def encrypt_password(
    password: str,
    public_key_b64: str | None,
    key_id: int | None,
    *,
    timestamp: int | None = None,
) -> EncryptedPassword:
    """Encrypt ``password`` for the login endpoint.

    Without a public key the plaintext password is returned (``encrypted`` is
    False). That pre-handshake fallback exposes the password to anything that
    can read the request body.
    """
    ts = str(int(time.time()) if timestamp is None else timestamp)
    if not public_key_b64:
        return EncryptedPassword(timestamp=ts, envelope=password, encrypted=False)

    aes_key = os.urandom(AES_KEY_SIZE)
    iv = os.urandom(IV_SIZE)

    rsa_encrypted = load_public_key(public_key_b64).encrypt(
        aes_key, padding.PKCS1v15()
    )
    # AESGCM appends the 16-byte tag to the ciphertext.
    sealed = AESGCM(aes_key).encrypt(iv, password.encode("utf-8"), ts.encode("ascii"))
    aes_encrypted, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]

    envelope = b"".join(
        (
            bytes((ENVELOPE_VERSION, (key_id or 0) & 0xFF)),
            iv,
            struct.pack("<H", len(rsa_encrypted)),
            rsa_encrypted,
            tag,
            aes_encrypted,
        )
    )
    return EncryptedPassword(
        timestamp=ts, envelope=base64.b64encode(envelope).decode("ascii")
    )


def format_enc_password(enc: EncryptedPassword) -> str:
    """Render the ``enc_password`` form value."""
    version = PASSWORD_ENC_VERSION if enc.encrypted else 0
    return f"#PWD_INSTAGRAM:{version}:{enc.timestamp}:{enc.envelope}"
