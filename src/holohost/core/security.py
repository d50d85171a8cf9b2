"""Credential encryption and token generation.

Each instance stores its bridge credential as an envelope:

    <nonce hex>:<tag hex>:<ciphertext hex>

encrypted with AES-256-GCM under a key derived from the operator master
secret (SHA-256). No per-instance key material is persisted.
"""

import hashlib
import os
import secrets
import string

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from holohost.core.errors import (
    AuthenticationFailedError,
    InvalidFormatError,
    InvalidRequestError,
)

MIN_MASTER_SECRET_LENGTH = 32
NONCE_LENGTH = 16
TAG_LENGTH = 16

_TOKEN_ALPHABET = string.ascii_letters + string.digits


class SecretCodec:
    """Symmetric encryption of one secret per instance."""

    def __init__(self, master_secret: str) -> None:
        if len(master_secret) < MIN_MASTER_SECRET_LENGTH:
            raise InvalidRequestError(
                f"Encryption key must be at least {MIN_MASTER_SECRET_LENGTH} characters"
            )
        key = hashlib.sha256(master_secret.encode("utf-8")).digest()
        self._aead = AESGCM(key)

    def __repr__(self) -> str:
        return "SecretCodec(<redacted>)"

    def encrypt(self, plaintext: str) -> str:
        """Encrypt plaintext into a nonce:tag:ciphertext envelope.

        A fresh random nonce is drawn on every call.
        """
        nonce = os.urandom(NONCE_LENGTH)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return f"{nonce.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, envelope: str) -> str:
        """Decrypt an envelope produced by encrypt().

        Raises:
            InvalidFormatError: Wrong segment count or non-hex segment
            AuthenticationFailedError: Tag does not verify (tampering or wrong key)
        """
        parts = envelope.split(":")
        if len(parts) != 3:
            raise InvalidFormatError()

        try:
            nonce, tag, ciphertext = (bytes.fromhex(part) for part in parts)
        except ValueError as e:
            raise InvalidFormatError() from e

        if len(nonce) != NONCE_LENGTH or len(tag) != TAG_LENGTH:
            raise InvalidFormatError()

        try:
            plaintext = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as e:
            raise AuthenticationFailedError() from e

        return plaintext.decode("utf-8")


def generate_secure_token(length: int, prefix: str = "") -> str:
    """Generate an alphanumeric token from the system CSPRNG."""
    return prefix + "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(length))
