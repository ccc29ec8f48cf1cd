"""Summary: Token encryption utilities for OAuth credentials.

Importance: Keeps per-account tokens encrypted at rest in the options store.
Alternatives: Use a dedicated secrets manager or KMS envelope encryption.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from crmgmail.errors import CryptoError


IV_LENGTH = 12


class TokenCodec:
    """Summary: AES-256-GCM encoder/decoder for token payloads.

    Importance: Authenticated encryption makes tampered blobs fail loudly instead of decoding to junk.
    Alternatives: AES-256-CBC with a separate HMAC.
    """

    def __init__(self, secret: str) -> None:
        """Summary: Initialize with the process secret used to derive the key.

        Importance: The key is derived on demand and never stored next to the ciphertext.
        Alternatives: Load a raw 32-byte key from the environment.
        """

        self._secret = secret.encode("utf-8")

    def encrypt(self, payload: dict[str, Any]) -> str:
        """Summary: Encrypt a structured payload into an opaque string.

        Importance: Produces a base64 envelope that fits in a plain text option value.
        Alternatives: Store the raw ciphertext bytes in a BLOB column.
        """

        try:
            plaintext = json.dumps(payload).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise CryptoError("Failed to encode token payload.") from exc
        iv = os.urandom(IV_LENGTH)
        ciphertext = AESGCM(self._key()).encrypt(iv, plaintext, None)
        envelope = {
            "iv": base64.b64encode(iv).decode("ascii"),
            "data": base64.b64encode(ciphertext).decode("ascii"),
        }
        return base64.b64encode(json.dumps(envelope).encode("utf-8")).decode("ascii")

    def decrypt(self, blob: str) -> dict[str, Any]:
        """Summary: Decrypt an envelope back into the original payload.

        Importance: Any malformed, truncated, or tampered input raises CryptoError.
        Alternatives: Return None and let callers guess why.
        """

        try:
            envelope = json.loads(base64.b64decode(blob.encode("ascii"), validate=True))
        except (binascii.Error, UnicodeError, ValueError) as exc:
            raise CryptoError("Stored token payload is invalid.") from exc
        if not isinstance(envelope, dict) or not envelope.get("iv") or not envelope.get("data"):
            raise CryptoError("Stored token payload is invalid.")
        try:
            iv = base64.b64decode(str(envelope["iv"]), validate=True)
            ciphertext = base64.b64decode(str(envelope["data"]), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise CryptoError("Stored token payload is invalid.") from exc
        if len(iv) != IV_LENGTH:
            raise CryptoError("Stored token payload is invalid.")
        try:
            plaintext = AESGCM(self._key()).decrypt(iv, ciphertext, None)
        except InvalidTag as exc:
            raise CryptoError("Failed to decrypt token payload.") from exc
        try:
            payload = json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise CryptoError("Token payload JSON is invalid.") from exc
        if not isinstance(payload, dict):
            raise CryptoError("Token payload JSON is invalid.")
        return payload

    def _key(self) -> bytes:
        if not self._secret:
            raise CryptoError("A token secret is required to encrypt OAuth tokens.")
        return hashlib.sha256(self._secret).digest()
