"""
Seal and open backup payloads.

Encrypted envelopes use AES-256-GCM with a key derived by PBKDF2-HMAC-SHA256.
Every seal draws a fresh 16 byte salt and a fresh 96 bit nonce, so a nonce is
never reused under the same key. The envelope ``data`` object carries
everything needed to open it again:

    {"kdf": "PBKDF2-HMAC-SHA256", "iterations": 200000,
     "salt": "<b64>", "nonce": "<b64>", "ciphertext": "<b64>"}
"""

from __future__ import annotations

import base64
import binascii
import json
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pydantic import ValidationError

from posvault.config import MIN_KDF_ITERATIONS
from posvault.exceptions import DecryptionError, EncryptionError, FormatError
from posvault.models import BackupPayload, Envelope, parse_envelope
from posvault.utils.clock import Clock, SystemClock
from posvault.utils.mixins import LoggerMixin

ALGORITHM = "AES-256-GCM"
KDF = "PBKDF2-HMAC-SHA256"
SUPPORTED_ALGORITHMS = frozenset({ALGORITHM})
MAX_KDF_ITERATIONS = 10_000_000
SALT_BYTES = 16
NONCE_BYTES = 12
KEY_BYTES = 32
ASSOCIATED_DATA = b"posvault-envelope-v1"


def derive_key(secret: str, salt: bytes, iterations: int) -> bytes:
    """Derive a 256 bit key from ``secret``."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_BYTES,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(secret.encode("utf-8"))


def _b64decode(value: Any, field_name: str) -> bytes:
    if not isinstance(value, str):
        raise FormatError(f"Envelope field '{field_name}' must be a base64 string")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise FormatError(f"Envelope field '{field_name}' is not valid base64") from e


class BackupCodec(LoggerMixin):
    """Turns payloads into envelopes and back."""

    def __init__(
        self,
        default_secret: str | None = None,
        iterations: int = 200_000,
        clock: Clock | None = None,
    ):
        if iterations < MIN_KDF_ITERATIONS:
            raise ValueError(
                f"KDF iterations must be at least {MIN_KDF_ITERATIONS} (got {iterations})"
            )
        self._default_secret = default_secret
        self.iterations = iterations
        self.clock = clock or SystemClock()

    def _resolve_secret(self, password: str | None) -> str | None:
        if password:
            return password
        return self._default_secret

    def seal(
        self,
        payload: BackupPayload,
        encryption_enabled: bool,
        password: str | None = None,
    ) -> Envelope:
        """Seal ``payload`` into an envelope, encrypting it when enabled."""
        plaintext = payload.to_json()
        timestamp = self.clock.now()

        if not encryption_enabled:
            return Envelope(encrypted=False, data=plaintext, timestamp=timestamp)

        secret = self._resolve_secret(password)
        if not secret:
            raise EncryptionError(
                "Encryption is enabled but no password or backup key is configured"
            )

        try:
            salt = os.urandom(SALT_BYTES)
            nonce = os.urandom(NONCE_BYTES)
            key = derive_key(secret, salt, self.iterations)
            ciphertext = AESGCM(key).encrypt(
                nonce, plaintext.encode("utf-8"), ASSOCIATED_DATA
            )
        except Exception as e:
            self.logger.error("Payload encryption failed", error=str(e))
            raise EncryptionError(f"Failed to encrypt backup: {e}") from e

        return Envelope(
            encrypted=True,
            algorithm=ALGORITHM,
            timestamp=timestamp,
            data={
                "kdf": KDF,
                "iterations": self.iterations,
                "salt": base64.b64encode(salt).decode("ascii"),
                "nonce": base64.b64encode(nonce).decode("ascii"),
                "ciphertext": base64.b64encode(ciphertext).decode("ascii"),
            },
        )

    def open(
        self,
        envelope: Envelope | dict[str, Any] | str | bytes,
        password: str | None = None,
    ) -> BackupPayload:
        """Open an envelope back into its payload.

        Raises:
            FormatError: missing fields, unknown algorithm or bad payload
            DecryptionError: wrong key or tampered ciphertext
        """
        envelope = parse_envelope(envelope)

        if not envelope.encrypted:
            if not isinstance(envelope.data, str):
                raise FormatError("Plain envelope data must be serialized text")
            return self._parse_payload(envelope.data)

        if envelope.algorithm is None:
            raise FormatError("Encrypted envelope does not name its algorithm")
        if envelope.algorithm not in SUPPORTED_ALGORITHMS:
            raise FormatError(f"Unsupported envelope algorithm: {envelope.algorithm}")
        if not isinstance(envelope.data, dict):
            raise FormatError("Encrypted envelope data must be an object")

        params = envelope.data
        if params.get("kdf") != KDF:
            raise FormatError(f"Unsupported key derivation: {params.get('kdf')}")

        iterations = params.get("iterations")
        if (
            not isinstance(iterations, int)
            or isinstance(iterations, bool)
            or not MIN_KDF_ITERATIONS <= iterations <= MAX_KDF_ITERATIONS
        ):
            raise FormatError(f"Invalid key derivation iterations: {iterations!r}")

        salt = _b64decode(params.get("salt"), "salt")
        nonce = _b64decode(params.get("nonce"), "nonce")
        ciphertext = _b64decode(params.get("ciphertext"), "ciphertext")
        if len(nonce) != NONCE_BYTES:
            raise FormatError(f"Nonce must be {NONCE_BYTES} bytes (got {len(nonce)})")
        if not salt:
            raise FormatError("Envelope salt is empty")

        secret = self._resolve_secret(password)
        if not secret:
            raise DecryptionError(
                "Envelope is encrypted but no password or backup key is configured"
            )

        key = derive_key(secret, salt, iterations)
        try:
            plaintext = AESGCM(key).decrypt(nonce, ciphertext, ASSOCIATED_DATA)
        except InvalidTag as e:
            raise DecryptionError(
                "Backup could not be decrypted: wrong password or corrupted data"
            ) from e

        try:
            text = plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise FormatError("Decrypted payload is not UTF-8 text") from e
        return self._parse_payload(text)

    def _parse_payload(self, text: str) -> BackupPayload:
        try:
            json.loads(text)
        except json.JSONDecodeError as e:
            raise FormatError("Backup payload is not valid JSON") from e
        try:
            return BackupPayload.model_validate_json(text)
        except ValidationError as e:
            raise FormatError(
                f"Invalid backup payload: {e.error_count()} error(s)"
            ) from e
