"""
Access to the secrets posvault needs: the backup encryption key and the
credentials of the remote object stores.
"""

from __future__ import annotations

import base64
import binascii
import os
from collections.abc import Callable

import structlog
from pydantic import SecretStr

from posvault.config.settings import Settings, get_settings

KEY_BYTES = 32
MIN_TOKEN_LENGTH = 16


def reveal(value: object) -> str | None:
    """Plain text of a setting that may be wrapped in ``SecretStr``"""
    if value is None:
        return None
    if isinstance(value, SecretStr):
        value = value.get_secret_value()
    text = str(value)
    return text or None


class SecureSettingsManager:
    """Resolves secrets from the process environment, then from ``Settings``.

    Resolved values are cached per manager, so build a new manager after the
    environment changes.
    """

    def __init__(self, base_settings: Settings | None = None) -> None:
        self.logger = structlog.get_logger("secure_settings")
        self.base_settings = base_settings or get_settings()
        self._resolved: dict[str, str | None] = {}
        self._rules: dict[str, Callable[[str], tuple[bool, str]]] = {
            "backup_encryption_key": self._check_encryption_key,
            "http_store_token": self._check_store_token,
        }

    def get_secure_setting(self, key: str, default: str | None = None) -> str | None:
        if key not in self._resolved:
            from_env = os.getenv(key.upper())
            from_settings = reveal(getattr(self.base_settings, key, None))
            self._resolved[key] = from_env or from_settings
        resolved = self._resolved[key]
        return resolved if resolved is not None else default

    def get_encryption_key(self) -> str | None:
        """The application-managed backup key, or ``None`` when not configured.

        A key that fails validation is still returned and only logged.
        """
        key = self.get_secure_setting("backup_encryption_key")
        if key is None:
            return None

        ok, reason = self._check_encryption_key(key)
        if not ok:
            self.logger.warning("Weak backup encryption key", reason=reason)
        return key

    def validate(self, key: str) -> tuple[bool, str]:
        """Check a configured secret against the rule registered for it"""
        value = self.get_secure_setting(key)
        check = self._rules.get(key)
        if check is None:
            return value is not None, "No validation rule"
        if value is None:
            return False, f"{key} is not configured"
        return check(value)

    @staticmethod
    def _check_store_token(token: str) -> tuple[bool, str]:
        if len(token) < MIN_TOKEN_LENGTH:
            return (
                False,
                f"Object store token too short (minimum {MIN_TOKEN_LENGTH} characters)",
            )
        if any(c.isspace() for c in token):
            return False, "Object store token contains whitespace"
        return True, "Valid object store token format"

    @staticmethod
    def _check_encryption_key(key: str) -> tuple[bool, str]:
        # accepts either urlsafe base64 of 32 bytes or 32+ raw characters
        try:
            if len(base64.urlsafe_b64decode(key)) == KEY_BYTES:
                return True, "Valid encryption key"
        except (binascii.Error, ValueError):
            pass
        if len(key) >= KEY_BYTES:
            return True, "Valid raw encryption key"
        return (
            False,
            f"Encryption key must be {KEY_BYTES} bytes (got {len(key)} characters)",
        )
