"""Configuration settings for posvault with caching utilities."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_KDF_ITERATIONS = 100_000


class Settings(BaseSettings):
    """Back-office backup settings"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Durable storage
    data_dir: Path = Path("./data")
    backup_dir: Path = Path("./data/backups")
    state_storage_key: str = "pos-storage"
    history_storage_key: str = "pos-backup-history"
    last_backup_storage_key: str = "last-auto-backup"
    scheduler_config_storage_key: str = "auto-backup-config"

    # History ledger
    history_capacity: int = Field(default=50, ge=1)

    # Payload metadata
    app_version: str = "1.0.0"

    # Encryption
    backup_encryption_key: SecretStr | None = None  # used when no password
    kdf_iterations: int = Field(default=200_000, ge=MIN_KDF_ITERATIONS)

    # Remote backends
    backend_timeout_seconds: float = Field(default=30.0, gt=0)
    http_store_url: str | None = None
    http_store_token: SecretStr | None = None
    s3_bucket: str | None = None
    s3_endpoint_url: str | None = None
    s3_region: str | None = None
    s3_access_key_id: SecretStr | None = None
    s3_secret_access_key: SecretStr | None = None
    s3_prefix: str = "pos-backups/"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"
    log_dir: Path | None = None
    log_max_bytes: int = Field(default=5 * 1024 * 1024, ge=1024)
    log_backup_count: int = Field(default=3, ge=0)

    # Environment
    environment: str = "production"

    @property
    def is_testing(self) -> bool:
        """Check if running in testing mode"""
        return self.environment.lower() in ["testing", "test"]

    @property
    def has_http_store(self) -> bool:
        return bool(self.http_store_url)

    @property
    def has_s3_store(self) -> bool:
        return bool(self.s3_bucket)


@lru_cache(maxsize=1)
def _load_settings() -> Settings:
    return Settings()


# innermost override_settings() block wins
_overrides: list[Settings] = []


def get_settings(*, refresh: bool = False) -> Settings:
    """Cached ``Settings``; ``refresh=True`` re-reads the environment."""
    if refresh:
        _load_settings.cache_clear()
    if _overrides:
        return _overrides[-1]
    return _load_settings()


def clear_settings_cache() -> None:
    _load_settings.cache_clear()


@contextmanager
def override_settings(**overrides: Any) -> Iterator[Settings]:
    """Serve a patched copy of the current settings within the block."""
    patched = get_settings().model_copy(update=overrides)
    _overrides.append(patched)
    try:
        yield patched
    finally:
        _overrides.pop()
