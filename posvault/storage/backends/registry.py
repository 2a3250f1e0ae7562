"""Lookup table of storage backends keyed by identifier."""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from posvault.config import SecureSettingsManager, Settings
from posvault.exceptions import FormatError, ProviderError
from posvault.models import Envelope, UploadResult
from posvault.storage.backends.base import StorageBackend
from posvault.storage.backends.http import HttpObjectStoreBackend
from posvault.storage.backends.local import LocalBackend
from posvault.storage.backends.s3 import S3Backend
from posvault.utils.mixins import LoggerMixin

T = TypeVar("T")

HTTP_BACKEND_ID = "http"
S3_BACKEND_ID = "s3"


class BackendRegistry(LoggerMixin):
    """Backends by id, with uniform error wrapping and bounded call time.

    Every failure coming out of a backend, including a timeout or an unknown
    id, surfaces as :class:`ProviderError`. ``FormatError`` from a download
    that returned something other than an envelope passes through unchanged.
    """

    def __init__(self, timeout: float = 30.0):
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self.timeout = timeout
        self._backends: dict[str, StorageBackend] = {}

    def register(self, backend: StorageBackend) -> None:
        if backend.backend_id in self._backends:
            raise ValueError(f"Backend '{backend.backend_id}' is already registered")
        self._backends[backend.backend_id] = backend
        self.logger.info("Backend registered", backend=backend.backend_id)

    def get(self, backend_id: str) -> StorageBackend:
        try:
            return self._backends[backend_id]
        except KeyError:
            raise ProviderError(backend_id, "backend is not registered") from None

    def ids(self) -> list[str]:
        return list(self._backends)

    def __contains__(self, backend_id: object) -> bool:
        return backend_id in self._backends

    async def _call(self, backend_id: str, operation: str, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except (ProviderError, FormatError):
            raise
        except TimeoutError as e:
            self.logger.error(
                "Backend call timed out",
                backend=backend_id,
                operation=operation,
                timeout=self.timeout,
            )
            raise ProviderError(
                backend_id, f"{operation} timed out after {self.timeout}s"
            ) from e
        except Exception as e:
            self.logger.error(
                "Backend call failed",
                backend=backend_id,
                operation=operation,
                error=str(e),
            )
            raise ProviderError(backend_id, e) from e

    async def upload(self, backend_id: str, envelope: Envelope, name: str) -> UploadResult:
        backend = self.get(backend_id)
        return await self._call(backend_id, "upload", backend.upload(envelope, name))

    async def download(self, backend_id: str, file_id: str) -> Envelope:
        backend = self.get(backend_id)
        return await self._call(backend_id, "download", backend.download(file_id))

    async def delete(self, backend_id: str, file_id: str) -> None:
        backend = self.get(backend_id)
        await self._call(backend_id, "delete", backend.delete(file_id))


def build_registry(
    settings: Settings, secure_settings: SecureSettingsManager | None = None
) -> BackendRegistry:
    """Register the local backend plus every remote backend that is configured"""
    secure_settings = secure_settings or SecureSettingsManager(settings)
    registry = BackendRegistry(timeout=settings.backend_timeout_seconds)
    registry.register(LocalBackend(settings.backup_dir))

    if settings.has_http_store:
        registry.register(
            HttpObjectStoreBackend(
                HTTP_BACKEND_ID,
                base_url=settings.http_store_url or "",
                token=secure_settings.get_secure_setting("http_store_token"),
                request_timeout=settings.backend_timeout_seconds,
            )
        )

    if settings.has_s3_store:
        registry.register(
            S3Backend(
                S3_BACKEND_ID,
                bucket=settings.s3_bucket or "",
                prefix=settings.s3_prefix,
                endpoint_url=settings.s3_endpoint_url,
                region=settings.s3_region,
                access_key_id=secure_settings.get_secure_setting("s3_access_key_id"),
                secret_access_key=secure_settings.get_secure_setting(
                    "s3_secret_access_key"
                ),
            )
        )

    return registry
