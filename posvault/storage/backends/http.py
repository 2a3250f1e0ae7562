"""
Generic HTTP object store backend.

Objects live at ``{base_url}/{name}``: PUT stores an envelope, GET returns it,
DELETE removes it. The store may answer a PUT with ``{"id": ..., "url": ...}``;
otherwise the object name is used as id and the object URL as locator.
"""

from typing import Any

import aiohttp
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from posvault.models import Envelope, UploadResult, parse_envelope
from posvault.storage.backends.base import StorageBackend


class RetryableStoreError(Exception):
    """Object store failure worth retrying (5xx, dropped connection)"""


class ObjectStoreError(Exception):
    """Object store rejected the request"""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


_RETRY = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
    retry=retry_if_exception_type(RetryableStoreError),
    reraise=True,
)


class HttpObjectStoreBackend(StorageBackend):
    """Remote backend speaking plain HTTP to an object store."""

    def __init__(
        self,
        backend_id: str,
        base_url: str,
        token: str | None = None,
        request_timeout: float = 30.0,
    ):
        super().__init__(backend_id)
        if not base_url:
            raise ValueError("base_url is required for HttpObjectStoreBackend")
        self.base_url = base_url.rstrip("/")
        self._token = token
        self.timeout = aiohttp.ClientTimeout(total=request_timeout, connect=10)

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "User-Agent": "posvault-backup/1.0",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def object_url(self, name: str) -> str:
        return f"{self.base_url}/{name}"

    async def _raise_for_status(self, response: aiohttp.ClientResponse) -> None:
        if response.status < 400:
            return
        error_text = await response.text()
        if response.status >= 500:
            self.logger.warning(
                "Object store server error - will retry",
                backend=self.backend_id,
                status=response.status,
            )
            raise RetryableStoreError(f"Server error: {response.status} - {error_text}")
        raise ObjectStoreError(
            f"Request rejected: {response.status} - {error_text}",
            status=response.status,
        )

    @_RETRY
    async def upload(self, envelope: Envelope, name: str) -> UploadResult:
        url = self.object_url(name)
        try:
            async with (
                aiohttp.ClientSession(timeout=self.timeout) as session,
                session.put(url, json=envelope.to_wire(), headers=self._headers()) as response,
            ):
                await self._raise_for_status(response)
                body: dict[str, Any] = {}
                if response.content_type == "application/json":
                    body = await response.json() or {}
        except aiohttp.ClientConnectionError as e:
            raise RetryableStoreError(f"Connection failed: {e}") from e

        file_id = str(body.get("id") or name)
        locator = str(body.get("url") or url)
        self.logger.info(
            "Backup uploaded", backend=self.backend_id, file_id=file_id
        )
        return UploadResult(id=file_id, locator=locator)

    @_RETRY
    async def download(self, file_id: str) -> Envelope:
        try:
            async with (
                aiohttp.ClientSession(timeout=self.timeout) as session,
                session.get(self.object_url(file_id), headers=self._headers()) as response,
            ):
                await self._raise_for_status(response)
                raw = await response.json(content_type=None)
        except aiohttp.ClientConnectionError as e:
            raise RetryableStoreError(f"Connection failed: {e}") from e

        return parse_envelope(raw)

    @_RETRY
    async def delete(self, file_id: str) -> None:
        try:
            async with (
                aiohttp.ClientSession(timeout=self.timeout) as session,
                session.delete(self.object_url(file_id), headers=self._headers()) as response,
            ):
                if response.status == 404:
                    return
                await self._raise_for_status(response)
        except aiohttp.ClientConnectionError as e:
            raise RetryableStoreError(f"Connection failed: {e}") from e
