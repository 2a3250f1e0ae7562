"""
Storage backend interface.

A backend stores sealed envelopes under a name and hands them back by id.
``upload`` returns only after the destination confirmed the write; anything
else must raise so that no history record is created for it.
"""

from abc import ABC, abstractmethod

from posvault.models import Envelope, UploadResult
from posvault.utils.mixins import LoggerMixin


class StorageBackend(LoggerMixin, ABC):
    """Common behaviour of every backup destination."""

    def __init__(self, backend_id: str):
        if not backend_id:
            raise ValueError("backend_id is required")
        self.backend_id = backend_id

    @abstractmethod
    async def upload(self, envelope: Envelope, name: str) -> UploadResult:
        """Write ``envelope`` under ``name`` and return its id and locator."""

    @abstractmethod
    async def download(self, file_id: str) -> Envelope:
        """Read back the envelope stored under ``file_id``."""

    @abstractmethod
    async def delete(self, file_id: str) -> None:
        """Remove the stored envelope. Missing files are not an error."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(backend_id={self.backend_id!r})"
