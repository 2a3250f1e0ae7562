"""Durable keyed document storage."""

import re
from pathlib import Path
from typing import Protocol

import aiofiles
import aiofiles.os

from posvault.storage.files import write_atomic
from posvault.utils.mixins import LoggerMixin

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class KeyValueStore(Protocol):
    """Keyed get/set/remove of whole text documents"""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...


class JsonFileStore(LoggerMixin):
    """One JSON document per key inside ``root``.

    Writes go to a temporary sibling first and are moved into place with
    ``os.replace`` so readers never observe a half-written document.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        if not key:
            raise ValueError("Storage key must not be empty")
        safe_key = _UNSAFE_KEY_CHARS.sub("_", key)
        return self.root / f"{safe_key}.json"

    async def get(self, key: str) -> str | None:
        path = self.path_for(key)
        if not await aiofiles.os.path.exists(path):
            return None
        async with aiofiles.open(path, encoding="utf-8") as f:
            return await f.read()

    async def set(self, key: str, value: str) -> None:
        path = self.path_for(key)
        await write_atomic(path, value)
        self.logger.debug("Document written", key=key, size=len(value))

    async def remove(self, key: str) -> None:
        path = self.path_for(key)
        if await aiofiles.os.path.exists(path):
            await aiofiles.os.remove(path)
            self.logger.debug("Document removed", key=key)

    async def size_of(self, key: str) -> int:
        """Size in bytes of the stored document, 0 when absent"""
        path = self.path_for(key)
        if not await aiofiles.os.path.exists(path):
            return 0
        stat = await aiofiles.os.stat(path)
        return stat.st_size
