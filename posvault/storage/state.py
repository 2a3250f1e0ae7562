"""Access to the persisted application-state document."""

import json
from typing import Any

from posvault.exceptions import FormatError, NoDataError
from posvault.storage.kv import KeyValueStore
from posvault.utils.mixins import LoggerMixin


class StateStore(LoggerMixin):
    """The single keyed document holding the whole application state.

    The backup subsystem reads it wholesale and replaces it wholesale; it
    never edits parts of it.
    """

    def __init__(self, store: KeyValueStore, key: str):
        self.store = store
        self.key = key

    async def read_raw(self) -> str | None:
        return await self.store.get(self.key)

    async def read_snapshot(self) -> Any:
        """Parsed application state.

        Raises:
            NoDataError: nothing has been persisted yet
            FormatError: the stored document is not JSON
        """
        raw = await self.read_raw()
        if raw is None or not raw.strip():
            raise NoDataError("No data found to backup")
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise FormatError(f"Stored application state is not valid JSON: {e}") from e

    async def replace(self, data: Any) -> None:
        """Overwrite the whole document in a single write"""
        document = json.dumps(data, ensure_ascii=False)
        await self.store.set(self.key, document)
        self.logger.info("Application state replaced", key=self.key, size=len(document))

    async def size_bytes(self) -> int:
        raw = await self.read_raw()
        return len(raw.encode("utf-8")) if raw else 0
