"""
Backup history ledger.

Records live as one JSON list under their own storage key, separate from the
application state, most recent first. The list never grows beyond
``capacity`` entries: once an append overflows it, the oldest entries (by
timestamp) are dropped whatever their origin. The retention policy for
automatic backups is a separate, narrower rule (:meth:`prune_auto_backups`).
"""

from __future__ import annotations

import json
from datetime import datetime

from pydantic import TypeAdapter, ValidationError

from posvault.exceptions import RetentionError
from posvault.models import BackupRecord, BackupStats, BackupType
from posvault.storage.kv import KeyValueStore
from posvault.utils.mixins import LoggerMixin

DEFAULT_CAPACITY = 50

_RECORDS = TypeAdapter(list[BackupRecord])


def _by_recency(record: BackupRecord) -> datetime:
    return record.timestamp


class HistoryLedger(LoggerMixin):
    """Capacity-bounded, most-recent-first list of backup records."""

    def __init__(self, store: KeyValueStore, key: str, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("History capacity must be at least 1")
        self.store = store
        self.key = key
        self.capacity = capacity

    async def _load(self) -> list[BackupRecord]:
        raw = await self.store.get(self.key)
        if not raw:
            return []
        try:
            return _RECORDS.validate_json(raw)
        except ValidationError as e:
            self.logger.error(
                "Stored backup history is unreadable, starting empty",
                key=self.key,
                errors=e.error_count(),
            )
            return []

    async def _save(self, records: list[BackupRecord]) -> None:
        document = json.dumps([r.to_wire() for r in records])
        await self.store.set(self.key, document)

    async def append(self, record: BackupRecord) -> list[BackupRecord]:
        """Add ``record`` as the newest entry.

        Returns:
            the oldest records dropped to stay within ``capacity``; their
            stored envelopes are the caller's to clean up
        """
        records = await self._load()
        records.insert(0, record)

        dropped: list[BackupRecord] = []
        if len(records) > self.capacity:
            records.sort(key=_by_recency, reverse=True)
            dropped = records[self.capacity :]
            records = records[: self.capacity]
            self.logger.info(
                "History capacity reached, dropped oldest records",
                dropped=[r.id for r in dropped],
                capacity=self.capacity,
            )

        await self._save(records)
        self.logger.debug("History record appended", record_id=record.id)
        return dropped

    async def list(
        self,
        *,
        type: BackupType | None = None,
        provider: str | None = None,
        auto_backup: bool | None = None,
    ) -> list[BackupRecord]:
        """Records in ledger order, optionally filtered."""
        records = await self._load()
        if type is not None:
            records = [r for r in records if r.type == type]
        if provider is not None:
            records = [r for r in records if r.provider == provider]
        if auto_backup is not None:
            records = [r for r in records if r.auto_backup == auto_backup]
        return records

    async def get(self, record_id: str) -> BackupRecord | None:
        for record in await self._load():
            if record.id == record_id:
                return record
        return None

    async def delete(self, record_id: str) -> bool:
        records = await self._load()
        remaining = [r for r in records if r.id != record_id]
        if len(remaining) == len(records):
            return False
        await self._save(remaining)
        self.logger.info("History record deleted", record_id=record_id)
        return True

    async def clear(self) -> None:
        await self.store.remove(self.key)
        self.logger.info("Backup history cleared", key=self.key)

    async def prune_auto_backups(self, max_keep: int) -> list[BackupRecord]:
        """Keep the ``max_keep`` most recent automatic backups, drop the rest.

        Manually created records are never touched.

        Returns:
            the removed records

        Raises:
            RetentionError: the ledger could not be read or rewritten
        """
        if max_keep < 1:
            raise RetentionError(f"max_keep must be at least 1 (got {max_keep})")
        try:
            records = await self._load()
            auto = sorted(
                (r for r in records if r.auto_backup), key=_by_recency, reverse=True
            )
            doomed = auto[max_keep:]
            if not doomed:
                return []

            doomed_ids = {r.id for r in doomed}
            await self._save([r for r in records if r.id not in doomed_ids])
        except Exception as e:
            raise RetentionError(f"Failed to prune backup history: {e}") from e

        self.logger.info(
            "Cleaned up old automatic backups",
            removed=len(doomed),
            kept=max_keep,
        )
        return doomed

    async def stats(self) -> BackupStats:
        records = await self._load()
        stats = BackupStats(
            total_backups=len(records),
            local_backups=sum(1 for r in records if r.type == BackupType.LOCAL),
            cloud_backups=sum(1 for r in records if r.type == BackupType.CLOUD),
            auto_backups=sum(1 for r in records if r.auto_backup),
            total_storage_used=sum(r.size_bytes for r in records),
        )
        if records:
            latest = max(records, key=_by_recency)
            stats.last_backup_time = latest.timestamp
            stats.last_backup_size = latest.size_bytes
        return stats
