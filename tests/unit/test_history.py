"""Tests for the backup history ledger"""

from datetime import UTC, datetime, timedelta

import pytest

from posvault.backup.history import HistoryLedger
from posvault.exceptions import RetentionError
from posvault.models import BackupRecord, BackupType, PayloadMetadata
from posvault.storage.kv import JsonFileStore

BASE_TIME = datetime(2025, 3, 1, 2, 0, tzinfo=UTC)


def _record(
    index: int,
    *,
    auto: bool = False,
    type: BackupType = BackupType.LOCAL,
    provider: str | None = None,
) -> BackupRecord:
    return BackupRecord(
        id=f"backup-{index}",
        type=type,
        provider=provider,
        timestamp=BASE_TIME + timedelta(hours=index),
        size_bytes=100 + index,
        encrypted=True,
        file_id=f"file-{index}.json",
        metadata=PayloadMetadata(app_version="1.0.0", auto_backup=auto),
    )


@pytest.fixture
def ledger(store: JsonFileStore) -> HistoryLedger:
    return HistoryLedger(store, "pos-backup-history", capacity=5)


@pytest.mark.asyncio
async def test_append_keeps_most_recent_first(ledger: HistoryLedger) -> None:
    for i in range(3):
        await ledger.append(_record(i))

    records = await ledger.list()

    assert [r.id for r in records] == ["backup-2", "backup-1", "backup-0"]


@pytest.mark.asyncio
async def test_capacity_drops_oldest_regardless_of_origin(
    ledger: HistoryLedger,
) -> None:
    for i in range(7):
        await ledger.append(_record(i, auto=i % 2 == 0))

    records = await ledger.list()

    assert len(records) == 5
    assert {r.id for r in records} == {f"backup-{i}" for i in range(2, 7)}


@pytest.mark.asyncio
async def test_append_returns_records_dropped_by_capacity(
    ledger: HistoryLedger,
) -> None:
    for i in range(5):
        assert await ledger.append(_record(i)) == []

    dropped = await ledger.append(_record(5))

    assert [r.id for r in dropped] == ["backup-0"]
    assert dropped[0].file_id == "file-0.json"


@pytest.mark.asyncio
async def test_list_filters(ledger: HistoryLedger) -> None:
    await ledger.append(_record(0))
    await ledger.append(_record(1, auto=True))
    await ledger.append(_record(2, type=BackupType.CLOUD, provider="s3"))

    assert [r.id for r in await ledger.list(type=BackupType.CLOUD)] == ["backup-2"]
    assert [r.id for r in await ledger.list(provider="s3")] == ["backup-2"]
    assert [r.id for r in await ledger.list(auto_backup=True)] == ["backup-1"]
    assert len(await ledger.list(auto_backup=False)) == 2


@pytest.mark.asyncio
async def test_get_and_delete(ledger: HistoryLedger) -> None:
    await ledger.append(_record(0))
    await ledger.append(_record(1))

    assert (await ledger.get("backup-0")).size_bytes == 100
    assert await ledger.delete("backup-0") is True
    assert await ledger.delete("backup-0") is False
    assert await ledger.get("backup-0") is None


@pytest.mark.asyncio
async def test_clear_empties_history(ledger: HistoryLedger) -> None:
    await ledger.append(_record(0))

    await ledger.clear()

    assert await ledger.list() == []


@pytest.mark.asyncio
async def test_prune_keeps_newest_auto_backups_and_all_manual_ones(
    store: JsonFileStore,
) -> None:
    ledger = HistoryLedger(store, "history", capacity=50)
    for i in range(6):
        await ledger.append(_record(i, auto=True))
    await ledger.append(_record(10, auto=False))
    await ledger.append(_record(11, auto=False))

    removed = await ledger.prune_auto_backups(3)

    assert {r.id for r in removed} == {"backup-0", "backup-1", "backup-2"}
    remaining = await ledger.list()
    assert {r.id for r in remaining if r.auto_backup} == {
        "backup-3",
        "backup-4",
        "backup-5",
    }
    assert {r.id for r in remaining if not r.auto_backup} == {"backup-10", "backup-11"}


@pytest.mark.asyncio
async def test_prune_with_nothing_to_remove(ledger: HistoryLedger) -> None:
    await ledger.append(_record(0, auto=True))

    assert await ledger.prune_auto_backups(3) == []
    assert len(await ledger.list()) == 1


@pytest.mark.asyncio
async def test_prune_rejects_non_positive_limit(ledger: HistoryLedger) -> None:
    with pytest.raises(RetentionError):
        await ledger.prune_auto_backups(0)


@pytest.mark.asyncio
async def test_prune_wraps_storage_failures(ledger: HistoryLedger, monkeypatch) -> None:
    await ledger.append(_record(0, auto=True))
    await ledger.append(_record(1, auto=True))

    async def broken_set(key: str, value: str) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(ledger.store, "set", broken_set)

    with pytest.raises(RetentionError):
        await ledger.prune_auto_backups(1)


@pytest.mark.asyncio
async def test_corrupt_history_is_treated_as_empty(store: JsonFileStore) -> None:
    await store.set("history", "{not a list")
    ledger = HistoryLedger(store, "history")

    assert await ledger.list() == []
    await ledger.append(_record(0))
    assert len(await ledger.list()) == 1


@pytest.mark.asyncio
async def test_stats(ledger: HistoryLedger) -> None:
    await ledger.append(_record(0))
    await ledger.append(_record(1, auto=True))
    await ledger.append(_record(2, type=BackupType.CLOUD, provider="http"))

    stats = await ledger.stats()

    assert stats.total_backups == 3
    assert stats.local_backups == 2
    assert stats.cloud_backups == 1
    assert stats.auto_backups == 1
    assert stats.total_storage_used == 100 + 101 + 102
    assert stats.last_backup_time == BASE_TIME + timedelta(hours=2)
    assert stats.last_backup_size == 102


def test_capacity_must_be_positive(store: JsonFileStore) -> None:
    with pytest.raises(ValueError):
        HistoryLedger(store, "history", capacity=0)
