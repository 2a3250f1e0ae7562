"""Tests for keyed document storage, the state store and the operation guard"""

import asyncio
import json

import pytest

from posvault.backup.guard import OperationGuard, OperationKind
from posvault.exceptions import FormatError, NoDataError, OperationInProgressError
from posvault.storage.kv import JsonFileStore
from posvault.storage.state import StateStore


@pytest.mark.asyncio
async def test_json_file_store_round_trip(store: JsonFileStore) -> None:
    assert await store.get("pos-storage") is None

    await store.set("pos-storage", '{"a": 1}')

    assert await store.get("pos-storage") == '{"a": 1}'
    assert await store.size_of("pos-storage") == len('{"a": 1}')

    await store.remove("pos-storage")
    await store.remove("pos-storage")
    assert await store.get("pos-storage") is None
    assert await store.size_of("pos-storage") == 0


@pytest.mark.asyncio
async def test_json_file_store_sanitizes_keys(store: JsonFileStore) -> None:
    await store.set("../escape/attempt", "x")

    path = store.path_for("../escape/attempt")
    assert path.parent == store.root
    assert await store.get("../escape/attempt") == "x"


@pytest.mark.asyncio
async def test_json_file_store_leaves_no_temporary_files(store: JsonFileStore) -> None:
    await asyncio.gather(*(store.set("k", str(i)) for i in range(10)))

    assert [p.name for p in store.root.iterdir()] == ["k.json"]


@pytest.mark.asyncio
async def test_state_store_snapshot(store: JsonFileStore, pos_state) -> None:
    state = StateStore(store, "pos-storage")

    await state.replace(pos_state)

    assert await state.read_snapshot() == pos_state
    assert "Café Central" in await state.read_raw()
    assert await state.size_bytes() == len((await state.read_raw()).encode("utf-8"))


@pytest.mark.asyncio
async def test_state_store_without_data(store: JsonFileStore) -> None:
    state = StateStore(store, "pos-storage")

    with pytest.raises(NoDataError):
        await state.read_snapshot()

    await store.set("pos-storage", "   ")
    with pytest.raises(NoDataError):
        await state.read_snapshot()


@pytest.mark.asyncio
async def test_state_store_rejects_corrupt_document(store: JsonFileStore) -> None:
    await store.set("pos-storage", "{broken")

    with pytest.raises(FormatError):
        await StateStore(store, "pos-storage").read_snapshot()


@pytest.mark.asyncio
async def test_state_store_keeps_nulls(store: JsonFileStore) -> None:
    state = StateStore(store, "pos-storage")

    await state.replace({"customer": None, "items": []})

    assert json.loads(await state.read_raw()) == {"customer": None, "items": []}


def test_guard_rejects_overlap() -> None:
    guard = OperationGuard()

    with guard.hold(OperationKind.BACKUP):
        assert guard.is_busy()
        assert guard.active() == OperationKind.BACKUP
        with pytest.raises(OperationInProgressError) as exc_info:
            with guard.hold(OperationKind.BACKUP):
                pass
        assert exc_info.value.active == "backup"

        with pytest.raises(OperationInProgressError):
            with guard.hold(OperationKind.RESTORE):
                pass

    assert not guard.is_busy()
    assert not guard.is_busy(OperationKind.RESTORE)


def test_guard_releases_after_failure() -> None:
    guard = OperationGuard()

    with pytest.raises(RuntimeError):
        with guard.hold(OperationKind.RESTORE):
            raise RuntimeError("boom")

    with guard.hold(OperationKind.BACKUP):
        assert guard.is_busy(OperationKind.BACKUP)
