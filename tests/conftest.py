"""
Shared fixtures.

- test environment variables are set for every test (autouse)
- the cached settings are reset around every test
- time is driven by ``FakeClock`` so scheduler behaviour is deterministic
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from posvault.config import Settings, clear_settings_cache
from posvault.exceptions import FormatError
from posvault.models import Envelope, UploadResult
from posvault.service import BackupService, build_service
from posvault.storage.backends.base import StorageBackend
from posvault.storage.backends.registry import BackendRegistry, build_registry
from posvault.storage.kv import JsonFileStore

TEST_ENCRYPTION_KEY = "test-backup-key-0123456789abcdef"


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Minimal dummy environment for every test; restored by monkeypatch."""
    env: dict[str, str] = {
        "ENVIRONMENT": "testing",
        "BACKUP_ENCRYPTION_KEY": TEST_ENCRYPTION_KEY,
        "KDF_ITERATIONS": "100000",
        "LOG_FORMAT": "console",
    }
    for k, v in env.items():
        monkeypatch.setenv(k, v)

    for k in (
        "HTTP_STORE_URL",
        "HTTP_STORE_TOKEN",
        "S3_BUCKET",
        "S3_ACCESS_KEY_ID",
        "S3_SECRET_ACCESS_KEY",
    ):
        monkeypatch.delenv(k, raising=False)

    clear_settings_cache()
    yield
    clear_settings_cache()


class FakeClock:
    """Clock whose time only moves when a test advances it.

    ``sleep`` blocks until :meth:`wake` is called, so a running scheduler loop
    performs exactly one tick per ``wake``.
    """

    def __init__(self, start: datetime) -> None:
        self.current = start
        self.sleeps: list[float] = []
        self._waiters: list[asyncio.Event] = []

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current

    def set(self, value: datetime) -> None:
        self.current = value

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        event = asyncio.Event()
        self._waiters.append(event)
        await event.wait()

    def wake(self) -> None:
        waiters, self._waiters = self._waiters, []
        for event in waiters:
            event.set()


class RecordingNotifier:
    """Notifier that keeps every message for assertions."""

    def __init__(self) -> None:
        self.successes: list[tuple[str, dict[str, Any]]] = []
        self.failures: list[tuple[str, dict[str, Any]]] = []

    async def success(self, message: str, **context: Any) -> None:
        self.successes.append((message, context))

    async def failure(self, message: str, **context: Any) -> None:
        self.failures.append((message, context))


class MemoryBackend(StorageBackend):
    """In-memory remote backend with switchable failures and latency."""

    def __init__(self, backend_id: str = "memory") -> None:
        super().__init__(backend_id)
        self.objects: dict[str, dict[str, Any]] = {}
        self.fail_uploads = False
        self.delay = 0.0
        self.deleted: list[str] = []

    async def upload(self, envelope: Envelope, name: str) -> UploadResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_uploads:
            raise ConnectionError("remote store unavailable")
        file_id = f"{self.backend_id}-{len(self.objects) + 1}-{name}"
        self.objects[file_id] = envelope.to_wire()
        return UploadResult(id=file_id, locator=f"memory://{self.backend_id}/{file_id}")

    async def download(self, file_id: str) -> Envelope:
        if self.delay:
            await asyncio.sleep(self.delay)
        if file_id not in self.objects:
            raise FileNotFoundError(file_id)
        try:
            return Envelope.model_validate(self.objects[file_id])
        except ValueError as e:
            raise FormatError("Invalid backup envelope") from e

    async def delete(self, file_id: str) -> None:
        self.objects.pop(file_id, None)
        self.deleted.append(file_id)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 3, 10, 9, 0, tzinfo=UTC))


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        data_dir=tmp_path / "data",
        backup_dir=tmp_path / "backups",
        kdf_iterations=100_000,
    )


@pytest.fixture
def store(settings: Settings) -> JsonFileStore:
    return JsonFileStore(settings.data_dir)


@pytest.fixture
def memory_backend() -> MemoryBackend:
    return MemoryBackend("memory")


@pytest.fixture
def registry(settings: Settings, memory_backend: MemoryBackend) -> BackendRegistry:
    registry = build_registry(settings)
    registry.register(memory_backend)
    return registry


@pytest.fixture
def service(
    settings: Settings,
    clock: FakeClock,
    notifier: RecordingNotifier,
    registry: BackendRegistry,
    store: JsonFileStore,
) -> BackupService:
    return build_service(
        settings, clock=clock, notifier=notifier, registry=registry, store=store
    )


@pytest.fixture
def pos_state() -> dict[str, Any]:
    """A small but realistic persisted POS state document."""
    return {
        "state": {
            "products": [
                {"id": "p-1", "name": "Espresso", "price": 2.5, "stock": 120},
                {"id": "p-2", "name": "Croissant", "price": 1.8, "stock": 35},
            ],
            "transactions": [
                {
                    "id": "t-1",
                    "items": [{"productId": "p-1", "qty": 2}],
                    "total": 5.0,
                    "paidWith": "card",
                    "note": None,
                }
            ],
            "settings": {"currency": "EUR", "storeName": "Café Central"},
        },
        "version": 3,
    }
