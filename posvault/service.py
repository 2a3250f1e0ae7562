"""
Backup service facade.

Wires the codec, the backends, the history ledger, both orchestrators and the
scheduler from :class:`Settings`, and exposes the operations an operator or
an API layer calls directly. Direct calls report their outcome to the
notifier and re-raise failures.
"""

from collections.abc import Awaitable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from posvault.backup.codec import BackupCodec
from posvault.backup.guard import OperationGuard
from posvault.backup.history import HistoryLedger
from posvault.backup.orchestrator import BackupOrchestrator
from posvault.backup.restore import RestoreOrchestrator
from posvault.config import SecureSettingsManager, Settings, get_settings
from posvault.exceptions import ProviderError
from posvault.models import (
    LOCAL_BACKEND_ID,
    BackupDestinations,
    BackupOptions,
    BackupRecord,
    BackupStats,
    BackupType,
    DestinationResult,
    Envelope,
    RestoreOptions,
    RestoreResult,
)
from posvault.notifications import LogNotifier, Notifier
from posvault.scheduler.scheduler import BackupScheduler
from posvault.storage.backends.local import LocalBackend
from posvault.storage.backends.registry import BackendRegistry, build_registry
from posvault.storage.kv import JsonFileStore, KeyValueStore
from posvault.storage.state import StateStore
from posvault.utils.clock import Clock, SystemClock
from posvault.utils.error_handler import safe_operation
from posvault.utils.mixins import LoggerMixin

_SIZE_UNITS = ["Bytes", "KB", "MB", "GB"]


def format_bytes(size: int) -> str:
    """Human readable size, e.g. ``1.5 KB``"""
    if size <= 0:
        return "0 Bytes"
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(_SIZE_UNITS) - 1:
        value /= 1024
        unit += 1
    return f"{round(value, 2):g} {_SIZE_UNITS[unit]}"


@dataclass
class StorageInfo:
    """Bytes used by the application state and the backup history."""

    state_size: int
    history_size: int

    @property
    def total_size(self) -> int:
        return self.state_size + self.history_size

    def to_dict(self) -> dict[str, Any]:
        return {
            "state_size": self.state_size,
            "history_size": self.history_size,
            "total_size": self.total_size,
            "state_size_formatted": format_bytes(self.state_size),
            "history_size_formatted": format_bytes(self.history_size),
            "total_size_formatted": format_bytes(self.total_size),
        }


class BackupService(LoggerMixin):
    """Entry point for manual backups, restores and history management."""

    def __init__(
        self,
        settings: Settings,
        store: KeyValueStore,
        state_store: StateStore,
        ledger: HistoryLedger,
        registry: BackendRegistry,
        backups: BackupOrchestrator,
        restorer: RestoreOrchestrator,
        scheduler: BackupScheduler,
        notifier: Notifier,
    ):
        self.settings = settings
        self.store = store
        self.state_store = state_store
        self.ledger = ledger
        self.registry = registry
        self.backups = backups
        self.restorer = restorer
        self.scheduler = scheduler
        self.notifier = notifier

    async def start(self) -> None:
        """Load the scheduler state and start automatic backups if enabled"""
        await self.scheduler.load()
        await self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.scheduler.wait_idle()

    async def create_local_backup(
        self,
        *,
        encryption_enabled: bool = True,
        password: str | None = None,
        name: str | None = None,
        label: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> BackupRecord:
        """Back up the current state to the local backend.

        Raises:
            NoDataError: there is nothing to back up
            OperationInProgressError: a backup or restore is already running
            BackupError: sealing or writing the backup failed
        """
        options = BackupOptions(
            encryption_enabled=encryption_enabled,
            password=password,
            name=name,
            label=label,
            extra_metadata=metadata or {},
        )
        (result,) = await self._run_backup(BackupDestinations(local=True), options)
        if not result.success or result.record is None:
            await self._notify_failure(
                f"Backup failed: {result.error}", backend=LOCAL_BACKEND_ID
            )
            raise result.exception or RuntimeError(result.error)

        await self._notify_success("Backup created successfully", record=result.record.id)
        return result.record

    async def create_remote_backup(
        self,
        backend_id: str,
        *,
        also_local: bool = False,
        encryption_enabled: bool = True,
        password: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> list[DestinationResult]:
        """Back up the current state to ``backend_id`` and optionally locally.

        Returns the per-destination results when at least one destination
        succeeded; raises the first failure when none did.
        """
        options = BackupOptions(
            encryption_enabled=encryption_enabled,
            password=password,
            extra_metadata=metadata or {},
        )
        destinations = BackupDestinations(local=also_local, remote=backend_id)
        results = await self._run_backup(destinations, options)

        failed = [r for r in results if not r.success]
        if failed:
            await self._notify_failure(
                "Backup failed for some destinations",
                failed={r.backend_id: r.error for r in failed},
            )
        if len(failed) == len(results):
            first = failed[0]
            raise first.exception or ProviderError(first.backend_id, first.error or "")

        if not failed:
            await self._notify_success(
                "Backup uploaded successfully",
                records=[r.record.id for r in results if r.record],
            )
        return results

    async def _run_backup(
        self, destinations: BackupDestinations, options: BackupOptions
    ) -> list[DestinationResult]:
        try:
            return await self.backups.run_backup(destinations, options)
        except Exception as e:
            await self._notify_failure(f"Backup failed: {e}")
            raise

    async def restore(
        self,
        envelope: Envelope | dict[str, Any] | str | bytes,
        options: RestoreOptions | None = None,
    ) -> RestoreResult:
        return await self._reported_restore(self.restorer.restore(envelope, options))

    async def restore_from_backend(
        self, backend_id: str, file_id: str, options: RestoreOptions | None = None
    ) -> RestoreResult:
        return await self._reported_restore(
            self.restorer.restore_from_backend(backend_id, file_id, options)
        )

    async def _reported_restore(self, run: Awaitable[RestoreResult]) -> RestoreResult:
        try:
            result = await run
        except Exception as e:
            await self._notify_failure(f"Restore failed: {e}")
            raise
        await self._notify_success(
            "Backup restored successfully. Reload required.",
            backup_timestamp=result.timestamp.isoformat(),
        )
        return result

    async def restore_from_record(
        self, record_id: str, options: RestoreOptions | None = None
    ) -> RestoreResult:
        """Restore the backup a history record points to.

        Raises:
            KeyError: no such record, or the record has no stored file
        """
        record = await self.ledger.get(record_id)
        if record is None or not record.file_id:
            raise KeyError(f"No restorable backup with id {record_id}")
        return await self.restore_from_backend(record.backend_id, record.file_id, options)

    async def restore_from_file(
        self, path: Path, options: RestoreOptions | None = None
    ) -> RestoreResult:
        """Restore from an envelope file, e.g. one uploaded by an operator.

        Raises:
            FileNotFoundError: ``path`` does not exist
            FormatError: the file is not a backup envelope
        """
        try:
            envelope = await self._local_backend().import_from_file(path)
        except Exception as e:
            await self._notify_failure(f"Restore failed: {e}", path=str(path))
            raise
        return await self.restore(envelope, options)

    def acknowledge_reload(self) -> None:
        self.restorer.acknowledge_reload()

    async def export_backup(self, record_id: str, path: Path) -> Path:
        """Write the envelope of a recorded backup to ``path``.

        Raises:
            KeyError: no such record, or the record has no stored file
            ProviderError: the envelope could not be downloaded
        """
        record = await self.ledger.get(record_id)
        if record is None or not record.file_id:
            raise KeyError(f"No exportable backup with id {record_id}")
        envelope = await self.registry.download(record.backend_id, record.file_id)
        return await self._local_backend().export_to_file(envelope, path)

    async def history(
        self,
        *,
        type: BackupType | None = None,
        provider: str | None = None,
        auto_backup: bool | None = None,
    ) -> list[BackupRecord]:
        return await self.ledger.list(type=type, provider=provider, auto_backup=auto_backup)

    async def delete_backup(self, record_id: str, *, delete_file: bool = True) -> bool:
        """Remove a history record and, by default, the stored envelope.

        A file that cannot be deleted is logged; the record is removed anyway.
        """
        record = await self.ledger.get(record_id)
        if record is None:
            return False
        if delete_file and record.file_id:
            try:
                await self.registry.delete(record.backend_id, record.file_id)
            except ProviderError as e:
                self.logger.warning(
                    "Backup file could not be deleted",
                    record_id=record_id,
                    backend=record.backend_id,
                    error=str(e),
                )
        return await self.ledger.delete(record_id)

    async def clear_history(self) -> None:
        """Forget every history record. Stored envelopes are left in place."""
        await self.ledger.clear()

    async def storage_info(self) -> StorageInfo:
        history = await self.store.get(self.ledger.key)
        return StorageInfo(
            state_size=await self.state_store.size_bytes(),
            history_size=len(history.encode("utf-8")) if history else 0,
        )

    async def stats(self) -> BackupStats:
        return await self.ledger.stats()

    def _local_backend(self) -> LocalBackend:
        backend = self.registry.get(LOCAL_BACKEND_ID)
        if not isinstance(backend, LocalBackend):
            raise TypeError("The local backend does not support file import/export")
        return backend

    @safe_operation("deliver backup notification")
    async def _notify_success(self, message: str, **context: Any) -> None:
        await self.notifier.success(message, **context)

    @safe_operation("deliver backup notification")
    async def _notify_failure(self, message: str, **context: Any) -> None:
        await self.notifier.failure(message, **context)


def build_service(
    settings: Settings | None = None,
    *,
    clock: Clock | None = None,
    notifier: Notifier | None = None,
    registry: BackendRegistry | None = None,
    store: KeyValueStore | None = None,
) -> BackupService:
    """Build a fully wired :class:`BackupService` from settings."""
    settings = settings or get_settings()
    secure_settings = SecureSettingsManager(settings)
    clock = clock or SystemClock()
    notifier = notifier or LogNotifier()
    store = store or JsonFileStore(settings.data_dir)
    registry = registry or build_registry(settings, secure_settings)

    codec = BackupCodec(
        default_secret=secure_settings.get_encryption_key(),
        iterations=settings.kdf_iterations,
        clock=clock,
    )
    state_store = StateStore(store, settings.state_storage_key)
    ledger = HistoryLedger(store, settings.history_storage_key, settings.history_capacity)
    guard = OperationGuard()

    backups = BackupOrchestrator(
        state_store,
        codec,
        registry,
        ledger,
        clock,
        guard=guard,
        app_version=settings.app_version,
    )
    restorer = RestoreOrchestrator(state_store, codec, backups, registry, guard=guard)
    scheduler = BackupScheduler(
        backups,
        ledger,
        registry,
        store,
        clock,
        notifier,
        config_key=settings.scheduler_config_storage_key,
        last_backup_key=settings.last_backup_storage_key,
    )

    return BackupService(
        settings=settings,
        store=store,
        state_store=state_store,
        ledger=ledger,
        registry=registry,
        backups=backups,
        restorer=restorer,
        scheduler=scheduler,
        notifier=notifier,
    )
