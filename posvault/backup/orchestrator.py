"""Backup orchestration: snapshot, seal, upload, record."""

import asyncio
import platform
import uuid
from datetime import datetime
from typing import Any

from posvault.backup.codec import BackupCodec
from posvault.backup.guard import OperationGuard, OperationKind
from posvault.backup.history import HistoryLedger
from posvault.models import (
    PAYLOAD_VERSION,
    PRE_RESTORE_LABEL,
    BackupDestinations,
    BackupOptions,
    BackupPayload,
    BackupRecord,
    BackupType,
    DestinationResult,
    PayloadMetadata,
)
from posvault.storage.backends.registry import BackendRegistry
from posvault.storage.state import StateStore
from posvault.utils.clock import Clock
from posvault.utils.error_handler import safe_operation
from posvault.utils.mixins import LoggerMixin


def default_user_agent(app_version: str) -> str:
    return (
        f"posvault/{app_version} Python/{platform.python_version()} "
        f"({platform.system()} {platform.machine()})"
    )


class BackupOrchestrator(LoggerMixin):
    """Writes the current application state to one or more destinations."""

    def __init__(
        self,
        state_store: StateStore,
        codec: BackupCodec,
        registry: BackendRegistry,
        ledger: HistoryLedger,
        clock: Clock,
        guard: OperationGuard | None = None,
        app_version: str = "1.0.0",
    ):
        self.state_store = state_store
        self.codec = codec
        self.registry = registry
        self.ledger = ledger
        self.clock = clock
        self.guard = guard or OperationGuard()
        self.app_version = app_version

    async def run_backup(
        self,
        destinations: BackupDestinations,
        options: BackupOptions | None = None,
    ) -> list[DestinationResult]:
        """Back up the current state to every requested destination.

        Destinations are written one after another and independently: a
        failing destination is reported in its result and does not undo or
        block the others.

        Raises:
            OperationInProgressError: a backup or restore is already running
            NoDataError: there is no application state to back up
            ValueError: no destination was requested
        """
        options = options or BackupOptions()
        with self.guard.hold(OperationKind.BACKUP):
            return await self._run(destinations, options)

    async def snapshot_before_restore(
        self, encryption_enabled: bool = True, password: str | None = None
    ) -> BackupRecord:
        """Local safety backup of the current state, labelled ``preRestore``.

        Only for callers that already hold the restore slot of the shared
        guard. Any failure is raised.
        """
        options = BackupOptions(
            encryption_enabled=encryption_enabled,
            password=password,
            label=PRE_RESTORE_LABEL,
        )
        (result,) = await self._run(BackupDestinations(local=True), options)
        if not result.success or result.record is None:
            raise result.exception or RuntimeError(result.error)
        return result.record

    async def _run(
        self, destinations: BackupDestinations, options: BackupOptions
    ) -> list[DestinationResult]:
        targets = destinations.targets()
        if not targets:
            raise ValueError("At least one backup destination is required")

        state = await self.state_store.read_snapshot()
        metadata = self._build_metadata(options)

        results = []
        for backend_id, is_remote in targets:
            result = await self._write_to(
                backend_id, state, metadata, options, remote=is_remote
            )
            results.append(result)

        self.logger.info(
            "Backup run finished",
            destinations=[backend_id for backend_id, _ in targets],
            succeeded=[r.backend_id for r in results if r.success],
            failed=[r.backend_id for r in results if not r.success],
            auto_backup=options.auto_backup,
        )
        return results

    async def _write_to(
        self,
        backend_id: str,
        state: Any,
        metadata: PayloadMetadata,
        options: BackupOptions,
        *,
        remote: bool,
    ) -> DestinationResult:
        timestamp = self.clock.now()
        payload = BackupPayload(
            version=PAYLOAD_VERSION,
            timestamp=timestamp,
            type=BackupType.CLOUD if remote else BackupType.LOCAL,
            provider=backend_id if remote else None,
            data=state,
            metadata=metadata,
        )

        try:
            envelope = await asyncio.to_thread(
                self.codec.seal, payload, options.encryption_enabled, options.password
            )
            name = options.name or self._file_name(options, timestamp)
            upload = await self.registry.upload(backend_id, envelope, name)
        except Exception as e:
            self.logger.error(
                "Backup to destination failed",
                backend=backend_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return DestinationResult(backend_id, False, error=str(e), exception=e)

        record = BackupRecord(
            id=f"backup-{int(timestamp.timestamp() * 1000)}-{uuid.uuid4().hex[:8]}",
            type=payload.type,
            provider=payload.provider,
            timestamp=timestamp,
            size_bytes=len(envelope.to_json().encode("utf-8")),
            encrypted=envelope.encrypted,
            file_id=upload.id,
            location=upload.locator,
            cloud_file_id=upload.id if remote else None,
            cloud_url=upload.locator if remote else None,
            metadata=metadata,
        )

        try:
            dropped = await self.ledger.append(record)
        except Exception as e:
            self.logger.error(
                "Backup written but history update failed, removing the file",
                backend=backend_id,
                file_id=upload.id,
                error=str(e),
            )
            await self._discard_upload(backend_id, upload.id)
            return DestinationResult(backend_id, False, error=str(e), exception=e)

        self.logger.info(
            "Backup stored",
            backend=backend_id,
            record_id=record.id,
            size=record.size_bytes,
            encrypted=record.encrypted,
        )
        for old in dropped:
            await self._purge_dropped(old)
        return DestinationResult(backend_id, True, record=record)

    async def _discard_upload(self, backend_id: str, file_id: str) -> None:
        try:
            await self.registry.delete(backend_id, file_id)
        except Exception as e:
            self.logger.warning(
                "Could not remove unrecorded backup file",
                backend=backend_id,
                file_id=file_id,
                error=str(e),
            )

    @safe_operation("delete backup file dropped from history")
    async def _purge_dropped(self, record: BackupRecord) -> None:
        if record.file_id:
            await self.registry.delete(record.backend_id, record.file_id)

    def _build_metadata(self, options: BackupOptions) -> PayloadMetadata:
        return PayloadMetadata(
            app_version=self.app_version,
            user_agent_info=options.user_agent_info or default_user_agent(self.app_version),
            auto_backup=options.auto_backup,
            frequency=options.frequency,
            label=options.label,
            **options.extra_metadata,
        )

    def _file_name(self, options: BackupOptions, timestamp: datetime) -> str:
        if options.label == PRE_RESTORE_LABEL:
            prefix = "pre-restore-backup"
        elif options.auto_backup:
            prefix = "auto-backup"
        else:
            prefix = "pos-backup"
        return f"{prefix}-{timestamp.strftime('%Y%m%d-%H%M%S-%f')}.json"
