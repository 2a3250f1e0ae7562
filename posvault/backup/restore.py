"""
Restore pipeline.

    IDLE -> VALIDATING -> SAFETY_SNAPSHOT -> APPLYING -> AWAITING_RELOAD

Only APPLYING writes to the live application state. A failure in any earlier
phase leaves that state exactly as it was and puts the machine back to IDLE.
"""

import asyncio
from enum import Enum
from typing import Any

from posvault.backup.codec import BackupCodec
from posvault.backup.guard import OperationGuard, OperationKind
from posvault.backup.orchestrator import BackupOrchestrator
from posvault.exceptions import FormatError, NoDataError, OperationInProgressError
from posvault.models import (
    PAYLOAD_VERSION,
    BackupPayload,
    BackupRecord,
    Envelope,
    RestoreOptions,
    RestoreResult,
)
from posvault.storage.backends.registry import BackendRegistry
from posvault.storage.state import StateStore
from posvault.utils.mixins import LoggerMixin


class RestorePhase(str, Enum):
    """Where a restore run currently is."""

    IDLE = "idle"
    VALIDATING = "validating"
    SAFETY_SNAPSHOT = "safety_snapshot"
    APPLYING = "applying"
    AWAITING_RELOAD = "awaiting_reload"


class RestoreOrchestrator(LoggerMixin):
    """Replaces the application state with the content of a backup."""

    def __init__(
        self,
        state_store: StateStore,
        codec: BackupCodec,
        backups: BackupOrchestrator,
        registry: BackendRegistry,
        guard: OperationGuard | None = None,
    ):
        self.state_store = state_store
        self.codec = codec
        self.backups = backups
        self.registry = registry
        self.guard = guard or backups.guard
        self.phase = RestorePhase.IDLE

    async def restore(
        self,
        envelope: Envelope | dict[str, Any] | str | bytes,
        options: RestoreOptions | None = None,
    ) -> RestoreResult:
        """Validate ``envelope``, snapshot the current state, then apply it.

        Raises:
            OperationInProgressError: a backup or restore is already running, or
                a previous restore still awaits ``acknowledge_reload``
            FormatError: the envelope or its payload is malformed
            DecryptionError: the envelope cannot be decrypted
            BackupError: the safety snapshot failed
        """
        options = options or RestoreOptions()
        if self.phase == RestorePhase.AWAITING_RELOAD:
            self.logger.warning("Restore refused, previous restore awaits reload")
            raise OperationInProgressError("restore", "reload after restore")

        with self.guard.hold(OperationKind.RESTORE):
            try:
                self.phase = RestorePhase.VALIDATING
                payload = await asyncio.to_thread(
                    self.codec.open, envelope, options.password
                )
                self._validate(payload)

                safety_record = None
                if not options.skip_safety_backup:
                    self.phase = RestorePhase.SAFETY_SNAPSHOT
                    safety_record = await self._take_safety_snapshot(options)

                self.phase = RestorePhase.APPLYING
                await self.state_store.replace(payload.data)
            except Exception as e:
                self.logger.error(
                    "Restore aborted",
                    phase=self.phase.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                self.phase = RestorePhase.IDLE
                raise

            self.phase = RestorePhase.AWAITING_RELOAD

        self.logger.info(
            "Backup restored, reload required",
            backup_timestamp=payload.timestamp.isoformat(),
            safety_record=safety_record.id if safety_record else None,
        )
        return RestoreResult(
            success=True,
            timestamp=payload.timestamp,
            requires_reload=True,
            safety_record=safety_record,
        )

    async def restore_from_backend(
        self,
        backend_id: str,
        file_id: str,
        options: RestoreOptions | None = None,
    ) -> RestoreResult:
        """Download an envelope from a registered backend and restore it.

        Raises:
            ProviderError: the download failed or timed out
        """
        self.logger.info("Downloading backup", backend=backend_id, file_id=file_id)
        envelope = await self.registry.download(backend_id, file_id)
        return await self.restore(envelope, options)

    def acknowledge_reload(self) -> None:
        """The caller reloaded after a restore; further restores are accepted again."""
        if self.phase == RestorePhase.AWAITING_RELOAD:
            self.phase = RestorePhase.IDLE

    def _validate(self, payload: BackupPayload) -> None:
        if not payload.version:
            raise FormatError("Invalid backup file format: missing version")
        if payload.data is None:
            raise FormatError("Invalid backup file format: missing data")
        if payload.version.split(".")[0] != PAYLOAD_VERSION.split(".")[0]:
            raise FormatError(f"Unsupported backup version: {payload.version}")

    async def _take_safety_snapshot(self, options: RestoreOptions) -> BackupRecord | None:
        try:
            return await self.backups.snapshot_before_restore(
                encryption_enabled=options.safety_encryption_enabled,
                password=options.password,
            )
        except NoDataError:
            self.logger.info("No current state to protect, skipping safety backup")
            return None
