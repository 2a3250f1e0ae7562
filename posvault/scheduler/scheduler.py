"""
Automatic backup scheduler.

A running scheduler wakes up periodically, asks the due-check whether a backup
is needed and, if so, runs one through the backup orchestrator. It never
raises to its caller: failures are logged and reported to the notifier, and
``last_backup_time`` only moves forward after a run in which every configured
destination succeeded, so the next tick retries.
"""

import asyncio
import contextlib
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from posvault.backup.history import HistoryLedger
from posvault.backup.orchestrator import BackupOrchestrator
from posvault.exceptions import OperationInProgressError, RetentionError
from posvault.models import BackupOptions, BackupRecord, DestinationResult, Frequency
from posvault.notifications import Notifier
from posvault.scheduler.config import SchedulerConfig
from posvault.scheduler.policy import next_backup_time, should_backup_now, wake_interval
from posvault.storage.backends.registry import BackendRegistry
from posvault.storage.kv import KeyValueStore
from posvault.utils.clock import Clock, ensure_aware
from posvault.utils.error_handler import safe_operation
from posvault.utils.mixins import LoggerMixin


@dataclass
class ScheduledRunResult:
    """Outcome of one scheduled or forced backup run."""

    success: bool
    skipped: bool = False
    results: list[DestinationResult] = field(default_factory=list)
    error: str | None = None
    pruned: list[BackupRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "skipped": self.skipped,
            "results": [r.to_dict() for r in self.results],
            "error": self.error,
            "pruned": [r.id for r in self.pruned],
        }


@dataclass
class SchedulerStatus:
    """Snapshot of the scheduler for display."""

    is_running: bool
    enabled: bool
    frequency: Frequency
    last_backup_time: datetime | None
    next_backup_time: datetime | None
    in_flight: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_running": self.is_running,
            "enabled": self.enabled,
            "frequency": self.frequency.value,
            "last_backup_time": (
                self.last_backup_time.isoformat() if self.last_backup_time else None
            ),
            "next_backup_time": (
                self.next_backup_time.isoformat() if self.next_backup_time else None
            ),
            "in_flight": self.in_flight,
        }


class BackupScheduler(LoggerMixin):
    """Runs automatic backups on the configured cadence."""

    def __init__(
        self,
        orchestrator: BackupOrchestrator,
        ledger: HistoryLedger,
        registry: BackendRegistry,
        store: KeyValueStore,
        clock: Clock,
        notifier: Notifier,
        config: SchedulerConfig | None = None,
        *,
        config_key: str = "auto-backup-config",
        last_backup_key: str = "last-auto-backup",
    ):
        self.orchestrator = orchestrator
        self.ledger = ledger
        self.registry = registry
        self.store = store
        self.clock = clock
        self.notifier = notifier
        self.config = config or SchedulerConfig()
        self.config_key = config_key
        self.last_backup_key = last_backup_key

        self.last_backup_time: datetime | None = None
        self._running = False
        self._loop_task: asyncio.Task | None = None
        self._tick_task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def load(self) -> None:
        """Restore the persisted configuration and last backup time."""
        raw_config = await self.store.get(self.config_key)
        if raw_config:
            try:
                loaded = SchedulerConfig.model_validate_json(raw_config)
                self.config = loaded.merged(password=self.config.password)
            except ValidationError as e:
                self.logger.error(
                    "Stored scheduler config is invalid, keeping defaults",
                    errors=e.error_count(),
                )

        raw_last = await self.store.get(self.last_backup_key)
        if raw_last:
            try:
                self.last_backup_time = ensure_aware(
                    datetime.fromisoformat(raw_last.strip().strip('"'))
                )
            except ValueError:
                self.logger.error("Stored last backup time is invalid, ignoring it")
                self.last_backup_time = None

        self.logger.info(
            "Scheduler state loaded",
            enabled=self.config.enabled,
            frequency=self.config.frequency.value,
            last_backup_time=(
                self.last_backup_time.isoformat() if self.last_backup_time else None
            ),
        )

    async def start(self) -> None:
        """Run an immediate due-check, then wake up on the configured cadence.

        Does nothing when already running or when automatic backups are
        disabled.
        """
        if self._running:
            return
        if not self.config.enabled:
            self.logger.info("Automatic backups are disabled, scheduler not started")
            return

        self._running = True
        self.logger.info(
            "Backup scheduler started",
            frequency=self.config.frequency.value,
            time=self.config.time,
        )
        await self.check_and_backup()
        if self._running:
            self._arm()

    async def stop(self) -> None:
        """Cancel future wake-ups. A run already in progress completes."""
        if not self._running:
            return
        self._running = False
        await self._disarm()
        self.logger.info("Backup scheduler stopped")

    async def wait_idle(self) -> None:
        """Wait for an in-progress scheduled run, if any"""
        if self._tick_task is not None and not self._tick_task.done():
            with contextlib.suppress(Exception):
                await self._tick_task

    def _arm(self) -> None:
        self._loop_task = asyncio.create_task(self._run_loop())

    async def _disarm(self) -> None:
        task, self._loop_task = self._loop_task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run_loop(self) -> None:
        interval = wake_interval(self.config.frequency)
        while True:
            await self.clock.sleep(interval.total_seconds())
            self._tick_task = asyncio.create_task(self.check_and_backup())
            # cancelling the loop must not cancel a run that already started
            await asyncio.shield(self._tick_task)

    async def check_and_backup(self) -> ScheduledRunResult | None:
        """Back up if due. Returns ``None`` when nothing was due."""
        now = self.clock.now()
        if not self.config.enabled:
            return None
        if not should_backup_now(now, self.last_backup_time, self.config):
            self.logger.debug(
                "No backup due",
                now=now.isoformat(),
                frequency=self.config.frequency.value,
            )
            return None
        return await self._execute_backup(now, reason="scheduled")

    async def force_backup(self) -> ScheduledRunResult:
        """Run an automatic backup now, regardless of the due-check."""
        return await self._execute_backup(self.clock.now(), reason="forced")

    async def _execute_backup(self, now: datetime, reason: str) -> ScheduledRunResult:
        config = self.config
        options = BackupOptions(
            encryption_enabled=config.encryption_enabled,
            password=config.password_value(),
            auto_backup=True,
            frequency=config.frequency,
        )
        self.logger.info("Automatic backup starting", reason=reason)

        try:
            results = await self.orchestrator.run_backup(config.destinations(), options)
        except OperationInProgressError as e:
            self.logger.warning("Automatic backup skipped", reason=reason, error=str(e))
            return ScheduledRunResult(success=False, skipped=True, error=str(e))
        except Exception as e:
            self.logger.error(
                "Automatic backup failed",
                reason=reason,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self._notify_failure(f"Automatic backup failed: {e}", reason=reason)
            return ScheduledRunResult(success=False, error=str(e))

        failed = [r for r in results if not r.success]
        if failed:
            error = "; ".join(f"{r.backend_id}: {r.error}" for r in failed)
            self.logger.error(
                "Automatic backup failed for some destinations",
                reason=reason,
                failed=[r.backend_id for r in failed],
            )
            await self._notify_failure(
                f"Automatic backup failed: {error}",
                reason=reason,
                failed=[r.backend_id for r in failed],
            )
            return ScheduledRunResult(success=False, results=results, error=error)

        self.last_backup_time = now
        await self._persist_last_backup_time()

        pruned = await self.cleanup_old_backups()
        await self._notify_success(
            "Automatic backup completed",
            reason=reason,
            records=[r.record.id for r in results if r.record],
        )
        return ScheduledRunResult(success=True, results=results, pruned=pruned)

    async def cleanup_old_backups(self) -> list[BackupRecord]:
        """Keep only the ``max_backups`` most recent automatic backups.

        Failures are logged and an empty list is returned.
        """
        try:
            pruned = await self.ledger.prune_auto_backups(self.config.max_backups)
        except RetentionError as e:
            self.logger.error("Backup retention cleanup failed", error=str(e))
            return []

        if self.config.purge_pruned_files:
            for record in pruned:
                await self._purge_file(record)
        return pruned

    @safe_operation("delete pruned backup file")
    async def _purge_file(self, record: BackupRecord) -> None:
        if not record.file_id:
            return
        await self.registry.delete(record.backend_id, record.file_id)
        self.logger.debug(
            "Pruned backup file deleted",
            backend=record.backend_id,
            file_id=record.file_id,
        )

    @safe_operation("persist last backup time")
    async def _persist_last_backup_time(self) -> None:
        if self.last_backup_time is None:
            return
        await self.store.set(self.last_backup_key, self.last_backup_time.isoformat())

    async def update_config(self, **partial: Any) -> SchedulerConfig:
        """Validate and apply a partial configuration update.

        The wake-up loop is started, stopped or rearmed as needed;
        ``last_backup_time`` is kept.

        Raises:
            ValidationError: the merged configuration is invalid
        """
        previous = self.config
        self.config = previous.merged(**partial)
        await self.store.set(self.config_key, self.config.to_json())
        self.logger.info(
            "Scheduler config updated",
            fields=sorted(partial),
            enabled=self.config.enabled,
            frequency=self.config.frequency.value,
        )

        if not self.config.enabled:
            await self.stop()
        elif not self._running:
            await self.start()
        elif wake_interval(previous.frequency) != wake_interval(self.config.frequency):
            await self._disarm()
            self._arm()
        return self.config

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            is_running=self._running,
            enabled=self.config.enabled,
            frequency=self.config.frequency,
            last_backup_time=self.last_backup_time,
            next_backup_time=next_backup_time(
                self.last_backup_time, self.config, self.clock.now()
            ),
            in_flight=self.orchestrator.guard.is_busy(),
        )

    @safe_operation("deliver backup notification")
    async def _notify_success(self, message: str, **context: Any) -> None:
        await self.notifier.success(message, **context)

    @safe_operation("deliver backup notification")
    async def _notify_failure(self, message: str, **context: Any) -> None:
        await self.notifier.failure(message, **context)
