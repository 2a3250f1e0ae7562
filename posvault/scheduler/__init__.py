"""Automatic backup scheduling."""

from posvault.scheduler.config import BackendSelection, SchedulerConfig
from posvault.scheduler.policy import (
    next_backup_time,
    parse_time_of_day,
    should_backup_now,
    wake_interval,
)
from posvault.scheduler.scheduler import (
    BackupScheduler,
    ScheduledRunResult,
    SchedulerStatus,
)

__all__ = [
    "BackendSelection",
    "BackupScheduler",
    "ScheduledRunResult",
    "SchedulerConfig",
    "SchedulerStatus",
    "next_backup_time",
    "parse_time_of_day",
    "should_backup_now",
    "wake_interval",
]
