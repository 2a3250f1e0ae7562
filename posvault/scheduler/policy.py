"""
Due-check arithmetic for automatic backups.

Everything here is pure: the current time comes in as an argument, nothing is
read from a clock or from storage.
"""

from datetime import datetime, time, timedelta

from posvault.models import Frequency
from posvault.scheduler.config import SchedulerConfig

HOURLY_PERIOD = timedelta(hours=1)
WEEKLY_PERIOD = timedelta(days=7)
MONTHLY_PERIOD = timedelta(days=30)

_FIXED_PERIODS = {
    Frequency.HOURLY: HOURLY_PERIOD,
    Frequency.WEEKLY: WEEKLY_PERIOD,
    Frequency.MONTHLY: MONTHLY_PERIOD,
}


def parse_time_of_day(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def _as_local_to(value: datetime, reference: datetime) -> datetime:
    if value.tzinfo is None or reference.tzinfo is None:
        return value
    return value.astimezone(reference.tzinfo)


def should_backup_now(
    now: datetime, last_backup_time: datetime | None, config: SchedulerConfig
) -> bool:
    """Whether an automatic backup is due at ``now``.

    - never backed up: always due
    - hourly, weekly, monthly: at least 1h, 7d or 30d since the last backup
    - daily: the calendar date changed since the last backup and the
      configured time of day has been reached
    """
    if last_backup_time is None:
        return True

    if config.frequency == Frequency.DAILY:
        last = _as_local_to(last_backup_time, now)
        target = parse_time_of_day(config.time)
        return now.date() != last.date() and now.time() >= target

    return now - last_backup_time >= _FIXED_PERIODS[config.frequency]


def wake_interval(frequency: Frequency) -> timedelta:
    """How often a running scheduler wakes up to run the due-check"""
    if frequency in (Frequency.HOURLY, Frequency.DAILY):
        return timedelta(hours=1)
    return timedelta(hours=24)


def next_backup_time(
    last_backup_time: datetime | None, config: SchedulerConfig, now: datetime
) -> datetime | None:
    """Earliest time the due-check will pass, ``None`` when disabled.

    The result is an estimate for display: the scheduler only notices it at
    its next wake-up.
    """
    if not config.enabled:
        return None
    if last_backup_time is None:
        return now

    if should_backup_now(now, last_backup_time, config):
        return now

    if config.frequency == Frequency.DAILY:
        last = _as_local_to(last_backup_time, now)
        day = max(last.date() + timedelta(days=1), now.date())
        return datetime.combine(day, parse_time_of_day(config.time), tzinfo=now.tzinfo)

    return last_backup_time + _FIXED_PERIODS[config.frequency]
