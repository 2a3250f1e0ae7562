"""Tests for the automatic backup due-check"""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from posvault.models import Frequency
from posvault.scheduler.config import SchedulerConfig
from posvault.scheduler.policy import (
    next_backup_time,
    parse_time_of_day,
    should_backup_now,
    wake_interval,
)

LAST = datetime(2025, 3, 9, 2, 30, tzinfo=UTC)


def _config(frequency: Frequency, time: str = "02:00", enabled: bool = True):
    return SchedulerConfig(enabled=enabled, frequency=frequency, time=time)


@pytest.mark.parametrize("frequency", list(Frequency))
def test_never_backed_up_is_always_due(frequency: Frequency) -> None:
    assert should_backup_now(LAST, None, _config(frequency)) is True


@pytest.mark.parametrize(
    "frequency, elapsed, expected",
    [
        (Frequency.HOURLY, timedelta(minutes=59), False),
        (Frequency.HOURLY, timedelta(hours=1), True),
        (Frequency.WEEKLY, timedelta(days=6, hours=23), False),
        (Frequency.WEEKLY, timedelta(days=7), True),
        (Frequency.MONTHLY, timedelta(days=29, hours=23), False),
        (Frequency.MONTHLY, timedelta(days=30), True),
    ],
)
def test_fixed_period_frequencies(
    frequency: Frequency, elapsed: timedelta, expected: bool
) -> None:
    assert should_backup_now(LAST + elapsed, LAST, _config(frequency)) is expected


@pytest.mark.parametrize(
    "now, expected",
    [
        # same calendar day, even long after the target time
        (datetime(2025, 3, 9, 23, 0, tzinfo=UTC), False),
        # next day, before the target time
        (datetime(2025, 3, 10, 1, 59, tzinfo=UTC), False),
        # next day, exactly at the target time
        (datetime(2025, 3, 10, 2, 0, tzinfo=UTC), True),
        # next day, later
        (datetime(2025, 3, 10, 14, 0, tzinfo=UTC), True),
        # several days later, before the target time
        (datetime(2025, 3, 12, 1, 0, tzinfo=UTC), False),
    ],
)
def test_daily_requires_new_date_and_target_time(now: datetime, expected: bool) -> None:
    assert should_backup_now(now, LAST, _config(Frequency.DAILY)) is expected


def test_daily_compares_dates_in_the_local_timezone() -> None:
    tokyo = timezone(timedelta(hours=9))
    last = datetime(2025, 3, 9, 16, 0, tzinfo=UTC)  # 2025-03-10 01:00 in Tokyo
    now = datetime(2025, 3, 10, 2, 30, tzinfo=tokyo)

    assert should_backup_now(now, last, _config(Frequency.DAILY)) is False
    assert should_backup_now(now + timedelta(days=1), last, _config(Frequency.DAILY))


@pytest.mark.parametrize(
    "frequency, expected",
    [
        (Frequency.HOURLY, timedelta(hours=1)),
        (Frequency.DAILY, timedelta(hours=1)),
        (Frequency.WEEKLY, timedelta(hours=24)),
        (Frequency.MONTHLY, timedelta(hours=24)),
    ],
)
def test_wake_interval(frequency: Frequency, expected: timedelta) -> None:
    assert wake_interval(frequency) == expected


def test_parse_time_of_day() -> None:
    assert parse_time_of_day("07:45").hour == 7
    assert parse_time_of_day("07:45").minute == 45


def test_next_backup_time_disabled_is_none() -> None:
    config = _config(Frequency.DAILY, enabled=False)

    assert next_backup_time(LAST, config, LAST) is None


def test_next_backup_time_without_history_is_now() -> None:
    now = datetime(2025, 3, 10, 9, 0, tzinfo=UTC)

    assert next_backup_time(None, _config(Frequency.WEEKLY), now) == now


def test_next_backup_time_daily_is_next_target_time() -> None:
    now = datetime(2025, 3, 9, 9, 0, tzinfo=UTC)

    assert next_backup_time(LAST, _config(Frequency.DAILY), now) == datetime(
        2025, 3, 10, 2, 0, tzinfo=UTC
    )


def test_next_backup_time_daily_after_missed_days_is_today() -> None:
    now = datetime(2025, 3, 12, 1, 0, tzinfo=UTC)

    assert next_backup_time(LAST, _config(Frequency.DAILY), now) == datetime(
        2025, 3, 12, 2, 0, tzinfo=UTC
    )


@pytest.mark.parametrize(
    "frequency, period",
    [
        (Frequency.HOURLY, timedelta(hours=1)),
        (Frequency.WEEKLY, timedelta(days=7)),
        (Frequency.MONTHLY, timedelta(days=30)),
    ],
)
def test_next_backup_time_fixed_periods(frequency: Frequency, period: timedelta) -> None:
    now = LAST + timedelta(minutes=5)

    assert next_backup_time(LAST, _config(frequency), now) == LAST + period


def test_config_rejects_malformed_time() -> None:
    with pytest.raises(ValueError):
        SchedulerConfig(time="25:00")
    with pytest.raises(ValueError):
        SchedulerConfig(time="7:5")


def test_config_requires_remote_backend_id() -> None:
    with pytest.raises(ValueError):
        SchedulerConfig(backend_selection={"local": True, "remote": True})


def test_config_destinations() -> None:
    config = SchedulerConfig(
        backend_selection={"local": True, "remote": True, "remote_backend_id": "s3"}
    )

    destinations = config.destinations()

    assert destinations.local is True
    assert destinations.remote == "s3"


def test_config_merge_keeps_password_and_validates() -> None:
    config = SchedulerConfig(password="hunter22")

    merged = config.merged(frequency="weekly", max_backups=3)

    assert merged.frequency == Frequency.WEEKLY
    assert merged.max_backups == 3
    assert merged.password_value() == "hunter22"
    assert "password" not in merged.to_json()
    with pytest.raises(ValueError):
        config.merged(max_backups=0)


@pytest.mark.parametrize(
    "frequency, last, now, expected",
    [
        (
            Frequency.HOURLY,
            datetime(2025, 3, 10, 8, 0, tzinfo=UTC) - timedelta(minutes=1),
            datetime(2025, 3, 10, 9, 0, tzinfo=UTC),
            True,
        ),
        (
            Frequency.HOURLY,
            datetime(2025, 3, 10, 8, 1, tzinfo=UTC),
            datetime(2025, 3, 10, 9, 0, tzinfo=UTC),
            False,
        ),
        (
            Frequency.DAILY,
            datetime(2025, 3, 9, 1, 0, tzinfo=UTC),
            datetime(2025, 3, 10, 2, 5, tzinfo=UTC),
            True,
        ),
        (
            Frequency.DAILY,
            datetime(2025, 3, 9, 1, 0, tzinfo=UTC),
            datetime(2025, 3, 10, 1, 55, tzinfo=UTC),
            False,
        ),
    ],
)
def test_due_check_truth_table(
    frequency: Frequency, last: datetime, now: datetime, expected: bool
) -> None:
    assert should_backup_now(now, last, _config(frequency)) is expected
