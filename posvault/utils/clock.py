"""Time source used by schedulers and orchestrators."""

import asyncio
from datetime import datetime
from typing import Protocol


class Clock(Protocol):
    """Source of the current time and of suspension between ticks"""

    def now(self) -> datetime: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Wall clock in the local timezone."""

    def now(self) -> datetime:
        return datetime.now().astimezone()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


def ensure_aware(value: datetime) -> datetime:
    """Attach the local timezone to naive datetimes"""
    if value.tzinfo is None:
        return value.astimezone()
    return value
