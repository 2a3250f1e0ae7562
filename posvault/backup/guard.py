"""In-flight tracking for backup and restore runs."""

from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum

from posvault.exceptions import OperationInProgressError
from posvault.utils.mixins import LoggerMixin


class OperationKind(str, Enum):
    """Operation classes that touch the persisted state and the history."""

    BACKUP = "backup"
    RESTORE = "restore"


class OperationGuard(LoggerMixin):
    """One in-flight flag per operation class.

    Backup and restore are mutually exclusive, and neither may overlap with
    itself. The check and the flag update happen without an ``await`` in
    between, so on a single event loop two callers can never both enter.
    """

    def __init__(self) -> None:
        self._in_flight: dict[OperationKind, bool] = dict.fromkeys(OperationKind, False)

    def active(self) -> OperationKind | None:
        for kind, running in self._in_flight.items():
            if running:
                return kind
        return None

    def is_busy(self, kind: OperationKind | None = None) -> bool:
        if kind is None:
            return self.active() is not None
        return self._in_flight[kind]

    @contextmanager
    def hold(self, kind: OperationKind) -> Iterator[None]:
        """Mark ``kind`` as running for the duration of the block.

        Raises:
            OperationInProgressError: any backup or restore is already running
        """
        active = self.active()
        if active is not None:
            self.logger.warning(
                "Rejected overlapping operation",
                operation=kind.value,
                active=active.value,
            )
            raise OperationInProgressError(kind.value, active.value)

        self._in_flight[kind] = True
        try:
            yield
        finally:
            self._in_flight[kind] = False
