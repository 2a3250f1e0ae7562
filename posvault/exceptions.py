"""Errors raised by the backup subsystem."""


class BackupError(Exception):
    """Base class for backup, restore and scheduling failures"""


class NoDataError(BackupError):
    """There is no application state to snapshot"""


class FormatError(BackupError):
    """An envelope or payload is malformed or uses an unknown format"""


class EncryptionError(BackupError):
    """Sealing a payload failed"""


class DecryptionError(BackupError):
    """Opening an envelope failed, e.g. authentication tag mismatch"""


class ProviderError(BackupError):
    """A storage backend failed, timed out or is not registered"""

    def __init__(self, backend_id: str, cause: BaseException | str):
        self.backend_id = backend_id
        self.cause = cause
        detail = cause if isinstance(cause, str) else f"{type(cause).__name__}: {cause}"
        super().__init__(f"Backend '{backend_id}' failed: {detail}")


class RetentionError(BackupError):
    """Retention cleanup could not complete"""


class OperationInProgressError(BackupError):
    """A conflicting backup or restore is already running"""

    def __init__(self, operation: str, active: str):
        self.operation = operation
        self.active = active
        super().__init__(f"Cannot start {operation}: {active} already in progress")
