"""
Backup, restore and history
"""

from posvault.backup.codec import BackupCodec, derive_key
from posvault.backup.guard import OperationGuard, OperationKind
from posvault.backup.history import HistoryLedger
from posvault.backup.orchestrator import BackupOrchestrator
from posvault.backup.restore import RestoreOrchestrator, RestorePhase

__all__ = [
    # envelopes
    "BackupCodec",
    "derive_key",
    # runs
    "BackupOrchestrator",
    "RestoreOrchestrator",
    "RestorePhase",
    "OperationGuard",
    "OperationKind",
    # history
    "HistoryLedger",
]
