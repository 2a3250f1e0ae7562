"""Data models for backup, restore and history."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from posvault.exceptions import FormatError

PAYLOAD_VERSION = "1.0"
LOCAL_BACKEND_ID = "local"
PRE_RESTORE_LABEL = "preRestore"


class BackupType(str, Enum):
    """Where a backup was written."""

    LOCAL = "local"
    CLOUD = "cloud"


class Frequency(str, Enum):
    """Automatic backup cadence."""

    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class WireModel(BaseModel):
    """Immutable model serialized with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class PayloadMetadata(WireModel):
    """Metadata stored with every payload and copied into its history record."""

    model_config = ConfigDict(extra="allow")

    app_version: str = Field(..., description="Version of the app that wrote it")
    user_agent_info: str | None = None
    auto_backup: bool = False
    frequency: Frequency | None = None
    label: str | None = Field(None, description="e.g. preRestore")


class BackupPayload(WireModel):
    """Full application-state snapshot plus versioning, before sealing."""

    version: str
    timestamp: datetime
    type: BackupType
    provider: str | None = None
    data: Any
    metadata: PayloadMetadata


class Envelope(WireModel):
    """Sealed form of a payload as written to a file or a remote store."""

    encrypted: bool
    data: str | dict[str, Any]
    algorithm: str | None = None
    timestamp: datetime


class BackupRecord(WireModel):
    """History ledger entry. Never updated, only deleted."""

    id: str
    type: BackupType
    provider: str | None = None
    timestamp: datetime
    size_bytes: int = Field(..., ge=0)
    encrypted: bool
    file_id: str | None = Field(None, description="Id of the stored envelope")
    location: str | None = Field(None, description="Backend locator of the file")
    cloud_file_id: str | None = None
    cloud_url: str | None = None
    metadata: PayloadMetadata

    @property
    def auto_backup(self) -> bool:
        return self.metadata.auto_backup

    @property
    def backend_id(self) -> str:
        return self.provider or LOCAL_BACKEND_ID


@dataclass
class BackupDestinations:
    """Destinations for one backup run."""

    local: bool = True
    remote: str | None = None

    def targets(self) -> list[tuple[str, bool]]:
        """(backend id, is remote) pairs in write order"""
        targets = []
        if self.local:
            targets.append((LOCAL_BACKEND_ID, False))
        if self.remote:
            targets.append((self.remote, True))
        return targets


@dataclass
class BackupOptions:
    """Per-run options for the backup orchestrator."""

    encryption_enabled: bool = True
    password: str | None = field(default=None, repr=False)
    auto_backup: bool = False
    frequency: Frequency | None = None
    label: str | None = None
    name: str | None = None
    user_agent_info: str | None = None
    extra_metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class DestinationResult:
    """Outcome of writing one backup to one destination."""

    backend_id: str
    success: bool
    record: BackupRecord | None = None
    error: str | None = None
    exception: Exception | None = field(default=None, repr=False)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "backend_id": self.backend_id,
            "success": self.success,
            "record": self.record.to_wire() if self.record else None,
            "error": self.error,
        }


@dataclass
class RestoreOptions:
    """Options for a restore run."""

    skip_safety_backup: bool = False
    password: str | None = field(default=None, repr=False)
    safety_encryption_enabled: bool = True


@dataclass
class RestoreResult:
    """Result of a restore run."""

    success: bool
    timestamp: datetime
    requires_reload: bool = True
    safety_record: BackupRecord | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "timestamp": self.timestamp.isoformat(),
            "requires_reload": self.requires_reload,
            "safety_record": self.safety_record.to_wire() if self.safety_record else None,
        }


@dataclass
class BackupStats:
    """Aggregates over the history ledger."""

    total_backups: int = 0
    local_backups: int = 0
    cloud_backups: int = 0
    auto_backups: int = 0
    last_backup_time: datetime | None = None
    last_backup_size: int = 0
    total_storage_used: int = 0


@dataclass
class UploadResult:
    """What a backend returns after a confirmed write."""

    id: str
    locator: str


def parse_envelope(raw: Envelope | dict[str, Any] | str | bytes) -> Envelope:
    """Validate a raw document into an :class:`Envelope`.

    Raises:
        FormatError: the document is not a well formed envelope
    """
    if isinstance(raw, Envelope):
        return raw
    try:
        if isinstance(raw, (str, bytes)):
            return Envelope.model_validate_json(raw)
        return Envelope.model_validate(raw)
    except ValidationError as e:
        raise FormatError(f"Invalid backup envelope: {e.error_count()} error(s)") from e
