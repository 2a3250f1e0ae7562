"""Automatic backup configuration."""

import re
from typing import Any

from pydantic import Field, SecretStr, field_validator, model_validator

from posvault.models import BackupDestinations, Frequency, WireModel

_TIME_OF_DAY = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class BackendSelection(WireModel):
    """Which destinations an automatic backup writes to."""

    local: bool = True
    remote: bool = False
    remote_backend_id: str | None = None

    @model_validator(mode="after")
    def validate_selection(self) -> "BackendSelection":
        if not self.local and not self.remote:
            raise ValueError("At least one backup destination must be selected")
        if self.remote and not self.remote_backend_id:
            raise ValueError("remote_backend_id is required when remote is selected")
        return self


class SchedulerConfig(WireModel):
    """Persisted scheduler settings.

    ``password`` never leaves the process: it is excluded from serialization
    and has to be supplied again after a restart.
    """

    enabled: bool = False
    frequency: Frequency = Frequency.DAILY
    time: str = Field("02:00", description="Target time of day, HH:MM")
    backend_selection: BackendSelection = Field(default_factory=BackendSelection)
    encryption_enabled: bool = True
    max_backups: int = Field(10, ge=1)
    purge_pruned_files: bool = Field(
        True, description="Also delete the files of pruned automatic backups"
    )
    password: SecretStr | None = Field(None, exclude=True)

    @field_validator("time")
    @classmethod
    def validate_time(cls, v: str) -> str:
        if not _TIME_OF_DAY.match(v):
            raise ValueError(f"time must be HH:MM (got {v!r})")
        return v

    def destinations(self) -> BackupDestinations:
        selection = self.backend_selection
        return BackupDestinations(
            local=selection.local,
            remote=selection.remote_backend_id if selection.remote else None,
        )

    def password_value(self) -> str | None:
        return self.password.get_secret_value() if self.password else None

    def merged(self, **partial: Any) -> "SchedulerConfig":
        """Validated copy with ``partial`` applied on top of this config"""
        data = self.model_dump()
        if "backend_selection" in partial and isinstance(
            partial["backend_selection"], BackendSelection
        ):
            partial["backend_selection"] = partial["backend_selection"].model_dump()
        data.update(partial)
        if "password" not in partial:
            data["password"] = self.password
        return SchedulerConfig.model_validate(data)
