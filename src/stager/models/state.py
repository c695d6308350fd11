"""Persistent records kept in the state directory.

These files live outside the stage directory so they survive its deletion:
    <state_dir>/lock.json            LockRecord
    <state_dir>/stage.json           StageRecord
    <state_dir>/destroyed.json       DestroyedStageLog
    <state_dir>/failure_marker.json  FailureMarkerRecord
    <state_dir>/last_operation.json  OperationRecord
    <state_dir>/status_check.json    StoredStatusCheck
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from stager.models.status import PhaseEnum, StageType
from stager.models.validation import ValidationResult


class LockRecord(BaseModel):
    """Ownership lock admitting at most one stage system-wide."""

    token: str = Field(..., min_length=1, description="Opaque ownership token (stage id)")
    owner: str = Field(..., min_length=1, description="Owner fingerprint")
    created_at: datetime = Field(default_factory=datetime.now)


class StageRecord(BaseModel):
    """The unit of work: one isolated copy of the active directory."""

    id: str = Field(..., description="Stage id, equal to the lock token")
    directory: str = Field(..., description="Absolute path of the stage directory")
    phase: PhaseEnum = Field(default=PhaseEnum.CREATED)
    owner: str = Field(..., description="Owner fingerprint that created the stage")
    type: StageType = Field(default=StageType.ATTENDED)
    package_versions: dict[str, dict[str, str]] = Field(
        default_factory=lambda: {"production": {}, "dev": {}},
        description="Requested constraints keyed by group then package name",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class DestroyedStage(BaseModel):
    token: str
    reason: str
    destroyed_at: datetime = Field(default_factory=datetime.now)


class DestroyedStageLog(BaseModel):
    """Recently destroyed tokens, newest last."""

    entries: list[DestroyedStage] = Field(default_factory=list)

    def find(self, token: str) -> Optional[DestroyedStage]:
        for entry in self.entries:
            if entry.token == token:
                return entry
        return None


class FailureMarkerRecord(BaseModel):
    """Written before apply touches the active directory, cleared after."""

    message: str = Field(..., min_length=1)
    stage_id: Optional[str] = None
    trace: Optional[str] = Field(None, description="Traceback of the interrupting error")
    created_at: datetime = Field(default_factory=datetime.now)


class OperationRecord(BaseModel):
    """Outcome of the last operation started from an outer surface."""

    operation: str
    phase: Optional[PhaseEnum] = None
    success: bool
    message: str
    kind: Optional[str] = None
    finished_at: datetime = Field(default_factory=datetime.now)


class StoredStatusCheck(BaseModel):
    """Cached results of the last status check."""

    results: list[ValidationResult] = Field(default_factory=list)
    stage_type: StageType = StageType.ATTENDED
    checked_at: datetime = Field(default_factory=datetime.now)
