"""Session recovery type definitions."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from kasina_breath.constants import KasinaType


class SessionStatus(str, Enum):
    """Lifecycle of a single meditation session."""

    NONE = "none"
    ACTIVE = "active"
    CHECKPOINT = "checkpoint"
    COMPLETING = "completing"
    SAVED = "saved"
    QUEUED_FOR_RETRY = "queued_for_retry"


class ActiveSession(BaseModel):
    """The in-progress session. At most one exists at a time."""

    model_config = ConfigDict(frozen=True)

    session_id: str = Field(min_length=1)
    kasina_type: KasinaType
    start_time: datetime
    last_update: datetime
    duration_seconds: int = Field(ge=0, description="Elapsed seconds at last_update")


class FailedSessionRecord(ActiveSession):
    """A completed session whose save failed, waiting for retry."""

    failed_at: datetime


class EmergencyCheckpoint(BaseModel):
    """Last-moment snapshot written when the process is about to die."""

    model_config = ConfigDict(frozen=True)

    session_id: str = Field(min_length=1)
    kasina_type: KasinaType
    duration_seconds: int = Field(ge=0)
    timestamp: datetime
    reason: str = ""


class RecoveryReport(BaseModel):
    """What startup recovery did."""

    emergency_saved: bool = False
    emergency_discarded: bool = False
    active_recovered: bool = False
    active_discarded: bool = False
    retried_saved: int = 0
    retry_pending: int = 0

    @property
    def anything_done(self) -> bool:
        return (
            self.emergency_saved
            or self.emergency_discarded
            or self.active_recovered
            or self.active_discarded
            or self.retried_saved > 0
        )
