"""Session lifecycle, durable recovery and the session API client."""

from kasina_breath.sessions.api import (
    SessionApiClient,
    build_session_payload,
    session_display_name,
)
from kasina_breath.sessions.queue import FailedSessionQueue
from kasina_breath.sessions.recovery import (
    SessionRecoveryManager,
    generate_session_id,
    round_to_minutes,
)
from kasina_breath.sessions.store import MemoryRecoveryStore, RecoveryStore
from kasina_breath.sessions.types import (
    ActiveSession,
    EmergencyCheckpoint,
    FailedSessionRecord,
    RecoveryReport,
    SessionStatus,
)

__all__ = [
    "ActiveSession",
    "EmergencyCheckpoint",
    "FailedSessionQueue",
    "FailedSessionRecord",
    "MemoryRecoveryStore",
    "RecoveryReport",
    "RecoveryStore",
    "SessionApiClient",
    "SessionRecoveryManager",
    "SessionStatus",
    "build_session_payload",
    "generate_session_id",
    "round_to_minutes",
    "session_display_name",
]
