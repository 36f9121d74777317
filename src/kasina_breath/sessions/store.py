"""
Storage backends for session recovery records.

The recovery manager only talks to a RecoveryStore, so the same logic runs
against SQLite in the CLI and against memory in tests.
"""

from abc import ABC, abstractmethod

from kasina_breath.sessions.types import (
    ActiveSession,
    EmergencyCheckpoint,
    FailedSessionRecord,
)


class RecoveryStore(ABC):
    """
    Durable home of the three recovery records.

    The active session and the emergency checkpoint are single slots that are
    overwritten; failed sessions are an ordered list, oldest first.
    """

    @abstractmethod
    def load_active(self) -> ActiveSession | None: ...

    @abstractmethod
    def save_active(self, session: ActiveSession) -> None: ...

    @abstractmethod
    def clear_active(self) -> None: ...

    @abstractmethod
    def load_emergency(self) -> EmergencyCheckpoint | None: ...

    @abstractmethod
    def save_emergency(self, checkpoint: EmergencyCheckpoint) -> None: ...

    @abstractmethod
    def clear_emergency(self) -> None: ...

    @abstractmethod
    def load_failed(self) -> list[FailedSessionRecord]:
        """Return failed records, oldest first."""

    @abstractmethod
    def save_failed(self, records: list[FailedSessionRecord]) -> None:
        """Replace the failed list with records."""


class MemoryRecoveryStore(RecoveryStore):
    """In-process store. Nothing survives a restart."""

    def __init__(self) -> None:
        self.active: ActiveSession | None = None
        self.emergency: EmergencyCheckpoint | None = None
        self.failed: list[FailedSessionRecord] = []

    def load_active(self) -> ActiveSession | None:
        return self.active

    def save_active(self, session: ActiveSession) -> None:
        self.active = session

    def clear_active(self) -> None:
        self.active = None

    def load_emergency(self) -> EmergencyCheckpoint | None:
        return self.emergency

    def save_emergency(self, checkpoint: EmergencyCheckpoint) -> None:
        self.emergency = checkpoint

    def clear_emergency(self) -> None:
        self.emergency = None

    def load_failed(self) -> list[FailedSessionRecord]:
        return list(self.failed)

    def save_failed(self, records: list[FailedSessionRecord]) -> None:
        self.failed = list(records)
