"""Capped FIFO of sessions whose save failed."""

import logging

from kasina_breath.constants import RecoveryConstants as RC
from kasina_breath.sessions.store import RecoveryStore
from kasina_breath.sessions.types import FailedSessionRecord

logger = logging.getLogger(__name__)


class FailedSessionQueue:
    """
    Retry queue backed by a RecoveryStore.

    Entries are kept oldest first. When the cap is exceeded the oldest
    entries are dropped.
    """

    def __init__(self, store: RecoveryStore, max_entries: int = RC.FAILED_QUEUE_LIMIT):
        if max_entries < 1:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        self.store = store
        self.max_entries = max_entries

    def __len__(self) -> int:
        return len(self.store.load_failed())

    def list(self) -> list[FailedSessionRecord]:
        return self.store.load_failed()

    def insert(self, record: FailedSessionRecord) -> None:
        records = self.store.load_failed()
        records.append(record)

        overflow = len(records) - self.max_entries
        if overflow > 0:
            dropped = records[:overflow]
            records = records[overflow:]
            logger.warning(
                f"Failed-session queue full, dropping {len(dropped)} oldest: "
                + ", ".join(r.session_id for r in dropped)
            )

        self.store.save_failed(records)

    def peek(self) -> FailedSessionRecord | None:
        """Return the oldest record without removing it."""
        records = self.store.load_failed()
        return records[0] if records else None

    def remove(self, session_id: str) -> bool:
        """
        Remove a record by session id.

        Returns:
            True if a record was removed
        """
        records = self.store.load_failed()
        kept = [r for r in records if r.session_id != session_id]
        if len(kept) == len(records):
            return False
        self.store.save_failed(kept)
        return True

    def clear(self) -> int:
        """Remove every record. Returns the number removed."""
        count = len(self.store.load_failed())
        self.store.save_failed([])
        return count
