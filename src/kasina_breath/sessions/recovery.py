"""
Session recovery manager.

Keeps a durable record of the running session so a crash, a closed terminal
or a failed network call never loses meditation time:

- the active session is checkpointed every 30 s
- an emergency checkpoint can be written synchronously on shutdown signals
- sessions whose save failed are queued and retried on the next start

Durations are always saved rounded down to whole minutes; anything shorter
than one minute is discarded.
"""

import asyncio
import logging
import secrets

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from kasina_breath.config import RecoverySettings
from kasina_breath.constants import (
    MILLISECONDS_PER_SECOND,
    SECONDS_PER_MINUTE,
    KasinaType,
)
from kasina_breath.exceptions import SessionAlreadyActiveError
from kasina_breath.sessions.queue import FailedSessionQueue
from kasina_breath.sessions.store import RecoveryStore
from kasina_breath.sessions.types import (
    ActiveSession,
    EmergencyCheckpoint,
    FailedSessionRecord,
    RecoveryReport,
    SessionStatus,
)

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def generate_session_id(now: datetime) -> str:
    """Return an id of the form session_<epoch ms>_<9 hex chars>."""
    epoch_ms = int(now.timestamp() * MILLISECONDS_PER_SECOND)
    return f"session_{epoch_ms}_{secrets.token_hex(5)[:9]}"


def round_to_minutes(duration_seconds: float) -> int:
    """Round a duration down to whole minutes, in seconds."""
    seconds = max(0, int(duration_seconds))
    return (seconds // SECONDS_PER_MINUTE) * SECONDS_PER_MINUTE


class SessionRecoveryManager:
    """
    Owns the lifecycle of one meditation session at a time.

    Example:
        >>> manager = SessionRecoveryManager(store, api_client, settings.recovery)
        >>> report = await manager.check_for_recovery()
        >>> manager.start_session(KasinaType.BREATH)
        >>> ...
        >>> saved = await manager.complete_session()
    """

    def __init__(
        self,
        store: RecoveryStore,
        api: Any,
        settings: RecoverySettings | None = None,
        *,
        clock: Callable[[], datetime] = _utc_now,
    ):
        """
        Args:
            store: Durable home of the recovery records
            api: Object with an async save_session(kasina_type,
                duration_seconds, timestamp) -> bool
            settings: Checkpoint interval, staleness windows and queue cap
            clock: Source of timezone-aware "now"
        """
        self.store = store
        self.api = api
        self.settings = settings or RecoverySettings()
        self.queue = FailedSessionQueue(store, self.settings.failed_queue_limit)
        self._clock = clock

        self.status = SessionStatus.NONE
        self.current_session: ActiveSession | None = None
        self._checkpoint_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start_session(self, kasina_type: KasinaType | str) -> str:
        """
        Begin tracking a new session and persist it immediately.

        Returns:
            The new session id

        Raises:
            SessionAlreadyActiveError: If a session is already running or an
                unrecovered one is still on record
            ValueError: If kasina_type is not a known practice type
        """
        kasina_type = KasinaType(kasina_type)
        if self.current_session is not None:
            raise SessionAlreadyActiveError(self.current_session.session_id)

        stored = self._load_active()
        if stored is not None:
            raise SessionAlreadyActiveError(stored.session_id)

        now = self._clock()
        session = ActiveSession(
            session_id=generate_session_id(now),
            kasina_type=kasina_type,
            start_time=now,
            last_update=now,
            duration_seconds=0,
        )
        self.current_session = session
        self.status = SessionStatus.ACTIVE
        self._persist_active(session)
        self._start_checkpoints()

        logger.info(f"Session started: {session.session_id} ({kasina_type.value})")
        return session.session_id

    def update_session(self, duration_seconds: int) -> None:
        """Refresh the durable record with the caller's elapsed time."""
        session = self.current_session
        if session is None:
            return

        updated = session.model_copy(
            update={
                "duration_seconds": max(0, int(duration_seconds)),
                "last_update": self._clock(),
            }
        )
        self.current_session = updated
        self._persist_active(updated)

    def checkpoint(self) -> None:
        """Record the elapsed time since start. Called by the periodic timer."""
        session = self.current_session
        if session is None:
            return

        elapsed = self._elapsed_seconds(session)
        self.update_session(elapsed)
        self.status = SessionStatus.CHECKPOINT
        logger.debug(f"Session checkpoint: {elapsed}s elapsed")

    async def complete_session(self, final_duration_seconds: int | None = None) -> bool:
        """
        Finish the current session and save it.

        Args:
            final_duration_seconds: Duration to record. Defaults to the time
                elapsed since start.

        Returns:
            True if saved, or discarded for being under one minute. False if
            there was no session, or the save failed and it was queued.
        """
        session = self.current_session
        if session is None:
            return False

        self._stop_checkpoints()
        self.status = SessionStatus.COMPLETING
        self.current_session = None

        if final_duration_seconds is None:
            final_duration_seconds = self._elapsed_seconds(session)
        rounded = round_to_minutes(final_duration_seconds)

        logger.info(
            f"Completing session {session.session_id}: {final_duration_seconds}s "
            f"(rounded to {rounded // SECONDS_PER_MINUTE} minutes)"
        )

        if rounded < self.settings.min_session_seconds:
            logger.info(f"Session too short ({final_duration_seconds}s), not saving")
            self._clear_active()
            self._clear_emergency_for(session.session_id)
            self.status = SessionStatus.NONE
            return True

        saved = await self._save(session.kasina_type, rounded, session.start_time)
        if saved:
            self._clear_active()
            self._clear_emergency_for(session.session_id)
            self.status = SessionStatus.SAVED
            return True

        # The active record stays until the retry record is durable
        if self._enqueue(session, rounded):
            self._clear_active()
            self._clear_emergency_for(session.session_id)
        else:
            self._persist_active(
                session.model_copy(
                    update={"last_update": self._clock(), "duration_seconds": rounded}
                )
            )
        self.status = SessionStatus.QUEUED_FOR_RETRY
        return False

    def abandon_session(self) -> None:
        """Drop the current session without saving it."""
        session = self.current_session
        self._stop_checkpoints()
        self.current_session = None
        self._clear_active()
        self.status = SessionStatus.NONE
        if session is not None:
            self._clear_emergency_for(session.session_id)
            logger.info(f"Session abandoned: {session.session_id}")

    def emergency_checkpoint(self, reason: str = "") -> EmergencyCheckpoint | None:
        """
        Synchronously snapshot the running session.

        Safe to call from signal handlers and shutdown hooks: it never awaits
        and never raises. Overwrites any previous emergency checkpoint.

        Returns:
            The checkpoint written, or None if no session is running
        """
        session = self.current_session
        if session is None:
            return None

        now = self._clock()
        checkpoint = EmergencyCheckpoint(
            session_id=session.session_id,
            kasina_type=session.kasina_type,
            duration_seconds=self._elapsed_seconds(session, now),
            timestamp=now,
            reason=reason,
        )
        try:
            self.store.save_emergency(checkpoint)
            logger.info(
                f"Emergency checkpoint: {checkpoint.duration_seconds}s ({reason or 'unspecified'})"
            )
        except Exception as e:
            logger.error(f"Could not write emergency checkpoint: {e}")
        return checkpoint

    def stop(self) -> None:
        """Cancel the checkpoint timer. The durable record is left in place."""
        self._stop_checkpoints()

    # ------------------------------------------------------------------
    # Startup recovery
    # ------------------------------------------------------------------

    async def check_for_recovery(self) -> RecoveryReport:
        """
        Save whatever a previous run left behind.

        Runs three independent steps; a failure in one is logged and does not
        stop the others:

        1. A fresh emergency checkpoint is saved, a stale one discarded
        2. A fresh interrupted session is completed, a stale one discarded
        3. Every queued failed session is retried

        Returns:
            RecoveryReport describing what was done
        """
        report = RecoveryReport()
        handled_session_id: str | None = None
        queued_now: set[str] = set()

        try:
            handled_session_id = await self._recover_emergency(report, queued_now)
        except Exception:
            logger.exception("Emergency checkpoint recovery failed")

        try:
            await self._recover_active(report, handled_session_id, queued_now)
        except Exception:
            logger.exception("Interrupted session recovery failed")

        try:
            report.retried_saved = await self.retry_failed_sessions(skip=queued_now)
        except Exception:
            logger.exception("Failed-session retry failed")

        try:
            report.retry_pending = len(self.queue)
        except Exception:
            logger.exception("Could not count failed-session queue")

        if report.anything_done:
            logger.info(f"Recovery complete: {report.model_dump()}")
        return report

    async def _recover_emergency(
        self, report: RecoveryReport, queued_now: set[str]
    ) -> str | None:
        checkpoint = self.store.load_emergency()
        if checkpoint is None:
            return None

        now = self._clock()
        age = (now - checkpoint.timestamp).total_seconds()
        rounded = round_to_minutes(checkpoint.duration_seconds)

        if age > self.settings.emergency_stale_seconds:
            logger.info(f"Discarding stale emergency checkpoint ({age:.0f}s old)")
            report.emergency_discarded = True
        elif rounded < self.settings.min_session_seconds:
            logger.info(
                f"Discarding short emergency checkpoint ({checkpoint.duration_seconds}s)"
            )
            report.emergency_discarded = True
        else:
            start_time = checkpoint.timestamp - timedelta(
                seconds=checkpoint.duration_seconds
            )
            if await self._save(checkpoint.kasina_type, rounded, start_time):
                report.emergency_saved = True
            else:
                self.queue.insert(
                    FailedSessionRecord(
                        session_id=checkpoint.session_id,
                        kasina_type=checkpoint.kasina_type,
                        start_time=start_time,
                        last_update=checkpoint.timestamp,
                        duration_seconds=rounded,
                        failed_at=now,
                    )
                )
                queued_now.add(checkpoint.session_id)

        self.store.clear_emergency()
        return checkpoint.session_id

    async def _recover_active(
        self,
        report: RecoveryReport,
        handled_session_id: str | None,
        queued_now: set[str],
    ) -> None:
        session = self.store.load_active()
        if session is None:
            return

        live = self.current_session
        if live is not None and live.session_id == session.session_id:
            return

        if session.session_id == handled_session_id:
            logger.info(f"Session {session.session_id} already recovered from checkpoint")
            self.store.clear_active()
            return

        now = self._clock()
        age = (now - session.last_update).total_seconds()
        if age > self.settings.active_stale_seconds:
            logger.info(f"Discarding stale session {session.session_id} ({age:.0f}s old)")
            self.store.clear_active()
            report.active_discarded = True
            return

        elapsed = max(
            session.duration_seconds,
            int((session.last_update - session.start_time).total_seconds()),
        )
        rounded = round_to_minutes(elapsed)
        logger.info(
            f"Recovering interrupted session {session.session_id}: {elapsed}s "
            f"({rounded // SECONDS_PER_MINUTE} minutes)"
        )

        if rounded < self.settings.min_session_seconds:
            self.store.clear_active()
            report.active_discarded = True
            return

        if await self._save(session.kasina_type, rounded, session.start_time):
            self.store.clear_active()
            report.active_recovered = True
        elif self._enqueue(session, rounded):
            self.store.clear_active()
            queued_now.add(session.session_id)

    async def retry_failed_sessions(self, skip: set[str] | None = None) -> int:
        """
        Retry every queued session once; successes leave the queue.

        Args:
            skip: Session ids not to retry on this pass

        Returns:
            Number of sessions saved
        """
        skip = skip or set()
        saved_count = 0
        for record in self.queue.list():
            if record.session_id in skip:
                continue
            if await self._save(record.kasina_type, record.duration_seconds, record.start_time):
                self.queue.remove(record.session_id)
                saved_count += 1

        if saved_count:
            logger.info(f"Retried {saved_count} failed session(s) successfully")
        return saved_count

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _elapsed_seconds(
        self, session: ActiveSession, now: datetime | None = None
    ) -> int:
        now = now or self._clock()
        return max(0, int((now - session.start_time).total_seconds()))

    async def _save(
        self, kasina_type: KasinaType, duration_seconds: int, timestamp: datetime
    ) -> bool:
        try:
            return bool(await self.api.save_session(kasina_type, duration_seconds, timestamp))
        except Exception as e:
            logger.warning(f"Session save raised: {e}")
            return False

    def _enqueue(self, session: ActiveSession, rounded_duration: int) -> bool:
        """Queue a session for retry. Returns False if the queue write failed."""
        record = FailedSessionRecord(
            **session.model_dump(exclude={"duration_seconds"}),
            duration_seconds=rounded_duration,
            failed_at=self._clock(),
        )
        try:
            self.queue.insert(record)
        except Exception as e:
            logger.error(f"Could not queue session {record.session_id} for retry: {e}")
            return False
        logger.info(
            f"Session stored for retry: {record.kasina_type.value} ({rounded_duration}s)"
        )
        return True

    def _start_checkpoints(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.info("No running event loop; periodic checkpoints disabled")
            return
        self._checkpoint_task = loop.create_task(self._checkpoint_loop())

    async def _checkpoint_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.checkpoint_interval)
            self.checkpoint()

    def _stop_checkpoints(self) -> None:
        if self._checkpoint_task is not None and not self._checkpoint_task.done():
            self._checkpoint_task.cancel()
        self._checkpoint_task = None

    def _load_active(self) -> ActiveSession | None:
        try:
            return self.store.load_active()
        except Exception as e:
            logger.warning(f"Could not read active session record: {e}")
            return None

    def _persist_active(self, session: ActiveSession) -> None:
        try:
            self.store.save_active(session)
        except Exception as e:
            logger.warning(f"Could not persist active session: {e}")

    def _clear_active(self) -> None:
        try:
            self.store.clear_active()
        except Exception as e:
            logger.warning(f"Could not clear active session record: {e}")

    def _clear_emergency_for(self, session_id: str) -> None:
        try:
            checkpoint = self.store.load_emergency()
            if checkpoint is not None and checkpoint.session_id == session_id:
                self.store.clear_emergency()
        except Exception as e:
            logger.warning(f"Could not clear emergency checkpoint: {e}")
