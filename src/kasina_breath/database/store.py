"""SQLite-backed stores for recovery records and calibration profiles."""

import logging

from datetime import UTC, datetime

from pydantic import ValidationError
from sqlalchemy import delete, select

from kasina_breath.database import models
from kasina_breath.database.models import CURRENT_SLOT
from kasina_breath.database.session import Database
from kasina_breath.sessions.store import RecoveryStore
from kasina_breath.sessions.types import (
    ActiveSession,
    EmergencyCheckpoint,
    FailedSessionRecord,
)
from kasina_breath.signal.types import CalibrationProfile

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    """SQLite keeps no tzinfo, so values are written and read back as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class DatabaseRecoveryStore(RecoveryStore):
    """RecoveryStore persisted in the kasina-breath SQLite database."""

    def __init__(self, database: Database):
        self.database = database

    def load_active(self) -> ActiveSession | None:
        with self.database.session_scope() as session:
            row = session.get(models.ActiveSessionSlot, CURRENT_SLOT)
            if row is None:
                return None
            try:
                return ActiveSession(
                    session_id=row.session_id,
                    kasina_type=row.kasina_type,
                    start_time=_as_utc(row.start_time),
                    last_update=_as_utc(row.last_update),
                    duration_seconds=row.duration_seconds,
                )
            except ValidationError as e:
                logger.warning(f"Discarding unreadable active session {row.session_id}: {e}")
                session.delete(row)
                return None

    def save_active(self, active: ActiveSession) -> None:
        with self.database.session_scope() as session:
            session.merge(
                models.ActiveSessionSlot(
                    slot=CURRENT_SLOT,
                    session_id=active.session_id,
                    kasina_type=active.kasina_type.value,
                    start_time=_as_utc(active.start_time),
                    last_update=_as_utc(active.last_update),
                    duration_seconds=active.duration_seconds,
                )
            )

    def clear_active(self) -> None:
        with self.database.session_scope() as session:
            session.execute(delete(models.ActiveSessionSlot))

    def load_emergency(self) -> EmergencyCheckpoint | None:
        with self.database.session_scope() as session:
            row = session.get(models.EmergencyCheckpointSlot, CURRENT_SLOT)
            if row is None:
                return None
            try:
                return EmergencyCheckpoint(
                    session_id=row.session_id,
                    kasina_type=row.kasina_type,
                    duration_seconds=row.duration_seconds,
                    timestamp=_as_utc(row.timestamp),
                    reason=row.reason or "",
                )
            except ValidationError as e:
                logger.warning(
                    f"Discarding unreadable emergency checkpoint {row.session_id}: {e}"
                )
                session.delete(row)
                return None

    def save_emergency(self, checkpoint: EmergencyCheckpoint) -> None:
        with self.database.session_scope() as session:
            session.merge(
                models.EmergencyCheckpointSlot(
                    slot=CURRENT_SLOT,
                    session_id=checkpoint.session_id,
                    kasina_type=checkpoint.kasina_type.value,
                    duration_seconds=checkpoint.duration_seconds,
                    timestamp=_as_utc(checkpoint.timestamp),
                    reason=checkpoint.reason,
                )
            )

    def clear_emergency(self) -> None:
        with self.database.session_scope() as session:
            session.execute(delete(models.EmergencyCheckpointSlot))

    def load_failed(self) -> list[FailedSessionRecord]:
        records = []
        with self.database.session_scope() as session:
            rows = session.scalars(
                select(models.FailedSession).order_by(models.FailedSession.id)
            ).all()
            for row in rows:
                try:
                    records.append(
                        FailedSessionRecord(
                            session_id=row.session_id,
                            kasina_type=row.kasina_type,
                            start_time=_as_utc(row.start_time),
                            last_update=_as_utc(row.last_update),
                            duration_seconds=row.duration_seconds,
                            failed_at=_as_utc(row.failed_at),
                        )
                    )
                except ValidationError as e:
                    logger.warning(f"Skipping unreadable failed session {row.session_id}: {e}")
        return records

    def save_failed(self, records: list[FailedSessionRecord]) -> None:
        with self.database.session_scope() as session:
            session.execute(delete(models.FailedSession))
            # flush the delete before re-inserting the same unique session ids
            session.flush()
            for record in records:
                session.add(
                    models.FailedSession(
                        session_id=record.session_id,
                        kasina_type=record.kasina_type.value,
                        start_time=_as_utc(record.start_time),
                        last_update=_as_utc(record.last_update),
                        duration_seconds=record.duration_seconds,
                        failed_at=_as_utc(record.failed_at),
                    )
                )


class CalibrationProfileStore:
    """Latest valid calibration profile per belt name."""

    def __init__(self, database: Database):
        self.database = database

    def load(self, device_name: str) -> CalibrationProfile | None:
        with self.database.session_scope() as session:
            row = session.scalars(
                select(models.StoredCalibration).filter_by(device_name=device_name)
            ).first()
            if row is None:
                return None
            return CalibrationProfile(
                min_force=row.min_force,
                max_force=row.max_force,
                baseline_force=row.baseline_force,
                force_range=row.force_range,
                sample_count=row.sample_count,
                is_valid=row.is_valid,
            )

    def save(self, device_name: str, profile: CalibrationProfile) -> bool:
        """
        Store a profile, replacing the previous one for this belt.

        Returns:
            False if the profile was invalid and therefore not stored
        """
        if not profile.is_valid:
            logger.debug(f"Not storing invalid calibration for {device_name}")
            return False

        with self.database.session_scope() as session:
            row = session.scalars(
                select(models.StoredCalibration).filter_by(device_name=device_name)
            ).first()
            if row is None:
                row = models.StoredCalibration(device_name=device_name)
                session.add(row)

            row.min_force = profile.min_force
            row.max_force = profile.max_force
            row.baseline_force = profile.baseline_force
            row.force_range = profile.force_range
            row.sample_count = profile.sample_count
            row.is_valid = profile.is_valid

        logger.debug(f"Stored calibration for {device_name}")
        return True
