"""
SQLAlchemy ORM models for the kasina-breath database.

Defines the durable recovery records and stored calibrations:
- active_sessions / emergency_checkpoints: single keyed slot each
- failed_sessions: ordered retry queue
- calibration_profiles: latest valid profile per belt
"""

from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

CURRENT_SLOT = "current"


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


def utc_now() -> datetime:
    """Return current UTC timestamp for database defaults."""
    return datetime.now(UTC)


class ActiveSessionSlot(Base):
    """The in-progress session. Only the CURRENT_SLOT row is ever used."""

    __tablename__ = "active_sessions"

    slot: Mapped[str] = mapped_column(String(20), primary_key=True, default=CURRENT_SLOT)
    session_id: Mapped[str] = mapped_column(String(64))
    kasina_type: Mapped[str] = mapped_column(String(32))
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    last_update: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    duration_seconds: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        CheckConstraint("duration_seconds >= 0", name="chk_active_duration"),
    )

    def __repr__(self) -> str:
        return f"<ActiveSessionSlot(session_id={self.session_id}, duration={self.duration_seconds}s)>"


class FailedSession(Base):
    """A session whose save failed, waiting for retry. Ordered by id."""

    __tablename__ = "failed_sessions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(64), unique=True)
    kasina_type: Mapped[str] = mapped_column(String(32))
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    last_update: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    duration_seconds: Mapped[int] = mapped_column(Integer)
    failed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        CheckConstraint("duration_seconds >= 0", name="chk_failed_duration"),
    )

    def __repr__(self) -> str:
        return f"<FailedSession(session_id={self.session_id}, duration={self.duration_seconds}s)>"


class EmergencyCheckpointSlot(Base):
    """Last-moment snapshot. Only the CURRENT_SLOT row is ever used."""

    __tablename__ = "emergency_checkpoints"

    slot: Mapped[str] = mapped_column(String(20), primary_key=True, default=CURRENT_SLOT)
    session_id: Mapped[str] = mapped_column(String(64))
    kasina_type: Mapped[str] = mapped_column(String(32))
    duration_seconds: Mapped[int] = mapped_column(Integer)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    reason: Mapped[str] = mapped_column(Text, default="")

    def __repr__(self) -> str:
        return f"<EmergencyCheckpointSlot(session_id={self.session_id}, reason={self.reason})>"


class StoredCalibration(Base):
    """Latest valid calibration profile for one belt."""

    __tablename__ = "calibration_profiles"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    device_name: Mapped[str] = mapped_column(String(100), unique=True)
    min_force: Mapped[float] = mapped_column(Float)
    max_force: Mapped[float] = mapped_column(Float)
    baseline_force: Mapped[float] = mapped_column(Float)
    force_range: Mapped[float] = mapped_column(Float)
    sample_count: Mapped[int] = mapped_column(Integer)
    is_valid: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("length(device_name) > 0", name="chk_device_name"),
        CheckConstraint("max_force >= min_force", name="chk_force_order"),
    )

    def __repr__(self) -> str:
        return f"<StoredCalibration(device={self.device_name}, range={self.force_range:.3f})>"
