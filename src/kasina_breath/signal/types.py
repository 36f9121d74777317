"""Signal pipeline type definitions."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class BreathPhase(str, Enum):
    INHALE = "inhale"
    EXHALE = "exhale"
    PAUSE = "pause"


class CalibrationFailure(str, Enum):
    """Why a calibration produced an invalid profile."""

    INSUFFICIENT_SAMPLES = "insufficient_samples"
    INSUFFICIENT_RANGE = "insufficient_range"


class CalibrationProfile(BaseModel):
    """
    Per-user force range captured during calibration.

    A new calibration replaces the previous profile wholesale; profiles are
    never merged.
    """

    model_config = ConfigDict(frozen=True)

    min_force: float = Field(description="Lowest force seen (N)")
    max_force: float = Field(description="Highest force seen (N)")
    baseline_force: float = Field(description="Mean force (N)")
    force_range: float = Field(ge=0, description="max_force - min_force (N)")
    sample_count: int = Field(ge=0, description="Readings the profile was built from")
    is_valid: bool = Field(description="Whether the profile may drive the processor")

    @model_validator(mode="after")
    def _check_range(self) -> "CalibrationProfile":
        if abs(self.force_range - (self.max_force - self.min_force)) > 1e-9:
            raise ValueError("force_range must equal max_force - min_force")
        return self


class BreathState(BaseModel):
    """Derived breathing signal for one force reading."""

    model_config = ConfigDict(frozen=True)

    amplitude: float = Field(ge=0.0, le=1.0, description="Normalized force")
    phase: BreathPhase
    rate: int = Field(ge=0, description="Breaths per minute")
    timestamp: float = Field(description="Timestamp of the source reading")


class BreathSignal(BaseModel):
    """Snapshot of everything the presentation layer reads."""

    model_config = ConfigDict(frozen=True)

    amplitude: float = 0.0
    phase: BreathPhase = BreathPhase.PAUSE
    rate: int = 0
    is_connected: bool = False
    calibration_progress: float = Field(default=0.0, ge=0.0, le=1.0)
    current_force: float | None = None
    needs_calibration: bool = True
