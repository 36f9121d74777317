"""
Calibration of the belt's force range.

The user breathes normally for a fixed window while readings are buffered.
The buffer's min, max and mean become the CalibrationProfile the breath
processor normalizes against.
"""

import asyncio
import logging
import time

from collections.abc import Callable, Sequence

import numpy as np

from kasina_breath.config import CalibrationSettings
from kasina_breath.constants import CalibrationConstants as CC
from kasina_breath.protocol.types import ForceReading
from kasina_breath.signal.types import CalibrationFailure, CalibrationProfile

logger = logging.getLogger(__name__)


def build_profile(
    forces: Sequence[float] | np.ndarray,
    min_samples: int = CC.MIN_SAMPLES,
    min_force_range: float = CC.MIN_FORCE_RANGE,
) -> CalibrationProfile:
    """
    Compute a calibration profile from buffered force values.

    Never raises: too few samples or too narrow a spread produce a profile
    with is_valid=False.

    Args:
        forces: Force readings in Newtons
        min_samples: Readings required for a valid profile
        min_force_range: Spread (N) that must be exceeded for a valid profile

    Returns:
        CalibrationProfile
    """
    values = np.asarray(forces, dtype=float)
    if values.size == 0:
        return CalibrationProfile(
            min_force=0.0,
            max_force=0.0,
            baseline_force=0.0,
            force_range=0.0,
            sample_count=0,
            is_valid=False,
        )

    min_force = float(np.min(values))
    max_force = float(np.max(values))
    force_range = max_force - min_force

    return CalibrationProfile(
        min_force=min_force,
        max_force=max_force,
        baseline_force=float(np.mean(values)),
        force_range=force_range,
        sample_count=int(values.size),
        is_valid=bool(values.size >= min_samples and force_range > min_force_range),
    )


class CalibrationEngine:
    """
    Buffers readings for one calibration window at a time.

    Starting a new calibration discards any calibration in progress.
    """

    def __init__(
        self,
        settings: CalibrationSettings | None = None,
        *,
        on_complete: Callable[[CalibrationProfile], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or CalibrationSettings()
        self.on_complete = on_complete
        self._clock = clock

        self._forces: list[float] = []
        self._started_at: float | None = None
        self.duration_seconds = self.settings.duration_seconds
        self.is_calibrating = False
        self.profile: CalibrationProfile | None = None
        self._run = 0
        self._finished_run = -1

    @property
    def sample_count(self) -> int:
        return len(self._forces)

    @property
    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return self._clock() - self._started_at

    @property
    def progress(self) -> float:
        """Fraction of the calibration window elapsed, in [0, 1]."""
        if not self.is_calibrating:
            return 0.0
        return min(max(self.elapsed / self.duration_seconds, 0.0), 1.0)

    def start_calibration(self, duration_seconds: float | None = None) -> None:
        if self.is_calibrating:
            logger.info(
                f"Restarting calibration, discarding {len(self._forces)} buffered samples"
            )

        self._run += 1
        self._forces = []
        self.duration_seconds = duration_seconds or self.settings.duration_seconds
        self._started_at = self._clock()
        self.is_calibrating = True
        logger.info(f"Calibration started ({self.duration_seconds:.0f}s)")

    def cancel(self) -> None:
        """Abandon the calibration in progress without producing a profile."""
        if self.is_calibrating:
            logger.info("Calibration cancelled")
        self.is_calibrating = False
        self._forces = []
        self._started_at = None

    def on_sample(self, reading: ForceReading) -> CalibrationProfile | None:
        """
        Buffer a reading while calibrating.

        Returns:
            The finished profile when this reading closes the window,
            otherwise None
        """
        if not self.is_calibrating:
            return None

        self._forces.append(reading.value)
        if (
            self.elapsed >= self.duration_seconds
            or len(self._forces) >= self.settings.max_samples
        ):
            return self.finalize()
        return None

    def finalize(self) -> CalibrationProfile:
        """Close the window and compute the profile from the buffer."""
        profile = build_profile(
            self._forces, self.settings.min_samples, self.settings.min_force_range
        )
        self.is_calibrating = False
        self._forces = []
        self._started_at = None
        self.profile = profile
        self._finished_run = self._run

        if profile.is_valid:
            logger.info(
                f"Calibration complete: {profile.min_force:.3f}-{profile.max_force:.3f} N "
                f"(baseline {profile.baseline_force:.3f} N, {profile.sample_count} samples)"
            )
        else:
            logger.warning(
                f"Calibration invalid: {self.failure_reason(profile).value} "
                f"({profile.sample_count} samples, range {profile.force_range:.3f} N)"
            )

        if self.on_complete is not None:
            self.on_complete(profile)
        return profile

    def failure_reason(self, profile: CalibrationProfile) -> CalibrationFailure | None:
        if profile.is_valid:
            return None
        if profile.sample_count < self.settings.min_samples:
            return CalibrationFailure.INSUFFICIENT_SAMPLES
        return CalibrationFailure.INSUFFICIENT_RANGE

    async def countdown(
        self,
        tick: float = CC.COUNTDOWN_TICK_SECONDS,
        on_tick: Callable[[float], None] | None = None,
    ) -> CalibrationProfile | None:
        """
        Drive the calibration window on a timer.

        Finalizes when the window elapses even if readings stopped arriving.

        Args:
            tick: Seconds between progress reports
            on_tick: Called with progress (0-1) on every tick

        Returns:
            The resulting profile, or None if the calibration was cancelled
        """
        run = self._run
        while self.is_calibrating and self._run == run:
            if on_tick is not None:
                on_tick(self.progress)

            remaining = self.duration_seconds - self.elapsed
            if remaining <= 0:
                return self.finalize()
            await asyncio.sleep(min(tick, remaining))

        return self.profile if self._finished_run == run else None
