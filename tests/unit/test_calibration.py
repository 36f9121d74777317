"""
Unit tests for calibration.

Tests cover:
- Profile statistics and validity rules
- Window completion by time and by sample cap
- Restart, cancel and the countdown driver
"""

import asyncio

import numpy as np
import pytest

from pydantic import ValidationError

from kasina_breath.config import CalibrationSettings
from kasina_breath.protocol.types import ForceReading
from kasina_breath.signal.calibration import CalibrationEngine, build_profile
from kasina_breath.signal.types import CalibrationFailure, CalibrationProfile
from tests.helpers.fakes import FakeClock
from tests.helpers.synthetic_data import generate_breathing_force


def reading(value: float, timestamp: float = 0.0) -> ForceReading:
    return ForceReading(value=value, timestamp=timestamp)


class TestBuildProfile:
    """Test profile statistics."""

    def test_statistics_from_breathing(self):
        _, forces = generate_breathing_force(duration=20.0, baseline=5.0, amplitude=1.0)

        profile = build_profile(forces)

        assert profile.is_valid
        assert profile.sample_count == 200
        assert profile.min_force == pytest.approx(4.0, abs=0.01)
        assert profile.max_force == pytest.approx(6.0, abs=0.01)
        assert profile.baseline_force == pytest.approx(5.0, abs=0.01)
        assert profile.force_range == pytest.approx(profile.max_force - profile.min_force)

    def test_empty_buffer_is_invalid(self):
        profile = build_profile([])

        assert not profile.is_valid
        assert profile.sample_count == 0
        assert profile.force_range == 0.0

    def test_too_few_samples_is_invalid(self):
        profile = build_profile(np.linspace(4.0, 6.0, 49))

        assert not profile.is_valid
        assert profile.sample_count == 49

    def test_flat_signal_is_invalid(self):
        profile = build_profile(np.full(100, 5.0))

        assert not profile.is_valid
        assert profile.force_range == 0.0

    def test_range_must_exceed_minimum(self):
        """The spread must be strictly greater than the minimum."""
        forces = np.array([5.0, 5.1] * 50)

        assert not build_profile(forces, min_force_range=0.25).is_valid
        assert build_profile(forces, min_force_range=0.05).is_valid

    def test_profile_rejects_inconsistent_range(self):
        with pytest.raises(ValidationError):
            CalibrationProfile(
                min_force=1.0,
                max_force=3.0,
                baseline_force=2.0,
                force_range=1.0,
                sample_count=10,
                is_valid=True,
            )


class TestCalibrationEngine:
    """Test the calibration window."""

    @pytest.fixture
    def clock(self):
        return FakeClock(start=0.0)

    @pytest.fixture
    def engine(self, clock):
        return CalibrationEngine(
            CalibrationSettings(duration_seconds=20.0, min_samples=10, max_samples=500),
            clock=clock,
        )

    def feed(self, engine, clock, forces, interval=0.125):
        result = None
        for force in forces:
            clock.advance(interval)
            result = engine.on_sample(reading(float(force), clock.now)) or result
        return result

    def test_ignores_samples_when_idle(self, engine):
        assert engine.on_sample(reading(5.0)) is None
        assert engine.sample_count == 0

    def test_completes_when_window_elapses(self, engine, clock):
        completed = []
        engine.on_complete = completed.append
        engine.start_calibration()

        _, forces = generate_breathing_force(duration=25.0)
        profile = self.feed(engine, clock, forces)

        assert profile is not None
        assert profile.is_valid
        assert completed == [profile]
        assert not engine.is_calibrating
        assert engine.profile == profile

    def test_completes_at_sample_cap(self, clock):
        engine = CalibrationEngine(
            CalibrationSettings(duration_seconds=60.0, min_samples=10, max_samples=50),
            clock=clock,
        )
        engine.start_calibration()

        profile = self.feed(engine, clock, np.linspace(4.0, 6.0, 50), interval=0.01)

        assert profile is not None
        assert profile.sample_count == 50

    def test_progress(self, engine, clock):
        assert engine.progress == 0.0

        engine.start_calibration()
        clock.advance(5.0)
        assert engine.progress == pytest.approx(0.25)

        clock.advance(100.0)
        assert engine.progress == 1.0

    def test_restart_discards_buffer(self, engine, clock):
        engine.start_calibration()
        self.feed(engine, clock, [5.0] * 5)
        assert engine.sample_count == 5

        engine.start_calibration()

        assert engine.sample_count == 0
        assert engine.is_calibrating
        assert engine.elapsed == 0.0

    def test_custom_duration(self, engine, clock):
        engine.start_calibration(5.0)

        profile = self.feed(engine, clock, np.linspace(4.0, 6.0, 60))

        assert profile is not None
        assert profile.sample_count == 40

    def test_cancel_produces_no_profile(self, engine, clock):
        completed = []
        engine.on_complete = completed.append
        engine.start_calibration()
        self.feed(engine, clock, [5.0] * 5)

        engine.cancel()

        assert not engine.is_calibrating
        assert engine.sample_count == 0
        assert completed == []
        assert engine.profile is None

    def test_failure_reasons(self, engine, clock):
        engine.start_calibration()
        few = engine.finalize()
        assert engine.failure_reason(few) == CalibrationFailure.INSUFFICIENT_SAMPLES

        engine.start_calibration()
        self.feed(engine, clock, [5.0] * 20)
        flat = engine.finalize()
        assert engine.failure_reason(flat) == CalibrationFailure.INSUFFICIENT_RANGE

        engine.start_calibration()
        self.feed(engine, clock, np.linspace(4.0, 6.0, 20))
        good = engine.finalize()
        assert engine.failure_reason(good) is None


class TestCountdown:
    """Test the timer-driven completion."""

    def test_countdown_finalizes_without_samples(self):
        engine = CalibrationEngine(CalibrationSettings(duration_seconds=0.05))
        ticks = []

        async def run():
            engine.start_calibration()
            return await engine.countdown(tick=0.01, on_tick=ticks.append)

        profile = asyncio.run(run())

        assert profile is not None
        assert not profile.is_valid
        assert profile.sample_count == 0
        assert ticks
        assert all(0.0 <= t <= 1.0 for t in ticks)

    def test_countdown_returns_none_when_cancelled(self):
        engine = CalibrationEngine(CalibrationSettings(duration_seconds=5.0))

        async def run():
            engine.start_calibration()
            task = asyncio.create_task(engine.countdown(tick=0.01))
            await asyncio.sleep(0.03)
            engine.cancel()
            return await asyncio.wait_for(task, timeout=1.0)

        assert asyncio.run(run()) is None

    def test_countdown_returns_none_when_restarted(self):
        engine = CalibrationEngine(CalibrationSettings(duration_seconds=5.0))

        async def run():
            engine.start_calibration()
            task = asyncio.create_task(engine.countdown(tick=0.01))
            await asyncio.sleep(0.03)
            engine.start_calibration(0.02)
            engine.finalize()
            return await asyncio.wait_for(task, timeout=1.0)

        assert asyncio.run(run()) is None

    def test_countdown_returns_profile_finished_by_samples(self):
        clock = FakeClock(start=0.0)
        engine = CalibrationEngine(
            CalibrationSettings(duration_seconds=10.0, min_samples=10, max_samples=20),
            clock=clock,
        )

        async def run():
            engine.start_calibration()
            task = asyncio.create_task(engine.countdown(tick=0.01))
            await asyncio.sleep(0)
            for force in np.linspace(4.0, 6.0, 20):
                engine.on_sample(reading(float(force)))
            return await asyncio.wait_for(task, timeout=1.0)

        profile = asyncio.run(run())

        assert profile is not None
        assert profile.is_valid
        assert profile.sample_count == 20
