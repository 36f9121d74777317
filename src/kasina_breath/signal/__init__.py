"""Calibration and breath signal derivation."""

from kasina_breath.signal.calibration import CalibrationEngine, build_profile
from kasina_breath.signal.monitor import BreathMonitor
from kasina_breath.signal.processor import (
    BreathSignalProcessor,
    PhaseClassifier,
    RateEstimator,
    count_peaks,
    normalize,
)
from kasina_breath.signal.types import (
    BreathPhase,
    BreathSignal,
    BreathState,
    CalibrationFailure,
    CalibrationProfile,
)

__all__ = [
    "BreathMonitor",
    "BreathPhase",
    "BreathSignal",
    "BreathSignalProcessor",
    "BreathState",
    "CalibrationEngine",
    "CalibrationFailure",
    "CalibrationProfile",
    "PhaseClassifier",
    "RateEstimator",
    "build_profile",
    "count_peaks",
    "normalize",
]
