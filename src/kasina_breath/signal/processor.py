"""
Breath signal derivation from calibrated force readings.

Three independent pieces, composed by BreathSignalProcessor:

- normalize: force to a 0-1 amplitude using the calibration range
- PhaseClassifier: hysteretic inhale/exhale detection on the amplitude
- RateEstimator: breaths per minute from force peaks in a sliding window
"""

import logging
import math

from collections import deque

import numpy as np

from numpy.lib.stride_tricks import sliding_window_view

from kasina_breath.config import SignalSettings
from kasina_breath.constants import BreathSignalConstants as BSC
from kasina_breath.constants import SECONDS_PER_MINUTE
from kasina_breath.protocol.types import ForceReading
from kasina_breath.signal.types import BreathPhase, BreathState, CalibrationProfile

logger = logging.getLogger(__name__)


def normalize(value: float, profile: CalibrationProfile) -> float:
    """
    Map a force onto [0, 1] using the profile's range.

    Values outside the calibrated range are clamped. A zero range (or a
    non-finite value) yields 0.
    """
    if profile.force_range <= 0 or not math.isfinite(value):
        return 0.0
    return float(np.clip((value - profile.min_force) / profile.force_range, 0.0, 1.0))


class PhaseClassifier:
    """
    Hysteretic breath phase detector.

    Amplitude above the inhale threshold switches to INHALE, below the exhale
    threshold to EXHALE. Inside the band the previous phase is kept, so noise
    around the midpoint never causes flapping. Starts at PAUSE.
    """

    def __init__(
        self,
        inhale_threshold: float = BSC.INHALE_THRESHOLD,
        exhale_threshold: float = BSC.EXHALE_THRESHOLD,
    ):
        if exhale_threshold >= inhale_threshold:
            raise ValueError("exhale_threshold must be below inhale_threshold")
        self.inhale_threshold = inhale_threshold
        self.exhale_threshold = exhale_threshold
        self.phase = BreathPhase.PAUSE

    def update(self, amplitude: float) -> BreathPhase:
        if amplitude > self.inhale_threshold:
            self.phase = BreathPhase.INHALE
        elif amplitude < self.exhale_threshold:
            self.phase = BreathPhase.EXHALE
        return self.phase

    def reset(self) -> None:
        self.phase = BreathPhase.PAUSE


def count_peaks(
    forces: np.ndarray,
    threshold: float,
    neighborhood: int = BSC.PEAK_NEIGHBORHOOD,
) -> int:
    """
    Count breath peaks in a force series.

    A peak is a sample >= every sample within +/- neighborhood (only samples
    with a full neighborhood qualify) and strictly above threshold. Runs of
    adjacent peak samples (plateaus) count once.

    Args:
        forces: 1D force series in Newtons
        threshold: Minimum force for a peak (baseline + margin)
        neighborhood: Samples on each side that must not exceed the peak

    Returns:
        Number of distinct peaks
    """
    span = 2 * neighborhood + 1
    if forces.size < span:
        return 0

    windows = sliding_window_view(forces, span)
    centers = forces[neighborhood:-neighborhood]
    is_peak = (centers >= windows.max(axis=1)) & (centers > threshold)

    indices = np.flatnonzero(is_peak)
    if indices.size == 0:
        return 0
    return int(1 + np.count_nonzero(np.diff(indices) > 1))


class RateEstimator:
    """
    Breathing rate over a sliding time window.

    Rate is peaks * 60 / span of the window, rounded. Until the window holds
    min_samples readings, or while all readings share one timestamp, the
    previous rate is kept.
    """

    def __init__(
        self,
        window_seconds: float = BSC.RATE_WINDOW_SECONDS,
        neighborhood: int = BSC.PEAK_NEIGHBORHOOD,
        margin: float = BSC.PEAK_MARGIN,
        min_samples: int = BSC.MIN_RATE_SAMPLES,
        baseline: float = 0.0,
    ):
        self.window_seconds = window_seconds
        self.neighborhood = neighborhood
        self.margin = margin
        self.min_samples = min_samples
        self.baseline = baseline
        self.rate = 0
        self._samples: deque[tuple[float, float]] = deque()

    def __len__(self) -> int:
        return len(self._samples)

    def reset(self, baseline: float | None = None) -> None:
        self._samples.clear()
        self.rate = 0
        if baseline is not None:
            self.baseline = baseline

    def add(self, force: float, timestamp: float) -> int:
        """Add a reading, evict readings older than the window, return the rate."""
        self._samples.append((timestamp, force))
        cutoff = timestamp - self.window_seconds
        while self._samples and self._samples[0][0] < cutoff:
            self._samples.popleft()

        if len(self._samples) < self.min_samples:
            return self.rate

        samples = np.asarray(self._samples, dtype=float)
        span = samples[-1, 0] - samples[0, 0]
        if span <= 0:
            return self.rate

        peaks = count_peaks(samples[:, 1], self.baseline + self.margin, self.neighborhood)
        self.rate = int(round(peaks * SECONDS_PER_MINUTE / span))
        return self.rate


class BreathSignalProcessor:
    """
    Turns force readings into BreathState once a valid profile is set.

    Example:
        >>> processor = BreathSignalProcessor(settings.signal)
        >>> processor.set_profile(profile)
        >>> state = processor.process(reading)
        >>> print(state.phase, state.rate)
    """

    def __init__(
        self,
        settings: SignalSettings | None = None,
        profile: CalibrationProfile | None = None,
    ):
        self.settings = settings or SignalSettings()
        self.phase_classifier = PhaseClassifier(
            self.settings.inhale_threshold, self.settings.exhale_threshold
        )
        self.rate_estimator = RateEstimator(
            window_seconds=self.settings.rate_window_seconds,
            neighborhood=self.settings.peak_neighborhood,
            margin=self.settings.peak_margin,
            min_samples=self.settings.min_rate_samples,
        )
        self.profile: CalibrationProfile | None = None
        self.state: BreathState | None = None
        if profile is not None:
            self.set_profile(profile)

    def set_profile(self, profile: CalibrationProfile) -> None:
        """Replace the profile and restart phase and rate tracking."""
        self.profile = profile
        self.phase_classifier.reset()
        self.rate_estimator.reset(baseline=profile.baseline_force)
        self.state = None

    def clear_profile(self) -> None:
        self.profile = None
        self.phase_classifier.reset()
        self.rate_estimator.reset()
        self.state = None

    def process(self, reading: ForceReading) -> BreathState | None:
        """
        Derive the breath state for one reading.

        Returns:
            BreathState, or None while no valid profile is set
        """
        if self.profile is None or not self.profile.is_valid:
            return None

        amplitude = normalize(reading.value, self.profile)
        phase = self.phase_classifier.update(amplitude)
        rate = self.rate_estimator.add(reading.value, reading.timestamp)

        self.state = BreathState(
            amplitude=amplitude, phase=phase, rate=rate, timestamp=reading.timestamp
        )
        return self.state
