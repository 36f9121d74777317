"""
Synthetic test data generators for belt force signals and packets.

Provides functions to generate controlled, reproducible test data for unit testing.
"""

import struct

import numpy as np

from kasina_breath.protocol.types import ForceReading


def generate_breathing_force(
    breaths_per_minute: float = 12.0,
    duration: float = 60.0,
    sample_rate: float = 10.0,
    baseline: float = 5.0,
    amplitude: float = 1.0,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Generate a sinusoidal belt force signal.

    Args:
        breaths_per_minute: Breathing rate
        duration: Signal length in seconds
        sample_rate: Sample rate in Hz
        baseline: Resting force in Newtons
        amplitude: Peak deviation from baseline in Newtons

    Returns:
        Tuple of (timestamps, force_values)
    """
    n_samples = int(duration * sample_rate)
    timestamps = np.arange(n_samples) / sample_rate

    frequency = breaths_per_minute / 60.0
    forces = baseline + amplitude * np.sin(2 * np.pi * frequency * timestamps)

    return timestamps, forces


def generate_noisy_force(
    breaths_per_minute: float = 12.0,
    duration: float = 60.0,
    sample_rate: float = 10.0,
    noise_std: float = 0.02,
    seed: int = 42,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Generate a breathing force signal with Gaussian noise.

    Uses a fixed seed so tests stay reproducible.
    """
    timestamps, clean = generate_breathing_force(
        breaths_per_minute, duration, sample_rate
    )
    rng = np.random.default_rng(seed)
    return timestamps, clean + rng.normal(0, noise_std, len(clean))


def force_readings(
    timestamps: np.ndarray, forces: np.ndarray, start: float = 1_700_000_000.0
) -> list[ForceReading]:
    """Wrap a force series as ForceReadings with epoch timestamps."""
    return [
        ForceReading(value=float(force), timestamp=start + float(t))
        for t, force in zip(timestamps, forces, strict=True)
    ]


def measurement_packet(force: float, counter: int = 0, dropped: int = 0) -> bytes:
    """
    Build a framed measurement notification.

    Layout: type byte 0x01, counter, dropped count, float32 LE force.
    """
    return bytes([0x01, counter & 0xFF, dropped & 0xFF]) + struct.pack("<f", force)


def zero_packet(length: int = 4) -> bytes:
    """All-zero payload. Every interpretation decodes to 0 N, which is implausible."""
    return bytes(length)
