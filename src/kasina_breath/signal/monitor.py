"""
Breath monitor: wires the belt connection to calibration and the processor.

The monitor is the single place the presentation layer reads the derived
signal from (amplitude, phase, rate, connection and calibration status).
"""

import logging
import time

from collections.abc import Callable
from typing import TYPE_CHECKING

from kasina_breath.config import Settings
from kasina_breath.device.connection import ConnectionManager
from kasina_breath.device.types import RawSample
from kasina_breath.exceptions import SensorConnectionError
from kasina_breath.protocol.decoder import decode_force
from kasina_breath.signal.calibration import CalibrationEngine
from kasina_breath.signal.processor import BreathSignalProcessor
from kasina_breath.signal.types import (
    BreathPhase,
    BreathSignal,
    BreathState,
    CalibrationFailure,
    CalibrationProfile,
)

if TYPE_CHECKING:
    from kasina_breath.database.store import CalibrationProfileStore

logger = logging.getLogger(__name__)

BreathCallback = Callable[[BreathState], None]
LinkLostCallback = Callable[[SensorConnectionError], None]


class BreathMonitor:
    """
    Decode belt notifications and derive the breathing signal.

    Readings go to the calibration engine while a calibration is running and
    to the breath processor otherwise. An invalid calibration leaves the
    monitor uncalibrated until calibration is started again.

    Example:
        >>> monitor = BreathMonitor(connection, settings)
        >>> monitor.on_breath(lambda state: print(state.amplitude))
        >>> await connection.connect()
        >>> profile = await monitor.calibrate()
    """

    def __init__(
        self,
        connection: ConnectionManager,
        settings: Settings | None = None,
        *,
        profile_store: "CalibrationProfileStore | None" = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.connection = connection
        self.settings = settings or Settings()
        self.profile_store = profile_store

        self.calibration = CalibrationEngine(
            self.settings.calibration, on_complete=self._apply_calibration, clock=clock
        )
        self.processor = BreathSignalProcessor(self.settings.signal)

        self.needs_calibration = True
        self.calibration_failure: CalibrationFailure | None = None
        self.current_force: float | None = None
        self.decode_failures = 0

        self._breath_callbacks: list[BreathCallback] = []
        self._link_lost_callbacks: list[LinkLostCallback] = []
        self._unsubscribe = [
            connection.on_notification(self._on_sample),
            connection.on_link_lost(self._on_link_lost),
        ]

    def close(self) -> None:
        """Detach from the connection manager."""
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def on_breath(self, callback: BreathCallback) -> None:
        self._breath_callbacks.append(callback)

    def on_link_lost(self, callback: LinkLostCallback) -> None:
        self._link_lost_callbacks.append(callback)

    # ------------------------------------------------------------------
    # Derived signal
    # ------------------------------------------------------------------

    @property
    def amplitude(self) -> float:
        state = self.processor.state
        return state.amplitude if state else 0.0

    @property
    def phase(self) -> BreathPhase:
        state = self.processor.state
        return state.phase if state else BreathPhase.PAUSE

    @property
    def rate(self) -> int:
        state = self.processor.state
        return state.rate if state else 0

    @property
    def is_connected(self) -> bool:
        return self.connection.is_connected

    @property
    def calibration_progress(self) -> float:
        if self.calibration.is_calibrating:
            return self.calibration.progress
        return 0.0 if self.needs_calibration else 1.0

    def snapshot(self) -> BreathSignal:
        return BreathSignal(
            amplitude=self.amplitude,
            phase=self.phase,
            rate=self.rate,
            is_connected=self.is_connected,
            calibration_progress=self.calibration_progress,
            current_force=self.current_force,
            needs_calibration=self.needs_calibration,
        )

    # ------------------------------------------------------------------
    # Calibration
    # ------------------------------------------------------------------

    def start_calibration(self, duration_seconds: float | None = None) -> None:
        self.calibration_failure = None
        self.calibration.start_calibration(duration_seconds)

    async def calibrate(
        self,
        duration_seconds: float | None = None,
        on_tick: Callable[[float], None] | None = None,
    ) -> CalibrationProfile | None:
        """
        Run a full calibration window and return the resulting profile.

        Returns:
            The profile (check is_valid), or None if calibration was
            cancelled by a link loss or restarted elsewhere
        """
        self.start_calibration(duration_seconds)
        return await self.calibration.countdown(on_tick=on_tick)

    def restore_profile(self) -> bool:
        """
        Load the last valid profile saved for the connected belt.

        Returns:
            True if a stored profile was applied
        """
        handle = self.connection.handle
        if self.profile_store is None or handle is None:
            return False

        try:
            profile = self.profile_store.load(handle.name)
        except Exception as e:
            logger.warning(f"Could not load calibration for {handle.name}: {e}")
            return False

        if profile is None or not profile.is_valid:
            return False

        self.processor.set_profile(profile)
        self.needs_calibration = False
        logger.info(f"Restored calibration for {handle.name}")
        return True

    def _apply_calibration(self, profile: CalibrationProfile) -> None:
        if not profile.is_valid:
            self.processor.clear_profile()
            self.needs_calibration = True
            self.calibration_failure = self.calibration.failure_reason(profile)
            return

        self.processor.set_profile(profile)
        self.needs_calibration = False
        self.calibration_failure = None

        handle = self.connection.handle
        if self.profile_store is not None and handle is not None:
            try:
                self.profile_store.save(handle.name, profile)
            except Exception as e:
                logger.warning(f"Could not save calibration for {handle.name}: {e}")

    # ------------------------------------------------------------------
    # Connection callbacks
    # ------------------------------------------------------------------

    def _on_sample(self, sample: RawSample) -> None:
        device = self.settings.device
        reading = decode_force(
            sample.payload,
            sample.received_at,
            minimum=device.plausible_min,
            maximum=device.plausible_max,
        )
        if reading is None:
            self.decode_failures += 1
            return

        self.current_force = reading.value
        if self.calibration.is_calibrating:
            self.calibration.on_sample(reading)
            return

        state = self.processor.process(reading)
        if state is None:
            return

        for callback in list(self._breath_callbacks):
            try:
                callback(state)
            except Exception:
                logger.exception("Breath observer failed")

    def _on_link_lost(self, error: SensorConnectionError) -> None:
        self.calibration.cancel()
        for callback in list(self._link_lost_callbacks):
            try:
                callback(error)
            except Exception:
                logger.exception("Link-lost observer failed")
