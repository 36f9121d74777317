"""
BLE connection manager for the Go Direct respiration belt.

Owns the bleak client, the notification channel and every timer attached to
the link (heartbeat, notification pump, stall recovery). All callbacks run on
the event loop thread; the notification handler only enqueues.
"""

import asyncio
import logging
import time

from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError

from kasina_breath.config import DeviceSettings
from kasina_breath.constants import (
    COMMAND_CHAR_UUID,
    RESPONSE_CHAR_UUID,
    SERVICE_UUID,
    ResponseType,
)
from kasina_breath.constants import ConnectionConstants as CONN
from kasina_breath.device.channel import SampleChannel
from kasina_breath.device.types import (
    ConnectionState,
    DeviceHandle,
    DiscoveredDevice,
    RawSample,
)
from kasina_breath.exceptions import ConnectionFailure, SensorConnectionError
from kasina_breath.protocol.commands import CommandKind, build_command
from kasina_breath.protocol.decoder import hex_dump, is_target_device

logger = logging.getLogger(__name__)

SampleCallback = Callable[[RawSample], None]
LinkLostCallback = Callable[[SensorConnectionError], None]

_PERMISSION_MARKERS = ("permission", "not authorized", "unauthorized", "access denied")
_NOT_FOUND_MARKERS = ("not found", "no device")
_TIMEOUT_MARKERS = ("timeout", "timed out")


def classify_bleak_error(error: BaseException) -> SensorConnectionError:
    """
    Map a bleak/OS error onto a ConnectionFailure kind.

    Backends word their errors differently, so this matches on message
    fragments. Anything unrecognized during connect is most often the belt
    being held by another app.
    """
    if isinstance(error, PermissionError):
        return SensorConnectionError(ConnectionFailure.PERMISSION_DENIED, str(error))
    if isinstance(error, TimeoutError):
        return SensorConnectionError(ConnectionFailure.TIMEOUT, str(error))

    message = str(error).lower()
    if any(marker in message for marker in _PERMISSION_MARKERS):
        kind = ConnectionFailure.PERMISSION_DENIED
    elif any(marker in message for marker in _TIMEOUT_MARKERS):
        kind = ConnectionFailure.TIMEOUT
    elif any(marker in message for marker in _NOT_FOUND_MARKERS):
        kind = ConnectionFailure.NO_DEVICE_SELECTED
    else:
        kind = ConnectionFailure.ALREADY_CONNECTED_ELSEWHERE
    return SensorConnectionError(kind, str(error))


class ConnectionManager:
    """
    Connect to a belt, stream its notifications and keep the link alive.

    Example:
        >>> manager = ConnectionManager(settings.device)
        >>> manager.on_notification(lambda sample: print(sample.payload.hex()))
        >>> handle = await manager.connect()
        >>> manager.start_heartbeat()
        >>> ...
        >>> await manager.disconnect()
    """

    def __init__(
        self,
        settings: DeviceSettings | None = None,
        *,
        scanner: Any = BleakScanner,
        client_factory: Callable[..., Any] = BleakClient,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            settings: Link timeouts and intervals
            scanner: Object exposing BleakScanner's find_device_by_filter and
                discover coroutines
            client_factory: Callable building a BleakClient-like object
            clock: Source of receive timestamps
            sleep: Coroutine used for command spacing
        """
        self.settings = settings or DeviceSettings()
        self._scanner = scanner
        self._client_factory = client_factory
        self._clock = clock
        self._sleep = sleep

        self.state = ConnectionState.DISCONNECTED
        self.handle: DeviceHandle | None = None
        self._client: Any = None
        self._closing = False

        self._channel: SampleChannel[RawSample] = SampleChannel(self.settings.channel_size)
        self._dropped_before = 0
        self.recent_samples: deque[RawSample] = deque(maxlen=CONN.RECENT_SAMPLE_BUFFER)
        self.last_sample_at: float | None = None

        self._sample_callbacks: list[SampleCallback] = []
        self._link_lost_callbacks: list[LinkLostCallback] = []

        self._pump_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._stall_handle: asyncio.TimerHandle | None = None
        self._refresh_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def on_notification(self, callback: SampleCallback) -> Callable[[], None]:
        """
        Register an observer for every raw notification.

        Returns:
            Callable that unregisters the observer
        """
        self._sample_callbacks.append(callback)
        return lambda: self._remove(self._sample_callbacks, callback)

    def on_link_lost(self, callback: LinkLostCallback) -> Callable[[], None]:
        """Register an observer for device-initiated disconnects."""
        self._link_lost_callbacks.append(callback)
        return lambda: self._remove(self._link_lost_callbacks, callback)

    @staticmethod
    def _remove(callbacks: list, callback: Any) -> None:
        if callback in callbacks:
            callbacks.remove(callback)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self.state in (ConnectionState.SUBSCRIBED, ConnectionState.STREAMING)

    @property
    def dropped_samples(self) -> int:
        """Notifications discarded because the pipeline fell behind."""
        return self._dropped_before + self._channel.dropped

    def _set_state(self, state: ConnectionState) -> None:
        if state != self.state:
            logger.debug(f"Connection state: {self.state.value} -> {state.value}")
            self.state = state

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def _matches(self, device: Any, adv: Any) -> bool:
        name = getattr(adv, "local_name", None) or device.name
        return is_target_device(name, self.settings.name_prefix)

    async def scan(self, timeout: float | None = None) -> list[DiscoveredDevice]:
        """
        List nearby belts, strongest signal first.

        Raises:
            SensorConnectionError: If the adapter can't be used for scanning
        """
        timeout = timeout or self.settings.scan_timeout
        try:
            found = await self._scanner.discover(timeout=timeout, return_adv=True)
        except (BleakError, OSError) as e:
            raise classify_bleak_error(e) from e

        devices = []
        for device, adv in found.values():
            if not self._matches(device, adv):
                continue
            devices.append(
                DiscoveredDevice(
                    name=adv.local_name or device.name,
                    address=device.address,
                    rssi=adv.rssi,
                )
            )

        devices.sort(key=lambda d: d.rssi if d.rssi is not None else -999, reverse=True)
        logger.info(f"Scan found {len(devices)} belt(s)")
        return devices

    async def _find_device(self) -> Any:
        self._set_state(ConnectionState.SCANNING)
        logger.info(f"Scanning for '{self.settings.name_prefix}' devices...")
        try:
            device = await self._scanner.find_device_by_filter(
                self._matches, timeout=self.settings.scan_timeout
            )
        except (BleakError, OSError) as e:
            raise classify_bleak_error(e) from e

        if device is None:
            raise SensorConnectionError(
                ConnectionFailure.NO_DEVICE_SELECTED,
                f"no device named {self.settings.name_prefix}* within "
                f"{self.settings.scan_timeout:.0f}s",
            )
        return device

    # ------------------------------------------------------------------
    # Connect / disconnect
    # ------------------------------------------------------------------

    async def connect(self) -> DeviceHandle:
        """
        Scan, connect, subscribe and start the measurement stream.

        Returns:
            Handle of the connected belt. If already connected, the current
            handle is returned unchanged.

        Raises:
            SensorConnectionError: On any failure; partial connections are
                torn down first
        """
        if self.handle is not None and self.is_connected:
            return self.handle

        self._closing = False
        try:
            device = await self._find_device()
            handle = DeviceHandle(name=device.name or "", address=device.address)

            self._set_state(ConnectionState.CONNECTING)
            logger.info(f"Connecting to {handle.name} ({handle.address})")
            client = self._client_factory(
                device,
                disconnected_callback=self._handle_disconnect,
                timeout=self.settings.connect_timeout,
            )
            self._client = client
            await asyncio.wait_for(client.connect(), timeout=self.settings.connect_timeout)

            self._set_state(ConnectionState.SERVICE_DISCOVERY)
            self._check_services(client)

            self._open_channel()
            await asyncio.wait_for(
                client.start_notify(RESPONSE_CHAR_UUID, self._handle_notification),
                timeout=self.settings.command_timeout,
            )
            self._set_state(ConnectionState.SUBSCRIBED)
            self.handle = handle

            await self._send_setup_sequence()
        except SensorConnectionError:
            await self._abort()
            raise
        except (BleakError, OSError) as e:
            await self._abort()
            raise classify_bleak_error(e) from e

        self._set_state(ConnectionState.STREAMING)
        self._arm_stall_timer()
        logger.info(f"Streaming from {handle.name}")
        return handle

    def _check_services(self, client: Any) -> None:
        service = client.services.get_service(SERVICE_UUID)
        if service is None:
            raise SensorConnectionError(
                ConnectionFailure.SERVICE_NOT_FOUND, f"service {SERVICE_UUID} missing"
            )
        for uuid in (COMMAND_CHAR_UUID, RESPONSE_CHAR_UUID):
            if service.get_characteristic(uuid) is None:
                raise SensorConnectionError(
                    ConnectionFailure.SERVICE_NOT_FOUND, f"characteristic {uuid} missing"
                )

    async def _send_setup_sequence(self) -> None:
        sequence = [CommandKind.ENABLE_SENSOR]
        if self.settings.configure_sample_rate:
            sequence.append(CommandKind.SET_SAMPLE_RATE)
        sequence.append(CommandKind.START_MEASUREMENT)

        for kind in sequence:
            await self.write_command(kind)
            await self._sleep(self.settings.command_spacing)

    async def disconnect(self) -> None:
        """
        Stop streaming and release the link. Safe to call repeatedly.

        Timers are cancelled before anything is awaited so none of them can
        fire against a half-closed client.
        """
        self._cancel_timers()
        self._closing = True
        self._channel.close()

        client, self._client = self._client, None
        self.handle = None
        if client is None:
            self._set_state(ConnectionState.DISCONNECTED)
            return

        try:
            if client.is_connected:
                try:
                    await client.stop_notify(RESPONSE_CHAR_UUID)
                except (BleakError, OSError) as e:
                    logger.debug(f"stop_notify failed during disconnect: {e}")
                await client.disconnect()
            logger.info("Disconnected from belt")
        except (BleakError, OSError) as e:
            logger.warning(f"Error while disconnecting: {e}")
        finally:
            self._set_state(ConnectionState.DISCONNECTED)

    async def _abort(self) -> None:
        await self.disconnect()

    def _handle_disconnect(self, client: Any) -> None:
        if self._closing or client is not self._client:
            return

        logger.warning("Belt disconnected unexpectedly")
        self._cancel_timers()
        self._channel.close()
        self._client = None
        self.handle = None
        self._set_state(ConnectionState.DISCONNECTED)

        error = SensorConnectionError(ConnectionFailure.LINK_LOST, "device disconnected")
        for callback in list(self._link_lost_callbacks):
            try:
                callback(error)
            except Exception:
                logger.exception("Link-lost observer failed")

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def write_command(self, kind: CommandKind | str) -> None:
        """
        Write a named command to the belt.

        Raises:
            SensorConnectionError: If not connected or the write times out
            UnknownCommandError: If kind is not a known command
        """
        payload = build_command(kind, sample_rate_hz=self.settings.sample_rate_hz)
        client = self._client
        if client is None or not client.is_connected:
            raise SensorConnectionError(ConnectionFailure.LINK_LOST, "not connected")

        logger.debug(f"Writing {CommandKind(kind).value}: {hex_dump(payload)}")
        try:
            await asyncio.wait_for(
                client.write_gatt_char(COMMAND_CHAR_UUID, payload, response=True),
                timeout=self.settings.command_timeout,
            )
        except TimeoutError as e:
            raise SensorConnectionError(
                ConnectionFailure.TIMEOUT, f"{CommandKind(kind).value} write timed out"
            ) from e

    def start_heartbeat(self) -> None:
        """Start periodic keep-alive writes. Does nothing if already running."""
        if self._heartbeat_task is not None and not self._heartbeat_task.done():
            return
        self._heartbeat_task = asyncio.get_running_loop().create_task(self._heartbeat())

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self.settings.heartbeat_interval)
            try:
                await self.write_command(CommandKind.KEEP_ALIVE)
            except (SensorConnectionError, BleakError, OSError) as e:
                logger.warning(f"Keep-alive failed: {e}")

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _open_channel(self) -> None:
        self._dropped_before += self._channel.dropped
        self._channel = SampleChannel(self.settings.channel_size)
        self._pump_task = asyncio.get_running_loop().create_task(
            self._pump(self._channel)
        )

    def _handle_notification(self, _sender: Any, data: bytearray) -> None:
        sample = RawSample(payload=bytes(data), received_at=self._clock())
        self.recent_samples.append(sample)
        self.last_sample_at = sample.received_at

        if data and data[0] != ResponseType.MEASUREMENT:
            logger.debug(f"Response 0x{data[0]:02x}: {hex_dump(sample.payload)}")

        self._channel.put_nowait(sample)
        if self.state == ConnectionState.STREAMING:
            self._arm_stall_timer()

    async def _pump(self, channel: SampleChannel[RawSample]) -> None:
        async for sample in channel:
            for callback in list(self._sample_callbacks):
                try:
                    callback(sample)
                except Exception:
                    logger.exception("Notification observer failed")

    # ------------------------------------------------------------------
    # Stall recovery
    # ------------------------------------------------------------------

    def _arm_stall_timer(self) -> None:
        if self._stall_handle is not None:
            self._stall_handle.cancel()
        self._stall_handle = asyncio.get_running_loop().call_later(
            self.settings.stall_timeout, self._on_stall
        )

    def _on_stall(self) -> None:
        self._stall_handle = None
        if self.state != ConnectionState.STREAMING:
            return

        logger.warning(
            f"No data for {self.settings.stall_timeout:.0f}s, re-sending start command"
        )
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.get_running_loop().create_task(self._refresh())
        self._arm_stall_timer()

    async def _refresh(self) -> None:
        try:
            await self.write_command(CommandKind.START_MEASUREMENT)
        except (SensorConnectionError, BleakError, OSError) as e:
            logger.warning(f"Stream refresh failed: {e}")

    def _cancel_timers(self) -> None:
        if self._stall_handle is not None:
            self._stall_handle.cancel()
            self._stall_handle = None
        for task in (self._heartbeat_task, self._pump_task, self._refresh_task):
            if task is not None and not task.done():
                task.cancel()
        self._heartbeat_task = None
        self._pump_task = None
        self._refresh_task = None
