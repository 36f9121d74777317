"""
In-memory stand-ins for the bleak scanner and client, plus controllable clocks.

The fakes implement only the parts of the bleak API the connection manager
uses, and record every call so tests can assert on the command stream.
"""

import asyncio

from dataclasses import dataclass
from datetime import datetime, timedelta

from kasina_breath.constants import COMMAND_CHAR_UUID, RESPONSE_CHAR_UUID, SERVICE_UUID

BELT_NAME = "GDX-RB 0K1234"
BELT_ADDRESS = "AA:BB:CC:DD:EE:FF"


@dataclass
class FakeDevice:
    name: str | None
    address: str


@dataclass
class FakeAdvertisement:
    local_name: str | None
    rssi: int = -60


class FakeScanner:
    """Scanner returning a fixed set of advertisements."""

    def __init__(
        self,
        devices: list[tuple[FakeDevice, FakeAdvertisement]] | None = None,
        error: BaseException | None = None,
    ):
        self.devices = devices or []
        self.error = error
        self.find_calls = 0
        self.discover_calls = 0

    @classmethod
    def with_belt(
        cls, name: str = BELT_NAME, address: str = BELT_ADDRESS, rssi: int = -60
    ) -> "FakeScanner":
        return cls([(FakeDevice(name, address), FakeAdvertisement(name, rssi))])

    async def find_device_by_filter(self, filterfunc, timeout: float = 10.0):
        self.find_calls += 1
        if self.error is not None:
            raise self.error
        for device, adv in self.devices:
            if filterfunc(device, adv):
                return device
        return None

    async def discover(self, timeout: float = 5.0, return_adv: bool = False):
        self.discover_calls += 1
        if self.error is not None:
            raise self.error
        return {device.address: (device, adv) for device, adv in self.devices}


class FakeService:
    def __init__(self, characteristics: set[str]):
        self.characteristics = characteristics

    def get_characteristic(self, uuid: str):
        return uuid if uuid in self.characteristics else None


class FakeServiceCollection:
    def __init__(self, services: dict[str, FakeService]):
        self._services = services

    def get_service(self, uuid: str):
        return self._services.get(uuid)


class FakeBleakClient:
    """
    BleakClient look-alike.

    Options let a test make connect fail or hang, hide the Go Direct service
    or a characteristic, and make writes fail or hang.
    """

    def __init__(
        self,
        device,
        disconnected_callback=None,
        timeout: float = 10.0,
        *,
        connect_error: BaseException | None = None,
        connect_delay: float = 0.0,
        has_service: bool = True,
        missing_characteristic: str | None = None,
        write_error: BaseException | None = None,
        write_delay: float = 0.0,
    ):
        self.device = device
        self.disconnected_callback = disconnected_callback
        self.timeout = timeout
        self.connect_error = connect_error
        self.connect_delay = connect_delay
        self.write_error = write_error
        self.write_delay = write_delay

        characteristics = {COMMAND_CHAR_UUID, RESPONSE_CHAR_UUID} - {missing_characteristic}
        services = {SERVICE_UUID: FakeService(characteristics)} if has_service else {}
        self.services = FakeServiceCollection(services)

        self.is_connected = False
        self.writes: list[tuple[str, bytes]] = []
        self.notify_callbacks: dict = {}
        self.stop_notify_calls = 0
        self.disconnect_calls = 0

    @property
    def commands(self) -> list[bytes]:
        return [data for uuid, data in self.writes if uuid == COMMAND_CHAR_UUID]

    async def connect(self) -> bool:
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.connect_error is not None:
            raise self.connect_error
        self.is_connected = True
        return True

    async def start_notify(self, uuid: str, callback) -> None:
        self.notify_callbacks[uuid] = callback

    async def stop_notify(self, uuid: str) -> None:
        self.stop_notify_calls += 1
        self.notify_callbacks.pop(uuid, None)

    async def write_gatt_char(self, uuid: str, data: bytes, response: bool = False) -> None:
        if self.write_delay:
            await asyncio.sleep(self.write_delay)
        if self.write_error is not None:
            raise self.write_error
        self.writes.append((uuid, bytes(data)))

    async def disconnect(self) -> bool:
        self.disconnect_calls += 1
        self.is_connected = False
        # bleak reports user-initiated disconnects through the same callback
        if self.disconnected_callback is not None:
            self.disconnected_callback(self)
        return True

    def notify(self, data: bytes) -> None:
        """Deliver a notification as the backend would."""
        self.notify_callbacks[RESPONSE_CHAR_UUID](None, bytearray(data))

    def drop_link(self) -> None:
        """Simulate the belt going out of range."""
        self.is_connected = False
        if self.disconnected_callback is not None:
            self.disconnected_callback(self)


class FakeClientFactory:
    """Callable passed as client_factory; keeps every client it built."""

    def __init__(self, **client_options):
        self.client_options = client_options
        self.clients: list[FakeBleakClient] = []

    def __call__(self, device, disconnected_callback=None, timeout: float = 10.0):
        client = FakeBleakClient(
            device, disconnected_callback, timeout, **self.client_options
        )
        self.clients.append(client)
        return client

    @property
    def last(self) -> FakeBleakClient:
        return self.clients[-1]


class RecordingSleep:
    """Replacement for asyncio.sleep that yields once and records the delay."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class FakeClock:
    """Monotonic-style clock returning float seconds."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUtcClock:
    """Clock returning timezone-aware datetimes."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


async def drain(iterations: int = 10) -> None:
    """Let pending callbacks and tasks on the running loop run."""
    for _ in range(iterations):
        await asyncio.sleep(0)
