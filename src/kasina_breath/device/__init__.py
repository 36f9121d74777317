"""BLE link to the respiration belt."""

from kasina_breath.device.channel import SampleChannel
from kasina_breath.device.connection import ConnectionManager, classify_bleak_error
from kasina_breath.device.types import (
    ConnectionState,
    DeviceHandle,
    DiscoveredDevice,
    RawSample,
)

__all__ = [
    "ConnectionManager",
    "ConnectionState",
    "DeviceHandle",
    "DiscoveredDevice",
    "RawSample",
    "SampleChannel",
    "classify_bleak_error",
]
