"""Device connection type definitions."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ConnectionState(str, Enum):
    """Lifecycle of the belt link."""

    DISCONNECTED = "disconnected"
    SCANNING = "scanning"
    CONNECTING = "connecting"
    SERVICE_DISCOVERY = "service_discovery"
    SUBSCRIBED = "subscribed"
    STREAMING = "streaming"


class RawSample(BaseModel):
    """One notification payload exactly as the belt sent it."""

    model_config = ConfigDict(frozen=True)

    payload: bytes = Field(description="Raw notification bytes")
    received_at: float = Field(description="Receive time (epoch seconds)")


class DeviceHandle(BaseModel):
    """Identity of the currently connected belt."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Advertised device name")
    address: str = Field(description="BLE address or platform identifier")


class DiscoveredDevice(BaseModel):
    """A belt seen during a scan."""

    name: str
    address: str
    rssi: int | None = Field(default=None, description="Signal strength (dBm)")
