"""Exception hierarchy for kasina-breath."""

from enum import Enum


class KasinaBreathError(Exception):
    """Base exception for all kasina-breath errors."""


class ConnectionFailure(str, Enum):
    """Reasons a belt connection can fail or end."""

    NO_DEVICE_SELECTED = "no_device_selected"
    TIMEOUT = "timeout"
    ALREADY_CONNECTED_ELSEWHERE = "already_connected_elsewhere"
    PERMISSION_DENIED = "permission_denied"
    SERVICE_NOT_FOUND = "service_not_found"
    LINK_LOST = "link_lost"


_USER_MESSAGES = {
    ConnectionFailure.NO_DEVICE_SELECTED: (
        "No respiration belt found. Make sure the belt is switched on "
        "and within range."
    ),
    ConnectionFailure.TIMEOUT: (
        "The belt did not respond in time. Move closer and try again."
    ),
    ConnectionFailure.ALREADY_CONNECTED_ELSEWHERE: (
        "The belt appears to be connected to another app. Disconnect it "
        "there first."
    ),
    ConnectionFailure.PERMISSION_DENIED: (
        "Bluetooth access was denied. Enable Bluetooth permissions for this "
        "application."
    ),
    ConnectionFailure.SERVICE_NOT_FOUND: (
        "The connected device does not expose the Go Direct sensor service."
    ),
    ConnectionFailure.LINK_LOST: (
        "Connection to the belt was lost. Your session progress has been kept."
    ),
}


class SensorConnectionError(KasinaBreathError):
    """Raised when the belt link cannot be established or is lost."""

    def __init__(self, kind: ConnectionFailure, detail: str = ""):
        self.kind = kind
        self.detail = detail
        message = f"{kind.value}: {detail}" if detail else kind.value
        super().__init__(message)

    @property
    def user_message(self) -> str:
        """Human-readable explanation suitable for showing to the user."""
        return _USER_MESSAGES[self.kind]


class UnknownCommandError(KasinaBreathError, ValueError):
    """Raised when asked to build a command the protocol table doesn't know."""


class SessionAlreadyActiveError(KasinaBreathError):
    """Raised when starting a session while another one is still active."""

    def __init__(self, session_id: str):
        super().__init__(
            f"Session {session_id} is still active; complete or abandon it first"
        )
        self.session_id = session_id


class ConfigError(KasinaBreathError):
    """Raised for invalid configuration keys or values."""
