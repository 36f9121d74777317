"""
Constants and mappings for the Go Direct respiration belt pipeline.

Wire values are based on the Vernier Go Direct BLE notes and on what the
belt was observed to accept. The byte layout is not publicly documented, so
these tables are a best-effort reference rather than a vendor contract.
"""

from enum import Enum, IntEnum
from pathlib import Path

# ============================================================================
# Bluetooth Identifiers
# ============================================================================

SERVICE_UUID = "d91714ef-28b9-4f91-ba16-f0d9a604f112"
COMMAND_CHAR_UUID = "f4bf14a6-c7d5-4b6d-8aa8-df1a7c83adcb"  # write
RESPONSE_CHAR_UUID = "b41e6675-a329-40e0-aa01-44d2f444babe"  # notify

# Go Direct Respiration Belt advertises as "GDX-RB <serial>"
DEVICE_NAME_PREFIX = "GDX-RB"


# ============================================================================
# Practice Types
# ============================================================================


class KasinaType(str, Enum):
    """Meditation practice types a session can be logged against."""

    WHITE_A = "white-a"
    WHITE_A_THIGLE = "white-a-thigle"
    OM = "om"
    AH = "ah"
    HUM = "hum"
    RAINBOW = "rainbow"
    BREATH = "breath"
    BREATH_MIC = "breath-mic"
    WHITE = "white"
    BLUE = "blue"
    RED = "red"
    YELLOW = "yellow"
    WATER = "water"
    FIRE = "fire"
    AIR = "air"
    EARTH = "earth"
    SPACE = "space"
    LIGHT = "light"
    CUSTOM = "custom"


# ============================================================================
# Protocol Constants
# ============================================================================


class ProtocolConstants:
    """Raw command bytes and response codes (protocol/commands.py)."""

    # Activation handshake. The belt ignores measurement commands until it
    # has seen this exact sequence.
    ENABLE_SENSOR = bytes(
        [
            0x1A, 0xA5, 0x4A, 0x06, 0x49, 0x07, 0x48, 0x08, 0x47, 0x09, 0x46,
            0x0A, 0x45, 0x0B, 0x44, 0x0C, 0x43, 0x0D, 0x42, 0x0E, 0x41,
        ]
    )  # fmt: skip
    START_MEASUREMENT = bytes([0x18, 0xFF, 0x01, 0x00, 0x00, 0x00, 0x00, 0x00])
    STOP_MEASUREMENT = bytes([0x18, 0xFF, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00])
    GET_DEVICE_INFO = bytes([0x55])
    GET_SENSOR_LIST = bytes([0x56])

    # Rate follows as little-endian uint16
    SET_SAMPLE_RATE_OPCODE = 0x12

    # Measurement packets: type byte, counter, dropped count, float32 LE force
    MEASUREMENT_MIN_LENGTH = 7
    MEASUREMENT_FORCE_OFFSET = 3

    DEFAULT_SAMPLE_RATE_HZ = 10


class ResponseType(IntEnum):
    """First byte of a response notification."""

    MEASUREMENT = 0x01
    SENSOR_INFO = 0x50
    STATUS = 0x52
    DEVICE_INFO = 0x55
    SENSOR_LIST = 0x56


class DecoderConstants:
    """Scaling and plausibility limits for heuristic force decoding."""

    UINT8_SCALE = 100.0
    INT16_SCALE = 1000.0

    # Exclusive bounds in Newtons. The belt reads ~0.5-15 N during normal
    # breathing; anything outside is treated as a misinterpretation.
    PLAUSIBLE_MIN = 0.0
    PLAUSIBLE_MAX = 40.0


# ============================================================================
# Connection Constants
# ============================================================================


class ConnectionConstants:
    """Timeouts and intervals for the BLE link (device/connection.py)."""

    SCAN_TIMEOUT_SECONDS = 12.0
    CONNECT_TIMEOUT_SECONDS = 15.0
    COMMAND_TIMEOUT_SECONDS = 2.0

    # Some belts silently drop commands sent back to back
    COMMAND_SPACING_SECONDS = 1.0
    MIN_COMMAND_SPACING_SECONDS = 0.5

    HEARTBEAT_INTERVAL_SECONDS = 3.0
    STALL_TIMEOUT_SECONDS = 5.0

    SAMPLE_CHANNEL_SIZE = 256
    RECENT_SAMPLE_BUFFER = 256


# ============================================================================
# Signal Processing Constants
# ============================================================================


class CalibrationConstants:
    """Constants for calibration (signal/calibration.py)."""

    DURATION_SECONDS = 20.0
    MIN_SAMPLES = 50
    MAX_SAMPLES = 2000
    MIN_FORCE_RANGE = 0.1  # Newtons; below this the belt is reading noise
    COUNTDOWN_TICK_SECONDS = 1.0


class BreathSignalConstants:
    """Constants for phase and rate derivation (signal/processor.py)."""

    INHALE_THRESHOLD = 0.7
    EXHALE_THRESHOLD = 0.3

    RATE_WINDOW_SECONDS = 60.0
    PEAK_NEIGHBORHOOD = 3
    PEAK_MARGIN = 0.1  # Newtons above calibration baseline
    MIN_RATE_SAMPLES = 20


# ============================================================================
# Session Recovery Constants
# ============================================================================


class RecoveryConstants:
    """Constants for session recovery (sessions/recovery.py)."""

    CHECKPOINT_INTERVAL_SECONDS = 30.0
    ACTIVE_SESSION_STALE_SECONDS = 120.0
    EMERGENCY_CHECKPOINT_STALE_SECONDS = 300.0
    MIN_SESSION_SECONDS = 60
    FAILED_QUEUE_LIMIT = 50


class ApiConstants:
    """Constants for the session persistence API (sessions/api.py)."""

    DEFAULT_BASE_URL = "http://localhost:5000/api"
    SESSIONS_PATH = "/sessions"
    REQUEST_TIMEOUT_SECONDS = 10.0


# ============================================================================
# Default Settings
# ============================================================================

DEFAULT_HOME_DIR = Path.home() / ".kasina-breath"
DEFAULT_DATABASE_PATH = str(DEFAULT_HOME_DIR / "kasina_breath.db")
DEFAULT_CONFIG_FILE = "config.toml"

# Logging configuration
DEFAULT_LOG_DIR = DEFAULT_HOME_DIR / "logs"
DEFAULT_LOG_FILE = "kasina_breath.log"
DEFAULT_LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
DEFAULT_LOG_BACKUP_COUNT = 5

# Time calculations
SECONDS_PER_MINUTE = 60
MILLISECONDS_PER_SECOND = 1000
