"""
Command table for the Go Direct belt.

Commands are fixed byte sequences looked up by name. Nothing here talks to a
device; the connection manager writes whatever these functions return.
"""

import struct

from enum import Enum

from kasina_breath.constants import ProtocolConstants as PC
from kasina_breath.exceptions import UnknownCommandError


class CommandKind(str, Enum):
    """Named device commands."""

    ENABLE_SENSOR = "enable_sensor"
    SET_SAMPLE_RATE = "set_sample_rate"
    START_MEASUREMENT = "start_measurement"
    STOP_MEASUREMENT = "stop_measurement"
    KEEP_ALIVE = "keep_alive"
    GET_DEVICE_INFO = "get_device_info"
    GET_SENSOR_LIST = "get_sensor_list"


# KEEP_ALIVE reuses the start sequence: firmware that stops streaming only
# resumes when it sees re-activation.
COMMAND_TABLE: dict[CommandKind, bytes] = {
    CommandKind.ENABLE_SENSOR: PC.ENABLE_SENSOR,
    CommandKind.START_MEASUREMENT: PC.START_MEASUREMENT,
    CommandKind.STOP_MEASUREMENT: PC.STOP_MEASUREMENT,
    CommandKind.KEEP_ALIVE: PC.START_MEASUREMENT,
    CommandKind.GET_DEVICE_INFO: PC.GET_DEVICE_INFO,
    CommandKind.GET_SENSOR_LIST: PC.GET_SENSOR_LIST,
}


def encode_sample_rate(sample_rate_hz: int) -> bytes:
    """
    Encode a set-sample-rate command.

    Args:
        sample_rate_hz: Samples per second, 1-65535

    Returns:
        Opcode followed by the rate as little-endian uint16

    Raises:
        ValueError: If the rate doesn't fit in an unsigned 16-bit field
    """
    if not 1 <= sample_rate_hz <= 0xFFFF:
        raise ValueError(f"Sample rate out of range: {sample_rate_hz}")
    return bytes([PC.SET_SAMPLE_RATE_OPCODE]) + struct.pack("<H", sample_rate_hz)


def build_command(
    kind: CommandKind | str,
    *,
    sample_rate_hz: int = PC.DEFAULT_SAMPLE_RATE_HZ,
) -> bytes:
    """
    Return the byte sequence for a named device command.

    Args:
        kind: Command to build (enum member or its string value)
        sample_rate_hz: Rate for SET_SAMPLE_RATE, ignored otherwise

    Returns:
        Bytes ready to write to the command characteristic

    Raises:
        UnknownCommandError: If kind is not a known command
    """
    try:
        kind = CommandKind(kind)
    except ValueError as e:
        raise UnknownCommandError(f"Unknown command kind: {kind!r}") from e

    if kind == CommandKind.SET_SAMPLE_RATE:
        return encode_sample_rate(sample_rate_hz)

    return COMMAND_TABLE[kind]
