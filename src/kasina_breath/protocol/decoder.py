"""
Heuristic force decoding for Go Direct notifications.

The belt's notification layout is not documented. Observed packets carry the
force value in different widths and positions depending on firmware, so
decoding is a ranked list of interpretations:

1. Framed measurement packet (type 0x01, float32 LE at offset 3)
2. Unsigned byte scaled by 1/100, at every offset
3. int16 little-endian scaled by 1/1000, at every offset
4. int16 big-endian scaled by 1/1000, at every offset
5. float32 little-endian, at every offset
6. float32 big-endian, at every offset

The first candidate inside the plausible force range wins. The result is a
best guess, not an authoritative reading. Identical bytes always produce the
same result.
"""

import math
import struct
import time

from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass

from kasina_breath.constants import DEVICE_NAME_PREFIX
from kasina_breath.constants import DecoderConstants as DC
from kasina_breath.constants import ProtocolConstants as PC
from kasina_breath.constants import ResponseType
from kasina_breath.protocol.types import ForceCandidate, ForceReading


@dataclass(frozen=True)
class DecodeStrategy:
    """
    A single way of reading a force value out of a packet.

    Attributes:
        name: Identifier reported on the resulting reading
        fmt: struct format for one value (byte order included)
        scale: Divisor applied to the unpacked value
        offsets: Callable returning the offsets to try for a payload.
            Defaults to every offset where the value fits.
    """

    name: str
    fmt: str
    scale: float = 1.0
    offsets: Callable[[bytes], Sequence[int]] | None = None

    @property
    def width(self) -> int:
        return struct.calcsize(self.fmt)

    def viable_offsets(self, payload: bytes) -> Sequence[int]:
        if self.offsets is not None:
            return self.offsets(payload)
        return range(0, len(payload) - self.width + 1)

    def read(self, payload: bytes, offset: int) -> float | None:
        """Unpack and scale the value at offset, or None if it doesn't fit."""
        if offset < 0 or offset + self.width > len(payload):
            return None
        (raw,) = struct.unpack_from(self.fmt, payload, offset)
        return float(raw) / self.scale

    def candidates(self, payload: bytes) -> Iterator[tuple[int, float]]:
        for offset in self.viable_offsets(payload):
            value = self.read(payload, offset)
            if value is not None:
                yield offset, value


def _measurement_offsets(payload: bytes) -> Sequence[int]:
    if (
        len(payload) >= PC.MEASUREMENT_MIN_LENGTH
        and payload[0] == ResponseType.MEASUREMENT
    ):
        return (PC.MEASUREMENT_FORCE_OFFSET,)
    return ()


MEASUREMENT_PACKET = DecodeStrategy(
    "measurement_packet", "<f", offsets=_measurement_offsets
)
UINT8_SCALED = DecodeStrategy("uint8", "<B", DC.UINT8_SCALE)
INT16_LE_SCALED = DecodeStrategy("int16le", "<h", DC.INT16_SCALE)
INT16_BE_SCALED = DecodeStrategy("int16be", ">h", DC.INT16_SCALE)
FLOAT32_LE = DecodeStrategy("float32le", "<f")
FLOAT32_BE = DecodeStrategy("float32be", ">f")

DEFAULT_STRATEGIES: tuple[DecodeStrategy, ...] = (
    MEASUREMENT_PACKET,
    UINT8_SCALED,
    INT16_LE_SCALED,
    INT16_BE_SCALED,
    FLOAT32_LE,
    FLOAT32_BE,
)


def is_plausible(
    value: float,
    minimum: float = DC.PLAUSIBLE_MIN,
    maximum: float = DC.PLAUSIBLE_MAX,
) -> bool:
    """Check a decoded value falls inside the exclusive plausible force range."""
    return math.isfinite(value) and minimum < value < maximum


def iter_candidates(
    payload: bytes,
    strategies: Sequence[DecodeStrategy] = DEFAULT_STRATEGIES,
    minimum: float = DC.PLAUSIBLE_MIN,
    maximum: float = DC.PLAUSIBLE_MAX,
) -> Iterator[ForceCandidate]:
    """Yield plausible candidates in strategy order, then offset order."""
    payload = bytes(payload)
    for strategy in strategies:
        for offset, value in strategy.candidates(payload):
            if is_plausible(value, minimum, maximum):
                yield ForceCandidate(value=value, strategy=strategy.name, offset=offset)


def decode_candidates(
    payload: bytes,
    strategies: Sequence[DecodeStrategy] = DEFAULT_STRATEGIES,
    minimum: float = DC.PLAUSIBLE_MIN,
    maximum: float = DC.PLAUSIBLE_MAX,
) -> list[ForceCandidate]:
    """
    List every plausible interpretation of a packet.

    Args:
        payload: Raw notification bytes
        strategies: Interpretations to try, in rank order
        minimum: Exclusive lower plausibility bound (N)
        maximum: Exclusive upper plausibility bound (N)

    Returns:
        Candidates ordered by strategy rank then byte offset
    """
    return list(iter_candidates(payload, strategies, minimum, maximum))


def decode_force(
    payload: bytes,
    received_at: float | None = None,
    strategies: Sequence[DecodeStrategy] = DEFAULT_STRATEGIES,
    minimum: float = DC.PLAUSIBLE_MIN,
    maximum: float = DC.PLAUSIBLE_MAX,
) -> ForceReading | None:
    """
    Pick the first plausible force value from a raw packet.

    Returning None is normal (status packets, noise) and callers should skip
    the packet silently.

    Args:
        payload: Raw notification bytes
        received_at: Receive time in epoch seconds (defaults to now)
        strategies: Interpretations to try, in rank order
        minimum: Exclusive lower plausibility bound (N)
        maximum: Exclusive upper plausibility bound (N)

    Returns:
        ForceReading for the first plausible candidate, or None
    """
    candidate = next(iter_candidates(payload, strategies, minimum, maximum), None)
    if candidate is None:
        return None

    return ForceReading(
        value=candidate.value,
        timestamp=time.time() if received_at is None else received_at,
        strategy=candidate.strategy,
        offset=candidate.offset,
    )


def is_target_device(
    device_name: str | None, prefix: str = DEVICE_NAME_PREFIX
) -> bool:
    """Check whether an advertised name belongs to the respiration belt family."""
    if not device_name:
        return False
    return device_name.startswith(prefix)


def hex_dump(payload: bytes) -> str:
    """Format bytes as space-separated lowercase hex for debug logs."""
    return " ".join(f"{b:02x}" for b in payload)
