"""Go Direct respiration belt protocol codec (pure, no I/O)."""

from kasina_breath.protocol.commands import CommandKind, build_command
from kasina_breath.protocol.decoder import (
    DEFAULT_STRATEGIES,
    DecodeStrategy,
    decode_candidates,
    decode_force,
    hex_dump,
    is_target_device,
)
from kasina_breath.protocol.types import ForceCandidate, ForceReading

__all__ = [
    "CommandKind",
    "DEFAULT_STRATEGIES",
    "DecodeStrategy",
    "ForceCandidate",
    "ForceReading",
    "build_command",
    "decode_candidates",
    "decode_force",
    "hex_dump",
    "is_target_device",
]
