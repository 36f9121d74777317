"""Protocol codec type definitions."""

from pydantic import BaseModel, ConfigDict, Field


class ForceCandidate(BaseModel):
    """One plausible interpretation of a packet as a force value."""

    model_config = ConfigDict(frozen=True)

    value: float = Field(description="Decoded force (N)")
    strategy: str = Field(description="Name of the interpretation that produced it")
    offset: int = Field(ge=0, description="Byte offset the value was read from")


class ForceReading(BaseModel):
    """
    A force value selected from a raw notification.

    The value is heuristic: the packet layout is not documented, so the
    reading records which interpretation was used to produce it.
    """

    model_config = ConfigDict(frozen=True)

    value: float = Field(description="Force (N, heuristic)")
    timestamp: float = Field(description="Receive time (epoch seconds)")
    strategy: str = Field(default="", description="Winning decode strategy")
    offset: int = Field(default=0, ge=0, description="Byte offset of the value")
