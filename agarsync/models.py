"""Core dataclasses representing simulated entities."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from . import config

EntityId = int
ConnectionHandle = int


def max_velocity(size: float) -> float:
    """Speed cap for an agar of ``size``: shrinks as it grows, never below the floor."""
    if size <= 0.0:
        return config.AGAR_BASE_SPEED
    return max(config.AGAR_MIN_SPEED, config.AGAR_BASE_SPEED / (size ** config.SPEED_EXPONENT))


class FeedColor(str, Enum):
    RED = "red"
    GREEN = "green"
    BLUE = "blue"


@dataclass(slots=True)
class Agar:
    id: EntityId
    handle: ConnectionHandle
    x: float
    y: float
    size: float = config.AGAR_INIT_SIZE
    # Raw player input; converted and capped only when the agar moves.
    input_x: float = config.INPUT_ORIGIN_X
    input_y: float = config.INPUT_ORIGIN_Y
    max_velocity: float = field(init=False)

    def __post_init__(self) -> None:
        self.max_velocity = max_velocity(self.size)

    def grow(self, amount: float) -> None:
        self.size = min(config.AGAR_MAX_SIZE, self.size + max(0.0, amount))
        self.max_velocity = max_velocity(self.size)


@dataclass(slots=True, frozen=True)
class Feed:
    id: EntityId
    color: FeedColor
    x: float
    y: float
    z: float = 0.0


@dataclass(slots=True)
class Ball:
    """A ball is the pawn of exactly one controlling connection."""

    id: EntityId
    handle: ConnectionHandle
    x: float
    y: float
    vx: float = 0.0
    vy: float = 0.0
    vz: float = 0.0
