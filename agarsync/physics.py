"""Fixed-tick motion for agars (clamped to the world) and balls (wrapped)."""

from __future__ import annotations

from collections.abc import Iterable
from math import hypot

from . import config
from .models import Agar, Ball


def _clamp(value: float, min_value: float, max_value: float) -> float:
    return min(max(value, min_value), max_value)


def _wrap(value: float, size: float) -> float:
    wrapped = value % size
    # Tiny negative inputs can round up to exactly ``size``.
    if wrapped >= size:
        wrapped -= size
    return wrapped


def input_to_velocity(input_x: float, input_y: float, max_speed: float) -> tuple[float, float]:
    x = (input_x - config.INPUT_ORIGIN_X) * config.INPUT_WEIGHT
    y = (input_y - config.INPUT_ORIGIN_Y) * config.INPUT_WEIGHT
    length = hypot(x, y)
    if length <= 0.0:
        return (0.0, 0.0)
    if length > max_speed:
        scale = max_speed / length
        return (x * scale, y * scale)
    return (x, y)


def step_agars(agars: Iterable[Agar], dt: float, width: float, height: float) -> None:
    for agar in agars:
        vx, vy = input_to_velocity(agar.input_x, agar.input_y, agar.max_velocity)
        agar.x = _clamp(agar.x + vx * dt, 0.0, width)
        agar.y = _clamp(agar.y + vy * dt, 0.0, height)


def step_balls(balls: Iterable[Ball], dt: float, width: float, height: float) -> None:
    for ball in balls:
        ball.x = _wrap(ball.x + ball.vx * dt, width)
        ball.y = _wrap(ball.y + ball.vy * dt, height)
