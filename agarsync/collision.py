"""Agar/feed proximity checks and growth."""

from __future__ import annotations

from . import config
from .feedlog import FeedEventLog
from .models import EntityId
from .world import GameWorld


def _distance_sq(ax: float, ay: float, bx: float, by: float) -> float:
    dx = ax - bx
    dy = ay - by
    return dx * dx + dy * dy


def resolve_feed_collisions(
    world: GameWorld,
    log: FeedEventLog,
    growth: float = config.FEED_GROWTH,
) -> list[tuple[EntityId, EntityId]]:
    """Consume every feed closer to an agar than its size.

    Agars are visited in world insertion order; a feed eaten by one agar is gone
    for the agars after it. Returns ``(agar_id, feed_id)`` pairs.
    """
    eaten: list[tuple[EntityId, EntityId]] = []

    for agar in world.agars.values():
        for feed in list(world.feeds.values()):
            if _distance_sq(agar.x, agar.y, feed.x, feed.y) >= agar.size * agar.size:
                continue
            world.remove_feed(feed.id)
            log.despawn(feed.id)
            agar.grow(growth)
            eaten.append((agar.id, feed.id))

    return eaten
