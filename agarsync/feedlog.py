"""Append-only feed spawn/despawn history with compacted incremental delivery.

Clients track how many events they have consumed (their cursor) and ask for
everything after it. The log answers with the smallest event list that moves
such a client to the current live set:

* a spawn followed by a despawn of the same id inside the window cancels out,
* a despawn whose spawn predates the window is kept, since the client still
  holds that feed and must drop it.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Iterable
from dataclasses import dataclass

from .models import EntityId, Feed, FeedColor
from .world import GameWorld

logger = logging.getLogger(__name__)


class FeedLogInvariantError(AssertionError):
    """Feed bookkeeping went out of sync with the log."""


@dataclass(slots=True, frozen=True)
class FeedSpawn:
    id: EntityId
    color: FeedColor
    x: float
    y: float
    z: float = 0.0

    @classmethod
    def from_feed(cls, feed: Feed) -> FeedSpawn:
        return cls(id=feed.id, color=feed.color, x=feed.x, y=feed.y, z=feed.z)


@dataclass(slots=True, frozen=True)
class FeedDespawn:
    id: EntityId


FeedEvent = FeedSpawn | FeedDespawn


def replay(events: Iterable[FeedEvent]) -> dict[EntityId, FeedSpawn]:
    """Apply ``events`` in order to an empty live set."""
    live: dict[EntityId, FeedSpawn] = {}
    for event in events:
        if isinstance(event, FeedSpawn):
            live[event.id] = event
        else:
            live.pop(event.id, None)
    return live


class FeedEventLog:
    def __init__(self) -> None:
        self.events: list[FeedEvent] = []
        self.snapshot: dict[EntityId, FeedSpawn] = {}

    def __len__(self) -> int:
        return len(self.events)

    @property
    def total_events(self) -> int:
        """Cursor value of a client that has consumed the whole log."""
        return len(self.events)

    @property
    def live_count(self) -> int:
        return len(self.snapshot)

    def spawn(self, event: FeedSpawn) -> None:
        if event.id in self.snapshot:
            raise FeedLogInvariantError(f"Feed {event.id} spawned twice")
        self.events.append(event)
        self.snapshot[event.id] = event

    def despawn(self, feed_id: EntityId) -> FeedDespawn:
        if feed_id not in self.snapshot:
            raise FeedLogInvariantError(f"Feed {feed_id} despawned but not live")
        event = FeedDespawn(feed_id)
        self.events.append(event)
        del self.snapshot[feed_id]
        return event

    def snapshot_view(self) -> list[FeedSpawn]:
        return list(self.snapshot.values())

    def incremental_view(self, cursor: int) -> list[FeedEvent]:
        start = min(max(0, cursor), len(self.events))
        window: list[FeedEvent | None] = []
        spawned_at: dict[EntityId, int] = {}

        for event in self.events[start:]:
            if isinstance(event, FeedSpawn):
                spawned_at[event.id] = len(window)
                window.append(event)
                continue
            index = spawned_at.pop(event.id, None)
            if index is None:
                window.append(event)
            else:
                window[index] = None

        return [event for event in window if event is not None]

    def view_from(self, cursor: int) -> list[FeedEvent]:
        """Events a client at ``cursor`` needs; a zero cursor gets the live set."""
        if cursor <= 0:
            return list(self.snapshot_view())
        return self.incremental_view(cursor)


class FeedSpawner:
    """Keeps the live feed count topped up to ``target`` every tick."""

    def __init__(self, target: int, rng: random.Random | None = None) -> None:
        self.target = target
        self.rng = rng or random.Random()

    def refill(self, world: GameWorld, log: FeedEventLog) -> int:
        missing = self.target - log.live_count
        if missing <= 0:
            return 0

        for _ in range(missing):
            x = self.rng.uniform(0.0, world.width)
            y = self.rng.uniform(0.0, world.height)
            feed = world.spawn_feed(self.rng.choice(list(FeedColor)), x, y)
            log.spawn(FeedSpawn.from_feed(feed))

        logger.debug("Spawned %d feeds (live=%d)", missing, log.live_count)
        return missing
