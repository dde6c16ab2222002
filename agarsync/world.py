"""Authoritative in-memory world: typed entity maps keyed by entity id."""

from __future__ import annotations

import random
from itertools import count

from . import config
from .models import Agar, Ball, ConnectionHandle, EntityId, Feed, FeedColor


class GameWorld:
    def __init__(
        self,
        seed: int | None = None,
        *,
        width: float = config.WORLD_WIDTH,
        height: float = config.WORLD_HEIGHT,
    ) -> None:
        self.rng = random.Random(seed)
        self.width = width
        self.height = height

        self.agars: dict[EntityId, Agar] = {}
        self.feeds: dict[EntityId, Feed] = {}
        self.balls: dict[EntityId, Ball] = {}
        # At most one controlled entity per connection handle.
        self.controllers: dict[ConnectionHandle, EntityId] = {}

        self._entity_ids = count(1)

    def _next_entity_id(self) -> EntityId:
        entity_id = next(self._entity_ids)
        if entity_id > config.MAX_ENTITY_ID:
            raise OverflowError("Entity id space exhausted")
        return entity_id

    def random_position(self) -> tuple[float, float]:
        return (self.rng.uniform(0.0, self.width), self.rng.uniform(0.0, self.height))

    def controlled_entity(self, handle: ConnectionHandle) -> EntityId | None:
        return self.controllers.get(handle)

    def add_agar(self, handle: ConnectionHandle) -> Agar:
        existing = self.controllers.get(handle)
        if existing is not None and existing in self.agars:
            return self.agars[existing]

        x, y = self.random_position()
        agar = Agar(id=self._next_entity_id(), handle=handle, x=x, y=y)
        self.agars[agar.id] = agar
        self.controllers[handle] = agar.id
        return agar

    def add_ball(self, handle: ConnectionHandle, speed: float = config.BALL_START_SPEED) -> Ball:
        existing = self.controllers.get(handle)
        if existing is not None and existing in self.balls:
            return self.balls[existing]

        x, y = self.random_position()
        ball = Ball(
            id=self._next_entity_id(),
            handle=handle,
            x=x,
            y=y,
            vx=self.rng.uniform(-speed, speed),
            vy=self.rng.uniform(-speed, speed),
        )
        self.balls[ball.id] = ball
        self.controllers[handle] = ball.id
        return ball

    def remove_controller(self, handle: ConnectionHandle) -> EntityId | None:
        entity_id = self.controllers.pop(handle, None)
        if entity_id is None:
            return None
        self.agars.pop(entity_id, None)
        self.balls.pop(entity_id, None)
        return entity_id

    def set_agar_input(self, handle: ConnectionHandle, x: float, y: float) -> bool:
        agar = self.agars.get(self.controllers.get(handle, -1))
        if agar is None:
            return False
        agar.input_x = x
        agar.input_y = y
        return True

    def set_ball_velocity(self, handle: ConnectionHandle, vx: float, vy: float) -> bool:
        ball = self.balls.get(self.controllers.get(handle, -1))
        if ball is None:
            return False
        ball.vx = vx
        ball.vy = vy
        return True

    def spawn_feed(self, color: FeedColor | None = None, x: float | None = None, y: float | None = None) -> Feed:
        if x is None or y is None:
            x, y = self.random_position()
        feed = Feed(
            id=self._next_entity_id(),
            color=color if color is not None else self.rng.choice(list(FeedColor)),
            x=x,
            y=y,
        )
        self.feeds[feed.id] = feed
        return feed

    def remove_feed(self, feed_id: EntityId) -> Feed | None:
        return self.feeds.pop(feed_id, None)
