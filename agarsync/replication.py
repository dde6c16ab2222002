"""Authoritative server state and the per-tick replication pipeline."""

from __future__ import annotations

import logging
import random

from . import config
from .collision import resolve_feed_collisions
from .feedlog import FeedEventLog, FeedSpawner
from .models import ConnectionHandle
from .net.messages import (
    AgarUpdate,
    BallStateMessage,
    BallUpdate,
    FeedRequest,
    FeedResponse,
    GameStateMessage,
    Input,
    Login,
    LoginAck,
    Message,
    StateMessage,
)
from .net.transport import Connection, ConnectionRegistry
from .physics import input_to_velocity, step_agars, step_balls
from .world import GameWorld

logger = logging.getLogger(__name__)


class GameServer:
    """Owns everything a tick mutates: world, feed log, frame counter, connections.

    ``tick`` runs the stages in a fixed order:
    disconnects -> messages -> simulate -> collide -> refill feeds -> broadcast.
    """

    def __init__(
        self,
        *,
        mode: str = config.GAME_MODE,
        seed: int | None = config.RANDOM_SEED,
        feed_target: int = config.FEED_TARGET_COUNT,
        width: float = config.WORLD_WIDTH,
        height: float = config.WORLD_HEIGHT,
        connections: ConnectionRegistry | None = None,
    ) -> None:
        if mode not in config.GAME_MODES:
            raise ValueError(f"Unknown game mode '{mode}'. Available: {', '.join(config.GAME_MODES)}")

        self.mode = mode
        self.world = GameWorld(seed, width=width, height=height)
        self.feed_log = FeedEventLog()
        self.spawner = FeedSpawner(feed_target, random.Random(seed))
        self.connections = connections if connections is not None else ConnectionRegistry()
        self.frame = 0

        if self.mode == "agar":
            self.refill_feeds()

    def describe(self) -> dict:
        return {
            "mode": self.mode,
            "frame": self.frame,
            "connections": len(self.connections),
            "agars": len(self.world.agars),
            "balls": len(self.world.balls),
            "feeds": self.feed_log.live_count,
            "feedEvents": self.feed_log.total_events,
        }

    def tick(self, dt: float) -> StateMessage:
        self.handle_disconnects()
        self.handle_messages()
        self.simulate(dt)
        self.collide()
        self.refill_feeds()
        return self.broadcast()

    def handle_disconnects(self) -> None:
        for handle in self.connections.drain_closed():
            entity_id = self.world.remove_controller(handle)
            if entity_id is not None:
                logger.info("Removed entity %d of disconnected connection [%s]", entity_id, handle)

    def handle_messages(self) -> None:
        replies: list[tuple[Connection, Message, str]] = []

        for connection in self.connections:
            while (message := connection.recv_client_message()) is not None:
                if config.DEBUG_LOG_MESSAGES:
                    logger.debug("ClientMessage received on [%s]: %r", connection.handle, message)
                reply = self._handle_client_message(connection.handle, message)
                if reply is not None:
                    replies.append((connection, reply[0], reply[1]))

            while (state := connection.recv_state_message()) is not None:
                logger.error("%s received on [%s]", type(state).__name__, connection.handle)

        for connection, reply, what in replies:
            self._send(connection, reply, what)

    def _handle_client_message(
        self, handle: ConnectionHandle, message: Message
    ) -> tuple[Message, str] | None:
        if isinstance(message, Login):
            entity_id = self._login(handle)
            return (LoginAck(entity_id), "login ack")

        if isinstance(message, Input):
            if self.mode == "agar":
                self.world.set_agar_input(handle, message.x, message.y)
            else:
                vx, vy = input_to_velocity(message.x, message.y, config.BALL_MAX_SPEED)
                self.world.set_ball_velocity(handle, vx, vy)
            return None

        if isinstance(message, FeedRequest):
            events = self.feed_log.view_from(message.cursor)
            logger.info("Send %d feed events to [%s] from cursor %d", len(events), handle, message.cursor)
            return (FeedResponse(tuple(events), end=self.feed_log.total_events), "feeds")

        logger.error("Unexpected %s received on [%s]", type(message).__name__, handle)
        return None

    def _login(self, handle: ConnectionHandle) -> int:
        existing = self.world.controlled_entity(handle)
        if self.mode == "agar":
            entity = self.world.add_agar(handle)
        else:
            entity = self.world.add_ball(handle)
        if existing is None:
            logger.info("Spawning %s %d for [%s] at %.1fx%.1f", self.mode, entity.id, handle, entity.x, entity.y)
        else:
            logger.info("Repeated login on [%s], re-acking %d", handle, entity.id)
        return entity.id

    def simulate(self, dt: float) -> None:
        if self.mode == "agar":
            step_agars(self.world.agars.values(), dt, self.world.width, self.world.height)
        else:
            step_balls(self.world.balls.values(), dt, self.world.width, self.world.height)

    def collide(self) -> None:
        if self.mode != "agar":
            return
        eaten = resolve_feed_collisions(self.world, self.feed_log)
        if eaten:
            logger.debug("Resolved %d feed collisions", len(eaten))

    def refill_feeds(self) -> int:
        if self.mode != "agar":
            return 0
        return self.spawner.refill(self.world, self.feed_log)

    def build_state_message(self) -> StateMessage:
        if self.mode == "agar":
            return GameStateMessage(
                frame=self.frame,
                agars={agar.id: AgarUpdate.from_agar(agar) for agar in self.world.agars.values()},
                feed_counter=self.feed_log.total_events,
            )
        return BallStateMessage(
            frame=self.frame,
            balls=tuple((ball.id, BallUpdate.from_ball(ball)) for ball in self.world.balls.values()),
        )

    def broadcast(self) -> StateMessage:
        message = self.build_state_message()
        self.frame += 1

        for connection in self.connections:
            self._send(connection, message, "state")
        return message

    def _send(self, connection: Connection, message: Message, what: str) -> bool:
        leftover = connection.send_message(message)
        if leftover is not None:
            logger.error("Unable to send %s to [%s]: %r", what, connection.handle, type(leftover).__name__)
            return False
        return True
