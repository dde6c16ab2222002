"""Client-side mirror of server state.

State messages arrive unordered, possibly duplicated or lost. The frame stamp
on each message is the only ordering: a mirrored entity accepts an update only
from a frame newer than the one it last applied, and a newer frame that no
longer lists an entity removes it. Entities first seen during a pass are
buffered and created once, after the whole batch has been looked at.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from . import config
from .feedlog import FeedEvent, FeedSpawn
from .models import EntityId
from .net.messages import (
    AgarUpdate,
    BallUpdate,
    FeedRequest,
    FeedResponse,
    Input,
    Login,
    LoginAck,
    StateMessage,
)
from .net.transport import Connection

logger = logging.getLogger(__name__)

EntityState = AgarUpdate | BallUpdate


class MirrorEventKind(str, Enum):
    APPEARED = "appeared"
    UPDATED = "updated"
    DISAPPEARED = "disappeared"


@dataclass(slots=True, frozen=True)
class MirrorEvent:
    kind: MirrorEventKind
    entity_id: EntityId
    state: EntityState | FeedSpawn | None = None
    frame: int | None = None


@dataclass(slots=True)
class UpdateContext:
    id: EntityId
    frame: int


@dataclass(slots=True)
class MirroredEntity:
    context: UpdateContext
    state: EntityState


@dataclass(slots=True)
class ReconcileResult:
    events: list[MirrorEvent]
    feed_cursor: int | None = None


class ClientReconciler:
    def __init__(self, *, tombstone_limit: int = config.TOMBSTONE_LIMIT) -> None:
        self.entities: dict[EntityId, MirroredEntity] = {}
        self.feed_counter = 0
        self.tombstone_limit = tombstone_limit
        # id -> frame of the message that removed it
        self._tombstones: OrderedDict[EntityId, int] = OrderedDict()

    def frame_of(self, entity_id: EntityId) -> int | None:
        entity = self.entities.get(entity_id)
        return entity.context.frame if entity is not None else None

    def reconcile(self, messages: Iterable[StateMessage]) -> ReconcileResult:
        events: list[MirrorEvent] = []
        to_spawn: dict[EntityId, tuple[int, EntityState]] = {}
        feed_cursor: int | None = None

        for message in messages:
            frame = message.frame
            incoming = message.entities()

            for entity_id, entity in list(self.entities.items()):
                update = incoming.pop(entity_id, None)
                if entity.context.frame >= frame:
                    continue
                if update is None:
                    del self.entities[entity_id]
                    self._bury(entity_id, frame)
                    events.append(MirrorEvent(MirrorEventKind.DISAPPEARED, entity_id, frame=frame))
                    continue
                entity.context.frame = frame
                entity.state = update
                events.append(MirrorEvent(MirrorEventKind.UPDATED, entity_id, update, frame))

            # A newer frame without a buffered id means it is already gone.
            for entity_id, (buffered_frame, _) in list(to_spawn.items()):
                if buffered_frame < frame and entity_id not in incoming:
                    del to_spawn[entity_id]
                    self._bury(entity_id, frame)

            for entity_id, update in incoming.items():
                if self._tombstones.get(entity_id, -1) >= frame:
                    continue
                buffered = to_spawn.get(entity_id)
                if buffered is None or buffered[0] <= frame:
                    to_spawn[entity_id] = (frame, update)

            counter = message.feed_counter
            if counter is not None and counter > self.feed_counter:
                if feed_cursor is None:
                    feed_cursor = self.feed_counter
                self.feed_counter = counter

        for entity_id, (frame, update) in to_spawn.items():
            self.entities[entity_id] = MirroredEntity(UpdateContext(entity_id, frame), update)
            self._tombstones.pop(entity_id, None)
            events.append(MirrorEvent(MirrorEventKind.APPEARED, entity_id, update, frame))

        return ReconcileResult(events, feed_cursor)

    def _bury(self, entity_id: EntityId, frame: int) -> None:
        self._tombstones[entity_id] = max(frame, self._tombstones.get(entity_id, -1))
        self._tombstones.move_to_end(entity_id)
        while len(self._tombstones) > self.tombstone_limit:
            self._tombstones.popitem(last=False)


class FeedMirror:
    """Local live-feed set rebuilt from feed responses."""

    def __init__(self) -> None:
        self.feeds: dict[EntityId, FeedSpawn] = {}

    def apply(self, events: Iterable[FeedEvent]) -> list[MirrorEvent]:
        changes: list[MirrorEvent] = []
        for event in events:
            if isinstance(event, FeedSpawn):
                if event.id in self.feeds:
                    continue
                self.feeds[event.id] = event
                changes.append(MirrorEvent(MirrorEventKind.APPEARED, event.id, event))
            elif self.feeds.pop(event.id, None) is not None:
                changes.append(MirrorEvent(MirrorEventKind.DISAPPEARED, event.id))
        return changes


class GameClient:
    """Drives one connection: login, input, and the per-frame reconciliation pass."""

    def __init__(self, connection: Connection, *, login_retry_passes: int = config.LOGIN_RETRY_PASSES) -> None:
        self.connection = connection
        self.login_retry_passes = max(1, login_retry_passes)
        self.player_id: EntityId | None = None
        self.reconciler = ClientReconciler()
        self.feeds = FeedMirror()
        # Feed log position the local feed set reflects exactly.
        self.feed_cursor = 0
        self.feed_request_pending = False
        self._login_requested = False
        self._passes_since_login = 0

    @property
    def logged_in(self) -> bool:
        return self.player_id is not None

    def login(self) -> None:
        logger.info("Logging in on [%s]", self.connection.handle)
        self._login_requested = True
        self._passes_since_login = 0
        self._send(Login(), "login message")

    def send_input(self, x: float, y: float) -> None:
        self._send(Input(x, y), "input")

    def update(self) -> list[MirrorEvent]:
        """Drain everything queued for this frame and return the mirror changes."""
        events: list[MirrorEvent] = []

        while (message := self.connection.recv_client_message()) is not None:
            if isinstance(message, LoginAck):
                if self.player_id != message.id:
                    logger.info("Logged in as %d", message.id)
                self.player_id = message.id
            elif isinstance(message, FeedResponse):
                events.extend(self._apply_feed_response(message))
            else:
                logger.error("Unexpected %s received by client", type(message).__name__)

        states: list[StateMessage] = []
        while (state := self.connection.recv_state_message()) is not None:
            states.append(state)

        result = self.reconciler.reconcile(states)
        events.extend(result.events)
        # While a request is in flight the response handler catches up instead.
        # Ask from what the local feed set holds; the reconciler's counter may
        # already be ahead of it when an earlier request failed to send.
        if result.feed_cursor is not None and not self.feed_request_pending:
            self._request_feeds(self.feed_cursor)

        self._retry_login()
        return events

    def _request_feeds(self, cursor: int) -> None:
        self.feed_request_pending = self._send(FeedRequest(cursor), "feed request")

    def _apply_feed_response(self, response: FeedResponse) -> list[MirrorEvent]:
        changes = self.feeds.apply(response.events)
        self.feed_request_pending = False
        if response.end is None:
            self.feed_cursor = self.reconciler.feed_counter
            return changes

        self.feed_cursor = response.end
        self.reconciler.feed_counter = max(self.reconciler.feed_counter, response.end)
        if self.reconciler.feed_counter > self.feed_cursor:
            self._request_feeds(self.feed_cursor)
        return changes

    def _retry_login(self) -> None:
        if not self._login_requested or self.logged_in:
            return
        self._passes_since_login += 1
        if self._passes_since_login >= self.login_retry_passes:
            logger.warning("No login ack after %d passes, retrying", self._passes_since_login)
            self.login()

    def _send(self, message, what: str) -> bool:
        if self.connection.send_message(message) is not None:
            logger.error("Unable to send %s", what)
            return False
        return True
