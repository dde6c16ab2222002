"""Connection queues between the core and whatever moves bytes.

The core only ever calls non-blocking queue operations on a ``Connection``:
``send_message`` to enqueue, ``recv_client_message``/``recv_state_message`` to
pop the next decoded message. A transport (the websocket endpoint, or
``LoopbackLink`` in-process) moves encoded payloads in and out.
"""

from __future__ import annotations

import json
import logging
import random
from collections import deque
from enum import IntEnum
from itertools import count

from .. import config
from ..models import ConnectionHandle
from .messages import (
    ClientMessage,
    Message,
    ProtocolError,
    StateMessage,
    decode,
    encode,
    is_state_message,
)

logger = logging.getLogger(__name__)


class Channel(IntEnum):
    RELIABLE = 0
    UNRELIABLE = 1


def channel_for(message: Message) -> Channel:
    return Channel.UNRELIABLE if is_state_message(message) else Channel.RELIABLE


class Connection:
    def __init__(
        self,
        handle: ConnectionHandle,
        *,
        reliable_buffer_size: int = config.RELIABLE_BUFFER_SIZE,
        state_buffer_size: int = config.STATE_BUFFER_SIZE,
    ) -> None:
        self.handle = handle
        self.reliable_buffer_size = reliable_buffer_size
        self.connected = True

        self._inbound_client: deque[ClientMessage] = deque()
        self._inbound_state: deque[StateMessage] = deque(maxlen=state_buffer_size)
        self._outbound_reliable: deque[dict] = deque()
        self._outbound_state: deque[dict] = deque(maxlen=state_buffer_size)

    def __repr__(self) -> str:
        return f"Connection(handle={self.handle}, connected={self.connected})"

    def send_message(self, message: Message) -> Message | None:
        """Queue ``message``; returns it back when it could not be queued."""
        if not self.connected:
            return message
        payload = encode(message)
        if channel_for(message) is Channel.UNRELIABLE:
            self._outbound_state.append(payload)
            return None
        if len(self._outbound_reliable) >= self.reliable_buffer_size:
            return message
        self._outbound_reliable.append(payload)
        return None

    def deliver(self, payload: object) -> bool:
        """Decode an inbound payload and queue it; undecodable payloads are dropped."""
        try:
            message = decode(payload)
        except ProtocolError as exc:
            logger.warning("Dropping undecodable payload on [%s]: %s", self.handle, exc)
            return False
        if is_state_message(message):
            self._inbound_state.append(message)
        else:
            self._inbound_client.append(message)
        return True

    def recv_client_message(self) -> ClientMessage | None:
        if not self._inbound_client:
            return None
        return self._inbound_client.popleft()

    def recv_state_message(self) -> StateMessage | None:
        if not self._inbound_state:
            return None
        return self._inbound_state.popleft()

    def drain_outbound(self) -> list[tuple[Channel, dict]]:
        """Hand every queued payload to the transport, reliable ones first."""
        drained = [(Channel.RELIABLE, payload) for payload in self._outbound_reliable]
        drained.extend((Channel.UNRELIABLE, payload) for payload in self._outbound_state)
        self._outbound_reliable.clear()
        self._outbound_state.clear()
        return drained

    @property
    def pending_outbound(self) -> int:
        return len(self._outbound_reliable) + len(self._outbound_state)


class ConnectionRegistry:
    def __init__(self) -> None:
        self.connections: dict[ConnectionHandle, Connection] = {}
        self._handles = count(1)
        self._closed: deque[ConnectionHandle] = deque()

    def __len__(self) -> int:
        return len(self.connections)

    def __iter__(self):
        return iter(list(self.connections.values()))

    def get(self, handle: ConnectionHandle) -> Connection | None:
        return self.connections.get(handle)

    def open(self) -> Connection:
        connection = Connection(next(self._handles))
        self.connections[connection.handle] = connection
        logger.info("Connection [%s] opened", connection.handle)
        return connection

    def close(self, handle: ConnectionHandle) -> None:
        connection = self.connections.pop(handle, None)
        if connection is None:
            return
        connection.connected = False
        self._closed.append(handle)
        logger.info("Connection [%s] closed", handle)

    def drain_closed(self) -> list[ConnectionHandle]:
        closed = list(self._closed)
        self._closed.clear()
        return closed

    def deliver(self, handle: ConnectionHandle, payload: object) -> bool:
        connection = self.connections.get(handle)
        if connection is None:
            logger.warning("Dropping packet for unknown connection [%s]", handle)
            return False
        return connection.deliver(payload)


class LoopbackLink:
    """In-process link between a server-side and a client-side ``Connection``.

    Reliable payloads always arrive, in order. Unreliable payloads can be
    dropped, duplicated and shuffled to exercise the reconciler.
    """

    def __init__(
        self,
        server_side: Connection,
        client_side: Connection,
        *,
        loss: float = 0.0,
        duplicate: float = 0.0,
        reorder: bool = False,
        seed: int | None = None,
    ) -> None:
        self.server_side = server_side
        self.client_side = client_side
        self.loss = loss
        self.duplicate = duplicate
        self.reorder = reorder
        self.rng = random.Random(seed)
        self.dropped = 0
        self.delivered = 0

    def pump(self) -> int:
        moved = self._transfer(self.client_side, self.server_side)
        moved += self._transfer(self.server_side, self.client_side)
        return moved

    def _transfer(self, source: Connection, target: Connection) -> int:
        reliable: list[dict] = []
        unreliable: list[dict] = []
        for channel, payload in source.drain_outbound():
            # Round-trip through JSON as a real socket would.
            wire = json.loads(json.dumps(payload))
            if channel is Channel.RELIABLE:
                reliable.append(wire)
                continue
            if self.rng.random() < self.loss:
                self.dropped += 1
                continue
            unreliable.append(wire)
            if self.rng.random() < self.duplicate:
                unreliable.append(wire)

        if self.reorder:
            self.rng.shuffle(unreliable)

        for payload in reliable + unreliable:
            target.deliver(payload)
        self.delivered += len(reliable) + len(unreliable)
        return len(reliable) + len(unreliable)
