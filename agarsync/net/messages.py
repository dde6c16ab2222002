"""Wire messages and their JSON-object encoding.

Every message is a JSON object tagged by ``"type"``. Client messages travel on
the reliable channel in both directions; state messages travel server to client
on the unreliable channel.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .. import config
from ..feedlog import FeedDespawn, FeedEvent, FeedSpawn
from ..models import Agar, Ball, EntityId, FeedColor


class ProtocolError(ValueError):
    """Payload that does not decode into a known message."""


@dataclass(slots=True, frozen=True)
class Login:
    pass


@dataclass(slots=True, frozen=True)
class LoginAck:
    id: EntityId


@dataclass(slots=True, frozen=True)
class Input:
    x: float
    y: float


@dataclass(slots=True, frozen=True)
class FeedRequest:
    cursor: int


@dataclass(slots=True, frozen=True)
class FeedResponse:
    events: tuple[FeedEvent, ...] = ()
    # Log length the events bring the receiver up to.
    end: int | None = None


@dataclass(slots=True, frozen=True)
class AgarUpdate:
    size: float
    vx: float
    vy: float
    max_velocity: float
    x: float
    y: float
    z: float = 0.0

    @classmethod
    def from_agar(cls, agar: Agar) -> AgarUpdate:
        return cls(
            size=agar.size,
            vx=agar.input_x,
            vy=agar.input_y,
            max_velocity=agar.max_velocity,
            x=agar.x,
            y=agar.y,
        )


@dataclass(slots=True, frozen=True)
class BallUpdate:
    vx: float
    vy: float
    vz: float
    x: float
    y: float
    z: float = 0.0

    @classmethod
    def from_ball(cls, ball: Ball) -> BallUpdate:
        return cls(vx=ball.vx, vy=ball.vy, vz=ball.vz, x=ball.x, y=ball.y)


@dataclass(slots=True, frozen=True)
class GameStateMessage:
    frame: int
    agars: dict[EntityId, AgarUpdate] = field(default_factory=dict)
    feed_counter: int = 0

    def entities(self) -> dict[EntityId, AgarUpdate]:
        return dict(self.agars)


@dataclass(slots=True, frozen=True)
class BallStateMessage:
    frame: int
    balls: tuple[tuple[EntityId, BallUpdate], ...] = ()

    @property
    def feed_counter(self) -> None:
        return None

    def entities(self) -> dict[EntityId, BallUpdate]:
        return dict(self.balls)


ClientMessage = Login | LoginAck | Input | FeedRequest | FeedResponse
StateMessage = GameStateMessage | BallStateMessage
Message = ClientMessage | StateMessage

CLIENT_MESSAGE_TYPES = (Login, LoginAck, Input, FeedRequest, FeedResponse)
STATE_MESSAGE_TYPES = (GameStateMessage, BallStateMessage)


def is_state_message(message: Message) -> bool:
    return isinstance(message, STATE_MESSAGE_TYPES)


def _vec(values: tuple[float, ...]) -> list[float]:
    return [float(v) for v in values]


def _encode_feed_event(event: FeedEvent) -> dict:
    if isinstance(event, FeedSpawn):
        return {
            "kind": "spawn",
            "id": event.id,
            "color": event.color.value,
            "position": _vec((event.x, event.y, event.z)),
        }
    return {"kind": "despawn", "id": event.id}


def encode(message: Message) -> dict:
    if isinstance(message, Login):
        return {"type": "login"}
    if isinstance(message, LoginAck):
        return {"type": "login_ack", "id": message.id}
    if isinstance(message, Input):
        return {"type": "input", "vector": _vec((message.x, message.y))}
    if isinstance(message, FeedRequest):
        return {"type": "feed_request", "cursor": message.cursor}
    if isinstance(message, FeedResponse):
        payload = {"type": "feed_response", "events": [_encode_feed_event(e) for e in message.events]}
        if message.end is not None:
            payload["end"] = message.end
        return payload
    if isinstance(message, GameStateMessage):
        return {
            "type": "state",
            "frame": message.frame,
            "feedCounter": message.feed_counter,
            "agars": {
                str(entity_id): {
                    "size": update.size,
                    "velocity": _vec((update.vx, update.vy)),
                    "maxVelocity": update.max_velocity,
                    "position": _vec((update.x, update.y, update.z)),
                }
                for entity_id, update in message.agars.items()
            },
        }
    if isinstance(message, BallStateMessage):
        return {
            "type": "ball_state",
            "frame": message.frame,
            "balls": [
                {
                    "id": entity_id,
                    "velocity": _vec((update.vx, update.vy, update.vz)),
                    "position": _vec((update.x, update.y, update.z)),
                }
                for entity_id, update in message.balls
            ],
        }
    raise TypeError(f"Cannot encode {type(message).__name__}")


def _field(payload: dict, name: str) -> Any:
    try:
        return payload[name]
    except KeyError:
        raise ProtocolError(f"Missing field '{name}' in {payload.get('type')!r} message") from None


def _u32(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ProtocolError(f"Field '{name}' must be an integer, got {value!r}")
    if not 0 <= value <= config.MAX_FRAME:
        raise ProtocolError(f"Field '{name}' out of u32 range: {value}")
    return value


def _cursor(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ProtocolError(f"Field '{name}' must be a non-negative integer, got {value!r}")
    return value


def _float(value: Any, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ProtocolError(f"Field '{name}' must be a number, got {value!r}")
    return float(value)


def _floats(value: Any, name: str, size: int) -> tuple[float, ...]:
    # 2D vectors may be sent where a 3D one is expected; z defaults to 0.
    accepted = (2, 3) if size == 3 else (size,)
    if not isinstance(value, (list, tuple)) or len(value) not in accepted:
        raise ProtocolError(f"Field '{name}' must be a list of {size} numbers, got {value!r}")
    values = tuple(_float(v, name) for v in value)
    return values + (0.0,) * (size - len(values))


def _decode_feed_event(raw: Any) -> FeedEvent:
    if not isinstance(raw, dict):
        raise ProtocolError(f"Feed event must be an object, got {raw!r}")
    kind = raw.get("kind")
    entity_id = _u32(_field(raw, "id"), "id")
    if kind == "despawn":
        return FeedDespawn(entity_id)
    if kind != "spawn":
        raise ProtocolError(f"Unknown feed event kind {kind!r}")
    raw_color = _field(raw, "color")
    try:
        color = FeedColor(raw_color)
    except ValueError:
        raise ProtocolError(f"Unknown feed color {raw_color!r}") from None
    x, y, z = _floats(_field(raw, "position"), "position", 3)
    return FeedSpawn(id=entity_id, color=color, x=x, y=y, z=z)


def _decode_agars(raw: Any) -> dict[EntityId, AgarUpdate]:
    if not isinstance(raw, dict):
        raise ProtocolError("Field 'agars' must be an object")
    agars: dict[EntityId, AgarUpdate] = {}
    for key, entry in raw.items():
        try:
            entity_id = _u32(int(key), "agars key")
        except (TypeError, ValueError):
            raise ProtocolError(f"Invalid agar id {key!r}") from None
        if not isinstance(entry, dict):
            raise ProtocolError(f"Agar {key} state must be an object")
        vx, vy = _floats(_field(entry, "velocity"), "velocity", 2)
        x, y, z = _floats(_field(entry, "position"), "position", 3)
        agars[entity_id] = AgarUpdate(
            size=_float(_field(entry, "size"), "size"),
            vx=vx,
            vy=vy,
            max_velocity=_float(_field(entry, "maxVelocity"), "maxVelocity"),
            x=x,
            y=y,
            z=z,
        )
    return agars


def _decode_balls(raw: Any) -> tuple[tuple[EntityId, BallUpdate], ...]:
    if not isinstance(raw, list):
        raise ProtocolError("Field 'balls' must be a list")
    balls = []
    for entry in raw:
        if not isinstance(entry, dict):
            raise ProtocolError("Ball entry must be an object")
        vx, vy, vz = _floats(_field(entry, "velocity"), "velocity", 3)
        x, y, z = _floats(_field(entry, "position"), "position", 3)
        balls.append((_u32(_field(entry, "id"), "id"), BallUpdate(vx=vx, vy=vy, vz=vz, x=x, y=y, z=z)))
    return tuple(balls)


def decode(payload: Any) -> Message:
    if not isinstance(payload, dict):
        raise ProtocolError(f"Message must be an object, got {type(payload).__name__}")

    kind = payload.get("type")
    if kind == "login":
        return Login()
    if kind == "login_ack":
        return LoginAck(_u32(_field(payload, "id"), "id"))
    if kind == "input":
        x, y = _floats(_field(payload, "vector"), "vector", 2)
        return Input(x, y)
    if kind == "feed_request":
        return FeedRequest(_cursor(_field(payload, "cursor"), "cursor"))
    if kind == "feed_response":
        raw_events = _field(payload, "events")
        if not isinstance(raw_events, list):
            raise ProtocolError("Field 'events' must be a list")
        end = payload.get("end")
        return FeedResponse(
            tuple(_decode_feed_event(e) for e in raw_events),
            end=None if end is None else _cursor(end, "end"),
        )
    if kind == "state":
        return GameStateMessage(
            frame=_u32(_field(payload, "frame"), "frame"),
            agars=_decode_agars(_field(payload, "agars")),
            feed_counter=_cursor(_field(payload, "feedCounter"), "feedCounter"),
        )
    if kind == "ball_state":
        return BallStateMessage(
            frame=_u32(_field(payload, "frame"), "frame"),
            balls=_decode_balls(_field(payload, "balls")),
        )
    raise ProtocolError(f"Unknown message type {kind!r}")
