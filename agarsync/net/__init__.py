"""Wire messages and the transport seam."""

from .messages import (
    AgarUpdate,
    BallStateMessage,
    BallUpdate,
    FeedRequest,
    FeedResponse,
    GameStateMessage,
    Input,
    Login,
    LoginAck,
    ProtocolError,
    decode,
    encode,
)
from .transport import Channel, Connection, ConnectionRegistry, LoopbackLink

__all__ = [
    "AgarUpdate",
    "BallStateMessage",
    "BallUpdate",
    "Channel",
    "Connection",
    "ConnectionRegistry",
    "FeedRequest",
    "FeedResponse",
    "GameStateMessage",
    "Input",
    "Login",
    "LoginAck",
    "LoopbackLink",
    "ProtocolError",
    "decode",
    "encode",
]
