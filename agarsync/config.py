"""Runtime tunables for the agar replication server and client."""

from __future__ import annotations

import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip()
    return value if value else default


def _env_optional_int(name: str) -> int | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


WORLD_WIDTH = 2000.0
WORLD_HEIGHT = 2000.0

WINDOW_WIDTH = 1000.0
WINDOW_HEIGHT = 1000.0

TICK_RATE = max(1, _env_int("AGARSYNC_TICK_RATE", 30))

GAME_MODE = _env_str("AGARSYNC_GAME_MODE", "agar").lower()
GAME_MODES = ("agar", "ball")

# Cursor input is measured from the window centre and halved before capping.
INPUT_ORIGIN_X = WINDOW_WIDTH / 2.0
INPUT_ORIGIN_Y = WINDOW_HEIGHT / 2.0
INPUT_WEIGHT = 0.5

AGAR_INIT_SIZE = 15.0
AGAR_MAX_SIZE = 1000.0
AGAR_BASE_SPEED = 1000.0
AGAR_MIN_SPEED = 40.0
SPEED_EXPONENT = 0.45

FEED_GROWTH = 1.0
FEED_TARGET_COUNT = max(0, _env_int("AGARSYNC_FEED_TARGET", 100))

BALL_START_SPEED = 120.0
BALL_MAX_SPEED = 400.0

RANDOM_SEED = _env_optional_int("AGARSYNC_SEED")

MAX_ENTITY_ID = 0xFFFFFFFF
MAX_FRAME = 0xFFFFFFFF

# Reliable sends beyond this many queued messages are handed back to the caller.
RELIABLE_BUFFER_SIZE = 64
# Unreliable buffers keep only the newest state messages.
STATE_BUFFER_SIZE = 8

LOGIN_RETRY_PASSES = max(1, _env_int("AGARSYNC_LOGIN_RETRY_PASSES", 30))
TOMBSTONE_LIMIT = 4096

DEBUG_LOG_MESSAGES = _env_bool("AGARSYNC_DEBUG_MESSAGES", False)
