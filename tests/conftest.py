import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from agarsync.feedlog import FeedEventLog  # noqa: E402
from agarsync.replication import GameServer  # noqa: E402


@pytest.fixture
def feed_log() -> FeedEventLog:
    return FeedEventLog()


@pytest.fixture
def agar_server() -> GameServer:
    return GameServer(mode="agar", seed=7, feed_target=0)


@pytest.fixture
def ball_server() -> GameServer:
    return GameServer(mode="ball", seed=7, feed_target=0)

