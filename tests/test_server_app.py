import asyncio
import json

from fastapi.testclient import TestClient

from agarsync.feedlog import FeedLogInvariantError
from agarsync.net.messages import Login, encode
from agarsync.replication import GameServer
from agarsync.server import RealtimeServer, app


def _receive_until(websocket, message_type: str, limit: int = 500) -> dict:
    for _ in range(limit):
        payload = websocket.receive_json()
        if payload.get("type") == message_type:
            return payload
    raise AssertionError(f"no {message_type} message within {limit} frames")


def test_websocket_login_state_and_feeds() -> None:
    with TestClient(app) as client:
        with client.websocket_connect("/ws") as websocket:
            websocket.send_json({"type": "login"})
            ack = _receive_until(websocket, "login_ack")
            player_id = ack["id"]

            for _ in range(500):
                state = _receive_until(websocket, "state")
                if str(player_id) in state["agars"]:
                    break
            else:
                raise AssertionError("own agar never broadcast")
            assert state["feedCounter"] >= 100

            websocket.send_json({"type": "feed_request", "cursor": 0})
            response = _receive_until(websocket, "feed_response")
            assert len(response["events"]) == 100
            assert all(event["kind"] == "spawn" for event in response["events"])

            websocket.send_text("not json")
            websocket.send_json({"type": "input", "vector": [900.0, 500.0]})
            _receive_until(websocket, "state")

        status = client.get("/api/status").json()
        assert status["mode"] == "agar"
        assert status["frame"] > 0
        assert status["ticking"] is True


class _BrokenSocket:
    async def send_json(self, payload: dict) -> None:
        raise RuntimeError("socket gone")


def test_failed_send_drops_the_connection() -> None:
    server = RealtimeServer(GameServer(mode="agar", seed=1, feed_target=5), tick_rate=30)

    async def exercise() -> None:
        handle = await server.connect(_BrokenSocket())
        await server.receive(handle, json.dumps(encode(Login())))
        await server.tick_once(1.0 / 30)
        assert handle not in server.sockets
        assert server.game.connections.get(handle) is None
        await server.tick_once(1.0 / 30)
        assert server.game.world.agars == {}

    asyncio.run(exercise())


def test_failed_tick_ends_loop_and_shutdown_is_clean(caplog) -> None:
    game = GameServer(mode="agar", seed=1, feed_target=0)

    def broken_tick(dt: float) -> None:
        raise FeedLogInvariantError("Feed 1 spawned twice")

    game.tick = broken_tick
    server = RealtimeServer(game, tick_rate=30)

    async def exercise() -> None:
        await server.start()
        for _ in range(50):
            await asyncio.sleep(0)
            if not server.ticking:
                break
        assert not server.ticking
        await server.stop()

    asyncio.run(exercise())

    assert "Tick 0 failed" in caplog.text
    assert "Tick loop had stopped at frame 0" in caplog.text
