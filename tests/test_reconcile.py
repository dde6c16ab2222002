from agarsync.feedlog import FeedDespawn, FeedEventLog, FeedSpawn
from agarsync.models import FeedColor
from agarsync.net.messages import (
    AgarUpdate,
    BallStateMessage,
    BallUpdate,
    FeedRequest,
    FeedResponse,
    GameStateMessage,
    Login,
    LoginAck,
    encode,
)
from agarsync.net.transport import Connection
from agarsync.reconcile import ClientReconciler, FeedMirror, GameClient, MirrorEventKind


def agar_at(x: float, y: float = 0.0, size: float = 15.0) -> AgarUpdate:
    return AgarUpdate(size=size, vx=0.0, vy=0.0, max_velocity=100.0, x=x, y=y)


def state(frame: int, feed_counter: int = 0, **agars: AgarUpdate) -> GameStateMessage:
    return GameStateMessage(
        frame=frame,
        agars={int(key.lstrip("a")): update for key, update in agars.items()},
        feed_counter=feed_counter,
    )


def kinds(result) -> list[tuple[str, int]]:
    return [(e.kind.value, e.entity_id) for e in result.events]


def test_new_entity_is_mirrored_with_message_frame() -> None:
    reconciler = ClientReconciler()
    result = reconciler.reconcile([state(1, a7=agar_at(10.0))])

    assert kinds(result) == [("appeared", 7)]
    assert reconciler.entities[7].context.id == 7
    assert reconciler.entities[7].context.frame == 1
    assert reconciler.entities[7].state.x == 10.0


def test_stale_update_leaves_entity_untouched() -> None:
    reconciler = ClientReconciler()
    reconciler.reconcile([state(5, a7=agar_at(50.0))])

    result = reconciler.reconcile([state(3, a7=agar_at(30.0))])

    assert result.events == []
    assert reconciler.entities[7].state.x == 50.0
    assert reconciler.frame_of(7) == 5


def test_same_frame_is_a_no_op() -> None:
    reconciler = ClientReconciler()
    reconciler.reconcile([state(5, a7=agar_at(50.0))])

    result = reconciler.reconcile([state(5, a7=agar_at(99.0))])

    assert result.events == []
    assert reconciler.entities[7].state.x == 50.0


def test_newer_update_is_applied() -> None:
    reconciler = ClientReconciler()
    reconciler.reconcile([state(5, a7=agar_at(50.0))])

    result = reconciler.reconcile([state(6, a7=agar_at(60.0))])

    assert kinds(result) == [("updated", 7)]
    assert reconciler.entities[7].state.x == 60.0
    assert reconciler.frame_of(7) == 6


def test_entity_missing_from_newer_frame_is_removed() -> None:
    reconciler = ClientReconciler()
    reconciler.reconcile([state(1, a1=agar_at(1.0), a2=agar_at(2.0))])

    result = reconciler.reconcile([state(2, a2=agar_at(2.5))])

    assert kinds(result) == [("disappeared", 1), ("updated", 2)]
    assert set(reconciler.entities) == {2}


def test_entity_missing_from_stale_frame_is_kept() -> None:
    reconciler = ClientReconciler()
    reconciler.reconcile([state(4, a1=agar_at(1.0))])

    result = reconciler.reconcile([state(2)])

    assert result.events == []
    assert set(reconciler.entities) == {1}


def test_duplicate_new_ids_spawn_once_per_pass() -> None:
    reconciler = ClientReconciler()
    batch = [state(3, a9=agar_at(3.0)), state(3, a9=agar_at(3.0)), state(2, a9=agar_at(2.0)), state(4, a9=agar_at(4.0))]

    result = reconciler.reconcile(batch)

    assert kinds(result) == [("appeared", 9)]
    assert reconciler.frame_of(9) == 4
    assert reconciler.entities[9].state.x == 4.0


def test_entity_materialized_earlier_is_not_duplicated_later() -> None:
    reconciler = ClientReconciler()
    reconciler.reconcile([state(1, a9=agar_at(1.0))])

    result = reconciler.reconcile([state(2, a9=agar_at(2.0)), state(2, a9=agar_at(2.0))])

    assert kinds(result) == [("updated", 9)]
    assert len(reconciler.entities) == 1


def test_buffered_spawn_cancelled_by_newer_frame_in_same_pass() -> None:
    reconciler = ClientReconciler()

    result = reconciler.reconcile([state(2, a4=agar_at(1.0)), state(3)])

    assert result.events == []
    assert reconciler.entities == {}


def test_stale_message_cannot_resurrect_removed_entity() -> None:
    reconciler = ClientReconciler()
    reconciler.reconcile([state(1, a4=agar_at(1.0))])
    reconciler.reconcile([state(5)])

    result = reconciler.reconcile([state(3, a4=agar_at(3.0))])

    assert result.events == []
    assert reconciler.entities == {}


def test_frames_never_decrease_over_shuffled_batches() -> None:
    reconciler = ClientReconciler()
    seen: dict[int, int] = {}
    batches = [[state(4, a1=agar_at(4.0)), state(2, a1=agar_at(2.0))], [state(3, a1=agar_at(3.0))], [state(7, a1=agar_at(7.0)), state(6, a1=agar_at(6.0))]]

    for batch in batches:
        reconciler.reconcile(batch)
        frame = reconciler.frame_of(1)
        assert frame >= seen.get(1, -1)
        seen[1] = frame

    assert seen[1] == 7
    assert reconciler.entities[1].state.x == 7.0


def test_feed_request_uses_first_prior_counter_once_per_pass() -> None:
    reconciler = ClientReconciler()
    reconciler.feed_counter = 10

    result = reconciler.reconcile([state(1, feed_counter=12), state(2, feed_counter=15), state(3, feed_counter=14)])

    assert result.feed_cursor == 10
    assert reconciler.feed_counter == 15


def test_no_feed_request_without_new_history() -> None:
    reconciler = ClientReconciler()
    reconciler.feed_counter = 10

    assert reconciler.reconcile([state(1, feed_counter=10), state(2, feed_counter=8)]).feed_cursor is None
    assert reconciler.feed_counter == 10


def test_ball_messages_reconcile_without_feed_requests() -> None:
    reconciler = ClientReconciler()
    update = BallUpdate(vx=1.0, vy=0.0, vz=0.0, x=5.0, y=5.0)

    result = reconciler.reconcile([BallStateMessage(frame=1, balls=((3, update),))])

    assert kinds(result) == [("appeared", 3)]
    assert result.feed_cursor is None


def test_snapshot_replay_into_fresh_mirror_matches_server() -> None:
    log = FeedEventLog()
    for feed_id in range(1, 8):
        log.spawn(FeedSpawn(id=feed_id, color=FeedColor.GREEN, x=float(feed_id), y=0.0))
    for feed_id in (2, 5):
        log.despawn(feed_id)
    mirror = FeedMirror()

    changes = mirror.apply(log.snapshot_view())

    assert mirror.feeds == log.snapshot
    assert {c.kind for c in changes} == {MirrorEventKind.APPEARED}


def test_feed_mirror_is_idempotent() -> None:
    mirror = FeedMirror()
    spawn = FeedSpawn(id=1, color=FeedColor.RED, x=0.0, y=0.0)

    assert len(mirror.apply([spawn, spawn])) == 1
    assert len(mirror.apply([FeedDespawn(1), FeedDespawn(1), FeedDespawn(2)])) == 1
    assert mirror.feeds == {}


def _client() -> tuple[GameClient, Connection]:
    connection = Connection(1)
    return GameClient(connection, login_retry_passes=3), connection


def _sent(connection: Connection) -> list[dict]:
    return [payload for _, payload in connection.drain_outbound()]


def test_client_requests_feeds_once_and_catches_up_after_response() -> None:
    client, connection = _client()
    connection.deliver(encode(state(0, feed_counter=100)))
    client.update()
    assert _sent(connection) == [encode(FeedRequest(0))]

    connection.deliver(encode(state(1, feed_counter=104)))
    client.update()
    assert _sent(connection) == []

    feeds = tuple(FeedSpawn(id=i, color=FeedColor.BLUE, x=0.0, y=0.0) for i in range(1, 4))
    connection.deliver(encode(FeedResponse(feeds, end=102)))
    events = client.update()

    assert [e.kind for e in events] == [MirrorEventKind.APPEARED] * 3
    assert client.feed_cursor == 102
    assert _sent(connection) == [encode(FeedRequest(102))]


def test_client_adopts_response_end_beyond_its_counter() -> None:
    client, connection = _client()
    connection.deliver(encode(state(0, feed_counter=5)))
    client.update()
    _sent(connection)

    connection.deliver(encode(FeedResponse((), end=9)))
    client.update()

    assert client.reconciler.feed_counter == 9
    assert client.feed_cursor == 9
    assert _sent(connection) == []

    connection.deliver(encode(state(1, feed_counter=11)))
    client.update()
    assert _sent(connection) == [encode(FeedRequest(9))]


def test_login_is_retried_until_acknowledged() -> None:
    client, connection = _client()
    client.login()
    assert _sent(connection) == [encode(Login())]

    for _ in range(3):
        client.update()
    assert _sent(connection) == [encode(Login())]

    connection.deliver(encode(LoginAck(12)))
    for _ in range(5):
        client.update()

    assert client.player_id == 12
    assert _sent(connection) == []


def test_failed_feed_request_is_retried_from_local_position() -> None:
    log = FeedEventLog()
    for feed_id in range(1, 4):
        log.spawn(FeedSpawn(id=feed_id, color=FeedColor.RED, x=float(feed_id), y=0.0))
    connection = Connection(1, reliable_buffer_size=2)
    client = GameClient(connection, login_retry_passes=100)
    client.send_input(1.0, 1.0)
    client.send_input(2.0, 2.0)

    connection.deliver(encode(state(0, feed_counter=log.total_events)))
    client.update()
    assert not client.feed_request_pending
    _sent(connection)

    log.despawn(2)
    log.spawn(FeedSpawn(id=4, color=FeedColor.BLUE, x=4.0, y=0.0))
    connection.deliver(encode(state(1, feed_counter=log.total_events)))
    client.update()

    assert client.feed_cursor == 0
    assert _sent(connection) == [encode(FeedRequest(0))]

    connection.deliver(encode(FeedResponse(tuple(log.view_from(0)), end=log.total_events)))
    client.update()

    assert client.feeds.feeds == log.snapshot
    assert client.feed_cursor == log.total_events
