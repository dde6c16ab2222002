"""Run a server and several clients in-process over lossy loopback links."""

from __future__ import annotations

import argparse
import json
import logging
import random

from . import config
from .net.transport import Connection, LoopbackLink
from .reconcile import GameClient
from .replication import GameServer

logger = logging.getLogger(__name__)


def _pump(links: list[LoopbackLink]) -> None:
    for link in links:
        link.pump()


def run_headless(
    ticks: int = 300,
    clients: int = 4,
    *,
    loss: float = 0.2,
    duplicate: float = 0.05,
    reorder: bool = True,
    mode: str = "agar",
    seed: int = 1337,
    settle_ticks: int = 3,
) -> dict:
    rng = random.Random(seed)
    server = GameServer(mode=mode, seed=seed)
    dt = 1.0 / config.TICK_RATE

    players: list[GameClient] = []
    links: list[LoopbackLink] = []
    for index in range(clients):
        server_side = server.connections.open()
        client_side = Connection(server_side.handle)
        links.append(
            LoopbackLink(
                server_side,
                client_side,
                loss=loss,
                duplicate=duplicate,
                reorder=reorder,
                seed=seed + index,
            )
        )
        player = GameClient(client_side)
        player.login()
        players.append(player)

    def step() -> None:
        for player in players:
            player.update()
            if player.logged_in and rng.random() < 0.2:
                player.send_input(
                    rng.uniform(0.0, config.WINDOW_WIDTH),
                    rng.uniform(0.0, config.WINDOW_HEIGHT),
                )
        _pump(links)
        server.tick(dt)
        _pump(links)

    for _ in range(ticks):
        step()

    for link in links:
        link.loss = 0.0
        link.duplicate = 0.0
        link.reorder = False
    for _ in range(settle_ticks):
        step()

    # Answer outstanding feed requests without advancing the world.
    for player in players:
        player.update()
    _pump(links)
    server.handle_messages()
    _pump(links)
    for player in players:
        player.update()

    live_entities = set(server.world.agars if mode == "agar" else server.world.balls)
    live_feeds = set(server.feed_log.snapshot)
    report = {
        "mode": mode,
        "ticks": ticks,
        "frame": server.frame,
        "liveEntities": len(live_entities),
        "liveFeeds": len(live_feeds),
        "feedEvents": server.feed_log.total_events,
        "clients": [],
    }
    for player, link in zip(players, links):
        report["clients"].append(
            {
                "playerId": player.player_id,
                "entitiesConverged": set(player.reconciler.entities) == live_entities,
                "feedsConverged": set(player.feeds.feeds) == live_feeds,
                "dropped": link.dropped,
                "delivered": link.delivered,
            }
        )
    report["converged"] = all(
        c["entitiesConverged"] and c["feedsConverged"] for c in report["clients"]
    )
    return report


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Headless agarsync replication run.")
    parser.add_argument("--ticks", type=int, default=300)
    parser.add_argument("--clients", type=int, default=4)
    parser.add_argument("--loss", type=float, default=0.2, help="Unreliable channel drop rate")
    parser.add_argument("--duplicate", type=float, default=0.05)
    parser.add_argument("--no-reorder", action="store_true")
    parser.add_argument("--mode", type=str, choices=["agar", "ball"], default="agar")
    parser.add_argument("--seed", type=int, default=1337)
    parser.add_argument("--log-level", type=str, default="warning")
    return parser


def main() -> None:
    args = _build_parser().parse_args()
    logging.basicConfig(level=args.log_level.upper())
    report = run_headless(
        ticks=args.ticks,
        clients=args.clients,
        loss=args.loss,
        duplicate=args.duplicate,
        reorder=not args.no_reorder,
        mode=args.mode,
        seed=args.seed,
    )
    print(json.dumps(report, indent=2))


if __name__ == "__main__":
    main()
