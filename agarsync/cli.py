"""Launch the replication server behind uvicorn."""

from __future__ import annotations

import argparse
import logging
import os

import uvicorn


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the agarsync game server.")
    # agarsync.config is not imported here: it reads the environment set below.
    parser.add_argument("--host", type=str, default="0.0.0.0")
    parser.add_argument("--port", type=int, default=14192)
    parser.add_argument("--tick-rate", type=int, default=None, help="Server ticks per second")
    parser.add_argument("--mode", type=str, choices=["agar", "ball"], default=None)
    parser.add_argument("--feed-target", type=int, default=None, help="Live feed count to maintain")
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument(
        "--log-level",
        type=str,
        default="info",
        choices=["debug", "info", "warning", "error"],
    )
    return parser


def main() -> None:
    args = _build_parser().parse_args()
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Config is read from the environment when agarsync.server is imported.
    if args.tick_rate is not None:
        os.environ["AGARSYNC_TICK_RATE"] = str(max(1, args.tick_rate))
    if args.mode is not None:
        os.environ["AGARSYNC_GAME_MODE"] = args.mode
    if args.feed_target is not None:
        os.environ["AGARSYNC_FEED_TARGET"] = str(max(0, args.feed_target))
    if args.seed is not None:
        os.environ["AGARSYNC_SEED"] = str(args.seed)
    if args.log_level == "debug":
        os.environ["AGARSYNC_DEBUG_MESSAGES"] = "1"

    uvicorn.run("agarsync.server:app", host=args.host, port=args.port, reload=False, log_level=args.log_level)


if __name__ == "__main__":
    main()
