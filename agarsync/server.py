"""FastAPI app: websocket transport around the fixed-rate replication loop."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from . import config
from .models import ConnectionHandle
from .replication import GameServer

logger = logging.getLogger(__name__)


class RealtimeServer:
    def __init__(self, game: GameServer | None = None, *, tick_rate: int = config.TICK_RATE) -> None:
        self.game = game or GameServer()
        self.tick_rate = tick_rate
        self.sockets: dict[ConnectionHandle, WebSocket] = {}
        self.lock = asyncio.Lock()
        self._tick_task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        if self._tick_task is None:
            logger.info("Starting %s server at %d Hz", self.game.mode, self.tick_rate)
            self._tick_task = asyncio.create_task(self._tick_loop())

    @property
    def ticking(self) -> bool:
        return self._tick_task is not None and not self._tick_task.done()

    async def stop(self) -> None:
        task, self._tick_task = self._tick_task, None
        if task is None:
            return
        if task.done():
            # The loop already logged the failure that ended it.
            if not task.cancelled() and task.exception() is not None:
                logger.error("Tick loop had stopped at frame %d", self.game.frame)
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def connect(self, websocket: WebSocket) -> ConnectionHandle:
        async with self.lock:
            connection = self.game.connections.open()
            self.sockets[connection.handle] = websocket
        return connection.handle

    async def disconnect(self, handle: ConnectionHandle | None) -> None:
        if handle is None:
            return
        async with self.lock:
            self.sockets.pop(handle, None)
            self.game.connections.close(handle)

    async def receive(self, handle: ConnectionHandle, raw: str) -> None:
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Dropping non-JSON frame on [%s]", handle)
            return
        async with self.lock:
            self.game.connections.deliver(handle, payload)

    async def tick_once(self, dt: float) -> None:
        async with self.lock:
            self.game.tick(dt)
            outgoing: list[tuple[ConnectionHandle, WebSocket, list[dict]]] = []
            for connection in self.game.connections:
                websocket = self.sockets.get(connection.handle)
                payloads = [payload for _, payload in connection.drain_outbound()]
                if websocket is None or not payloads:
                    continue
                outgoing.append((connection.handle, websocket, payloads))

        if not outgoing:
            return

        results = await asyncio.gather(
            *(self._safe_send_all(websocket, payloads) for _, websocket, payloads in outgoing),
            return_exceptions=True,
        )
        for (handle, _, _), result in zip(outgoing, results):
            if result is False or isinstance(result, Exception):
                logger.error("Send to [%s] failed, dropping connection", handle)
                await self.disconnect(handle)

    async def _tick_loop(self) -> None:
        interval = 1.0 / self.tick_rate

        while True:
            tick_start = time.perf_counter()
            try:
                await self.tick_once(interval)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Tick %d failed", self.game.frame)
                raise
            elapsed = time.perf_counter() - tick_start
            await asyncio.sleep(max(0.0, interval - elapsed))

    async def _safe_send_all(self, websocket: WebSocket, payloads: list[dict]) -> bool:
        try:
            for payload in payloads:
                await websocket.send_json(payload)
            return True
        except Exception:
            return False


app = FastAPI(title="agarsync")
state = RealtimeServer()


@app.on_event("startup")
async def startup_event() -> None:
    await state.start()


@app.on_event("shutdown")
async def shutdown_event() -> None:
    await state.stop()


@app.get("/api/status")
async def status() -> dict:
    async with state.lock:
        return {**state.game.describe(), "ticking": state.ticking}


@app.websocket("/ws")
async def websocket_handler(websocket: WebSocket) -> None:
    await websocket.accept()
    handle: ConnectionHandle | None = None

    try:
        handle = await state.connect(websocket)
        while True:
            raw = await websocket.receive_text()
            await state.receive(handle, raw)
    except WebSocketDisconnect:
        pass
    finally:
        await state.disconnect(handle)
