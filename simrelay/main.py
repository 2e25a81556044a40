"""
FastAPI application entry point.

Routes:
  WS   /input     producers: {type: "simulator-update", data: {...}}
  WS   /output    consumers: receive every accepted sample

  GET  /health
  GET  /stats
  GET  /events    list event files
  POST /events    {"eventName": ...} → best-lap table
  POST /reload    {"eventName": ...} reloads one event, empty body reloads all

Startup wires the registry, fan-out, event store, reconciler, scheduler and
data-dir watcher onto ``app.state``. Shutdown flushes pending writes before
any connection is closed.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from simrelay.best_lap import BestLapReconciler
from simrelay.broadcast.connections import ConnectionRegistry
from simrelay.broadcast.fanout import Broadcaster
from simrelay.config import (
    CORS_ORIGINS, DATA_DIR, HOST, LOG_LEVEL, MAX_SIM_NUM, PORT,
    RECONCILE_THROTTLE_MS, STATS_LOG_INTERVAL_S, WATCH_INTERVAL_MS,
    WRITE_DEBOUNCE_MS,
)
from simrelay.ingress import InvalidMessage, error_frame, parse_inbound
from simrelay.models import TelemetrySample
from simrelay.scheduler.jobs import Debouncer, setup_scheduler
from simrelay.storage import EventStore
from simrelay.transport import QueuedWebSocket
from simrelay.watcher import PollingWatcher

log = logging.getLogger(__name__)

INPUT_GREETING = "Connected to /input. Ready to receive data."
OUTPUT_GREETING = "Connected to /output. Waiting for simulator data..."


class EventQuery(BaseModel):
    eventName: Optional[str] = None


def _frame(kind: str, **fields) -> str:
    return json.dumps({"type": kind, **fields})


def create_app(
    data_dir: Path = DATA_DIR,
    write_debounce_ms: int = WRITE_DEBOUNCE_MS,
    throttle_ms: int = RECONCILE_THROTTLE_MS,
    watch_interval_ms: int = WATCH_INTERVAL_MS,
    max_sim_num: int = MAX_SIM_NUM,
    stats_interval_s: int = STATS_LOG_INTERVAL_S,
) -> FastAPI:

    # ── Lifespan ──────────────────────────────────────────────────────────────

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        registry = ConnectionRegistry()
        broadcaster = Broadcaster(registry)
        scheduler = setup_scheduler(broadcaster.stats, stats_interval_s)
        store = EventStore(Debouncer(scheduler, prefix="write_"), data_dir, write_debounce_ms)
        store.ensure_dir()

        app.state.started = time.monotonic()
        app.state.registry = registry
        app.state.broadcaster = broadcaster
        app.state.scheduler = scheduler
        app.state.store = store
        app.state.reconciler = BestLapReconciler(store, throttle_ms)
        app.state.reconcile_tasks = set()

        watcher = None
        if watch_interval_ms > 0:
            watcher = PollingWatcher(data_dir, watch_interval_ms / 1000.0)
            watcher.subscribe(store.handle_file_change)
            await watcher.start()
        log.info("Relay ready: ws /input, ws /output, data in %s", data_dir)

        yield

        log.info("Stopping relay...")
        if watcher is not None:
            await watcher.stop()
        if app.state.reconcile_tasks:
            await asyncio.gather(*app.state.reconcile_tasks, return_exceptions=True)
        await store.flush()
        registry.disconnect_all()
        scheduler.shutdown(wait=False)
        log.info("Relay stopped")

    app = FastAPI(title="SimRelay", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["*"],
        max_age=86400,
    )

    # ── Best-lap reconciliation in the background ─────────────────────────────

    def _reconcile_done(tasks: set, task: asyncio.Task) -> None:
        tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("Best-lap processing failed", exc_info=exc)

    def _spawn_reconcile(state, sample: TelemetrySample) -> None:
        task = asyncio.create_task(state.reconciler.reconcile(sample))
        state.reconcile_tasks.add(task)
        task.add_done_callback(lambda t: _reconcile_done(state.reconcile_tasks, t))

    # ── WebSockets ────────────────────────────────────────────────────────────

    @app.websocket("/input")
    async def ws_input(websocket: WebSocket):
        state = websocket.app.state
        await websocket.accept()
        handle = QueuedWebSocket(websocket)
        conn_id = state.registry.register(handle, "producer")
        handle.send(_frame("connected", message=INPUT_GREETING))

        def on_message(raw: str) -> None:
            log.debug("Message on /input: %s", raw)
            try:
                sample = parse_inbound(raw, max_sim_num)
            except InvalidMessage as exc:
                log.warning("Invalid message on /input from %s: %s", conn_id, exc)
                if handle.writable:
                    handle.send(error_frame(str(exc)))
                return
            try:
                state.registry.bind_simulator(conn_id, sample.sim_num)
                _spawn_reconcile(state, sample)
                state.broadcaster.distribute(sample)
            except Exception:
                log.exception("Error processing message from %s", conn_id)

        await handle.serve(on_message)

    @app.websocket("/output")
    async def ws_output(websocket: WebSocket):
        state = websocket.app.state
        await websocket.accept()
        handle = QueuedWebSocket(websocket)
        state.registry.register(handle, "consumer")
        handle.send(_frame("connected", message=OUTPUT_GREETING))
        handle.send(_frame("stats", data=state.broadcaster.stats().model_dump(by_alias=True)))
        await handle.serve()

    # ── Status ────────────────────────────────────────────────────────────────

    @app.get("/health")
    async def health(request: Request):
        return {"status": "ok", "uptime": time.monotonic() - request.app.state.started}

    @app.get("/stats")
    async def stats(request: Request):
        return request.app.state.broadcaster.stats().model_dump(by_alias=True)

    # ── Events ────────────────────────────────────────────────────────────────

    @app.get("/events")
    async def list_events(request: Request):
        return {"events": await request.app.state.store.list_events()}

    @app.post("/events")
    async def get_event(request: Request, body: Optional[EventQuery] = None):
        if body is None or not body.eventName:
            raise HTTPException(400, "Field 'eventName' is required")
        table = await request.app.state.store.get(body.eventName)
        if table is None:
            raise HTTPException(404, f"Event not found: {body.eventName}")
        return table.model_dump(by_alias=True)

    @app.post("/reload")
    async def reload_events(request: Request, body: Optional[EventQuery] = None):
        state = request.app.state
        event_name = body.eventName if body else None
        try:
            if event_name:
                await state.store.reload(event_name)
                state.reconciler.forget(event_name)
                return {
                    "success": True,
                    "message": f"Event '{event_name}' reloaded",
                    "eventName": event_name,
                }
            await state.store.reload_all()
            state.reconciler.forget()
        except OSError as exc:
            log.exception("Reload failed")
            raise HTTPException(500, f"Failed to reload data: {exc}")
        return {"success": True, "message": "All events reloaded"}

    return app


app = create_app()


def run() -> None:
    """Console entry point: configure logging and serve with uvicorn."""
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
    uvicorn.run(app, host=HOST, port=PORT, log_level=LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
