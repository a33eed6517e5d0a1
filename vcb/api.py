from __future__ import annotations

import logging
from threading import Thread

import uvicorn
from fastapi import FastAPI, Query

from .api_models import CycleEntry, EventEntry, StatusResponse, TriggerResponse
from .events import EventLog
from .runtime import RuntimeState
from .watcher import ChangeSignal


logger = logging.getLogger(__name__)


def create_app(runtime: RuntimeState, events: EventLog, signal: ChangeSignal) -> FastAPI:
    app = FastAPI(title="Vulcan Config Builder")

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "healthy"}

    @app.get("/status", response_model=StatusResponse)
    def status() -> dict:
        return runtime.snapshot()

    @app.get("/events", response_model=list[EventEntry])
    def events_(limit: int = Query(50, ge=1, le=1000)) -> list[dict]:
        return events.latest_events(limit)

    @app.get("/cycles", response_model=list[CycleEntry])
    def cycles(limit: int = Query(20, ge=1, le=1000)) -> list[dict]:
        return events.latest_cycles(limit)

    @app.post("/reconcile", response_model=TriggerResponse)
    def reconcile() -> dict:
        queued = signal.notify()
        if queued:
            events.log_event("INFO", "Rebuild requested via API")
        return {"queued": queued}

    return app


def serve_in_background(app: FastAPI, port: int, host: str = "0.0.0.0") -> Thread:
    server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="warning"))
    thr = Thread(target=server.run, name="vcb-api", daemon=True)
    thr.start()
    logger.info("Status API listening on %s:%d", host, port)
    return thr
