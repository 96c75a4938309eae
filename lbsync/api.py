from __future__ import annotations

from fastapi import FastAPI, HTTPException, Query, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from . import __version__
from .runtime import RuntimeState
from .scheduler import ReconcileWorker


def create_app(runtime: RuntimeState, worker: ReconcileWorker | None = None) -> FastAPI:
    app = FastAPI(title="lbsync", version=__version__)

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "healthy"}

    @app.get("/status")
    def status() -> dict:
        return runtime.status()

    @app.get("/events")
    def events(limit: int = Query(20, ge=1, le=100)) -> list[dict]:
        return runtime.latest_events(limit)

    @app.get("/metrics")
    def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.post("/reconcile", status_code=202)
    def reconcile() -> dict[str, bool]:
        if worker is None or not worker.is_alive():
            raise HTTPException(status_code=503, detail="Reconcile worker is not running.")
        worker.trigger("manual")
        return {"queued": True}

    return app
