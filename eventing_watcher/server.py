from __future__ import annotations

import asyncio
import sqlite3
from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import BackgroundTasks, FastAPI, HTTPException
from fastapi.responses import JSONResponse

from eventing_watcher import __version__
from eventing_watcher.health.evaluator import STATUS_DEPLOYED, STATUS_ERROR, STATUS_PAUSED, STATUS_UNDEPLOYED
from eventing_watcher.health.state import HealthState
from eventing_watcher.scheduler.job_scheduler import RECONCILE_JOB_ID, JobScheduler
from eventing_watcher.storage.status_store import StatusRecord, StatusStore


logger = structlog.get_logger(__name__)


def _iso_ts(ts: float | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(float(ts), tz=timezone.utc).isoformat()


def _record_json(record: StatusRecord) -> dict[str, Any]:
    return {
        "functionName": record.function_name,
        "status": record.status,
        "message": record.message,
        "timestamp": record.timestamp,
        "checkedAt": _iso_ts(record.timestamp / 1000.0),
    }


def build_health_report(records: list[StatusRecord], health: HealthState) -> tuple[int, dict[str, Any]]:
    """Aggregate /health payload and HTTP status from the latest record of every function."""
    snap = health.snapshot()
    eventing_healthy = not any(r.status == STATUS_ERROR for r in records)
    watcher_healthy = bool(snap.healthy)

    summary = {
        "total": len(records),
        "deployed": sum(1 for r in records if r.status == STATUS_DEPLOYED),
        "undeployed": sum(1 for r in records if r.status == STATUS_UNDEPLOYED),
        "paused": sum(1 for r in records if r.status == STATUS_PAUSED),
    }
    body = {
        "status": {
            "watcher": "Healthy" if watcher_healthy else "Unhealthy",
            "eventing": "Healthy" if eventing_healthy else "Unhealthy",
        },
        "uptime": health.uptime_text(),
        "lastPass": {
            "startedAt": _iso_ts(snap.last_pass_started_ts),
            "finishedAt": _iso_ts(snap.last_pass_finished_ts),
            "ok": snap.last_pass_ok,
            "reason": snap.reason,
        },
        "functions": [_record_json(r) for r in records],
        "summary": summary,
    }
    status_code = 200 if (watcher_healthy and eventing_healthy) else 503
    return status_code, body


def create_app(
    *,
    store: StatusStore,
    health: HealthState,
    reconciler=None,
    job_scheduler: JobScheduler | None = None,
) -> FastAPI:
    app = FastAPI(title="Couchbase Eventing Watcher", version=__version__)
    app.state.store = store
    app.state.health = health
    app.state.reconciler = reconciler
    app.state.job_scheduler = job_scheduler

    @app.on_event("startup")
    def _startup() -> None:
        app.state.store.ensure_schema()
        # Until the first pass completes, /health serves what the store held at startup.
        if app.state.health.published_records() is None:
            app.state.health.publish_records(app.state.store.get_all_latest())

    @app.get("/health")
    async def health_check() -> JSONResponse:
        records = app.state.health.published_records()
        try:
            if records is None:
                records = await asyncio.to_thread(app.state.store.get_all_latest)
        except sqlite3.Error as exc:
            logger.error("Health check could not read status store", error=str(exc))
            return JSONResponse(
                status_code=503,
                content={
                    "status": {"watcher": "Unhealthy", "eventing": "Unknown"},
                    "uptime": app.state.health.uptime_text(),
                    "error": f"status store unavailable: {exc}",
                },
            )

        status_code, body = build_health_report(records, app.state.health)
        scheduler: JobScheduler | None = app.state.job_scheduler
        if scheduler is not None:
            body["schedule"] = scheduler.get_job_status(RECONCILE_JOB_ID)
        return JSONResponse(status_code=status_code, content=body)

    @app.get("/functions/{function_name}/history")
    async def function_history(function_name: str, limit: int = 50) -> dict[str, Any]:
        records = await asyncio.to_thread(app.state.store.history, function_name, limit=limit)
        if not records:
            raise HTTPException(status_code=404, detail="function_not_found")
        return {"functionName": function_name, "history": [_record_json(r) for r in records]}

    @app.post("/run")
    async def trigger_pass(background_tasks: BackgroundTasks) -> dict[str, Any]:
        reconciler = app.state.reconciler
        if reconciler is None:
            raise HTTPException(status_code=503, detail="reconciler_not_configured")
        if reconciler.pass_in_progress:
            return {"accepted": False, "reason": "pass_in_progress"}
        background_tasks.add_task(reconciler.run_pass_if_idle)
        logger.info("On-demand reconciliation pass requested")
        return {"accepted": True}

    return app
