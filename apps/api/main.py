from __future__ import annotations

import logging
import os
from typing import Any, Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from apps.api import config
from apps.api.errors import install_error_handlers
from apps.api.routers import downloads, jobs, live, recordings
from apps.api.services.hub import get_hub
from apps.api.services.live_watcher import reset_live_watcher, start_live_watcher
from apps.api.services.timers import RecurringTask

app = FastAPI(title="StreamHub API", version="0.1.0")
install_error_handlers(app)
LOGGER = logging.getLogger(__name__)

origins = {config.UI_ORIGIN, "http://localhost:3000"}
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(origins),
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
)
app.include_router(downloads.router, prefix="/downloads", tags=["downloads"])
app.include_router(live.router, prefix="/live", tags=["live"])
app.include_router(recordings.router, prefix="/recordings", tags=["recordings"])
app.include_router(jobs.router, prefix="/jobs", tags=["jobs"])

_periodic_cleanup: RecurringTask | None = None


def _startup_enabled() -> bool:
    return os.environ.get("STREAMHUB_DISABLE_STARTUP_TASKS", "").lower() not in {"1", "true", "yes"}


@app.on_event("startup")
async def _reconcile_jobs() -> None:
    """Reconcile job records left behind by a previous run.

    Workers outlive API restarts, so records may point at finished or crashed
    workers. A non-forced sweep finalizes those that are old enough.
    """
    if not _startup_enabled():
        return
    hub = get_hub()
    try:
        report = hub.sweeper.sweep(force=False)
        LOGGER.info(
            "[startup] Cleanup: %d finalized, %d deleted, %d dangling",
            len(report.finalized),
            len(report.deleted),
            report.dangling_removed,
        )
    except OSError as exc:
        LOGGER.warning("[startup] Cleanup sweep failed: %s", exc)


@app.on_event("startup")
async def _start_timers() -> None:
    global _periodic_cleanup
    if not _startup_enabled():
        return
    start_live_watcher()
    if config.CLEANUP_INTERVAL_SECONDS > 0 and _periodic_cleanup is None:
        hub = get_hub()
        _periodic_cleanup = RecurringTask(
            "cleanup",
            config.CLEANUP_INTERVAL_SECONDS,
            lambda: hub.sweeper.sweep(force=False),
        )
        _periodic_cleanup.start()


@app.on_event("shutdown")
async def _stop_timers() -> None:
    global _periodic_cleanup
    reset_live_watcher()
    if _periodic_cleanup is not None:
        _periodic_cleanup.stop()
        _periodic_cleanup = None


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/healthz")
def healthz() -> JSONResponse:
    hub = get_hub()
    checks: Dict[str, Any] = {}
    ok = True
    for name, directory in (
        ("cache", hub.store.cache_dir),
        ("jobs", hub.store.jobs_dir),
        ("work", hub.store.work_dir),
        ("media", hub.store.media_dir),
    ):
        writable = directory.is_dir() and os.access(directory, os.W_OK)
        checks[name] = {"path": str(directory), "writable": writable}
        ok = ok and writable
    return JSONResponse(status_code=200 if ok else 503, content={"status": "ok" if ok else "degraded", "dirs": checks})


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("apps.api.main:app", host=config.API_HOST, port=config.API_PORT)
