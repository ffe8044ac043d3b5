from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from apps.api.services.hub import get_hub
from apps.api.services.jobs import JobKind

router = APIRouter()
LOGGER = logging.getLogger(__name__)


class HasEndedRequest(BaseModel):
    cacheKey: str | None = Field(None, description="Cache key reported by the worker")
    recordingId: str | None = Field(None, description="Recording id reported by the worker")


class CleanupRequest(BaseModel):
    force: bool = Field(False, description="Bypass the age gate and finalize everything")


@router.get("")
def list_jobs(
    kind: JobKind | None = Query(None, description="Only jobs of this kind"),
    limit: int = Query(50, ge=1, le=500, description="Maximum number of jobs"),
) -> Dict[str, Any]:
    jobs = get_hub().store.list_jobs()
    if kind is not None:
        jobs = [job for job in jobs if job.kind is kind]
    return {"jobs": [job.to_dict() for job in jobs[:limit]], "count": len(jobs)}


@router.post("/has-ended")
def job_has_ended(req: HasEndedRequest) -> Dict[str, Any]:
    """Completion hook the workers call through ``--baseUrl``.

    The reported job is finalized right away once its worker is gone, then the
    regular age-gated sweep runs.
    """
    ref = req.cacheKey or req.recordingId or "(unknown)"
    LOGGER.info("[jobs] Worker reported end of %s", ref)
    sweeper = get_hub().sweeper
    payload: Dict[str, Any] = {"success": True, "message": f"Cleanup for job {ref} complete."}
    if req.cacheKey or req.recordingId:
        payload["ended"] = sweeper.finalize_ended(cache_key=req.cacheKey, recording_id=req.recordingId).to_dict()
    payload["report"] = sweeper.sweep(force=False).to_dict()
    return payload


@router.post("/cleanup")
def run_cleanup(req: CleanupRequest | None = None) -> Dict[str, Any]:
    force = bool(req and req.force)
    report = get_hub().sweeper.sweep(force=force)
    suffix = " (forced)" if force else ""
    return {"success": True, "message": f"Cleanup complete{suffix}.", "report": report.to_dict()}


@router.get("/cleanup/candidates")
def cleanup_candidates(force: bool = Query(False, description="Classify as a forced sweep would")) -> Dict[str, Any]:
    candidates = get_hub().sweeper.find_candidates(force)
    return {"candidates": [candidate.to_dict() for candidate in candidates]}


@router.get("/{recording_id}")
def get_job(recording_id: str) -> Dict[str, Any]:
    return get_hub().store.read_job(recording_id).to_dict()


@router.get("/{recording_id}/info")
def get_job_info(recording_id: str) -> Dict[str, Any]:
    return get_hub().store.read_info(recording_id).to_dict()
