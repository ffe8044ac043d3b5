from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from apps.api.errors import api_error, raise_for_result
from apps.api.routers.downloads import EntryPayload, StopRequest
from apps.api.services.hub import get_hub
from apps.api.services.scheduler import SchedulerError

router = APIRouter()
LOGGER = logging.getLogger(__name__)


class ScheduleRequest(BaseModel):
    cacheKey: str = Field(..., min_length=1, description="Key of the cached playlist entry")
    user: str = Field(..., min_length=1, description="User scheduling the recording")
    durationSec: int = Field(..., gt=0, description="Recording length in seconds")
    recordNow: bool = Field(False, description="Start immediately instead of at startTime")
    startTime: str | None = Field(
        None,
        description="Start time understood by at(1), e.g. '2025-05-02 02:15'",
    )
    entry: EntryPayload | None = Field(None, description="Entry to use instead of the cached one")


@router.post("/schedule")
def schedule_recording(req: ScheduleRequest) -> Dict[str, Any]:
    result = get_hub().recordings.schedule(
        req.cacheKey,
        req.user,
        req.durationSec,
        entry=req.entry.to_entry() if req.entry else None,
        record_now=req.recordNow,
        start_time=req.startTime,
    )
    return raise_for_result(result).to_dict()


@router.post("/stop")
def stop_recording(req: StopRequest) -> Dict[str, Any]:
    return raise_for_result(get_hub().recordings.stop(req.cacheKey)).to_dict()


@router.get("/monitor")
def monitor_recording(
    cacheKey: str | None = Query(None, description="Cache key of the recording"),
    recordingId: str | None = Query(None, description="Recording id"),
) -> Dict[str, Any]:
    if not cacheKey and not recordingId:
        raise api_error(400, "MISSING_JOB_REF", "Missing cacheKey or recordingId")
    return get_hub().monitor.describe(cache_key=cacheKey, recording_id=recordingId)


@router.get("/scheduled")
def list_scheduled() -> Dict[str, Any]:
    try:
        jobs = get_hub().scheduler.list()
    except SchedulerError as exc:
        LOGGER.warning("[schedule] Listing failed: %s", exc)
        raise api_error(502, "SCHEDULER_UNAVAILABLE", str(exc)) from exc
    return {"jobs": [job.to_dict() for job in jobs]}


@router.delete("/scheduled/{scheduled_id}")
def delete_scheduled(scheduled_id: str) -> Dict[str, Any]:
    return raise_for_result(get_hub().recordings.unschedule(scheduled_id)).to_dict()
