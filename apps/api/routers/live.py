from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from apps.api.errors import api_error, raise_for_result
from apps.api.routers.downloads import EntryPayload, StopRequest
from apps.api.services.hub import get_hub
from apps.api.services.live_watcher import start_live_watcher

router = APIRouter()
LOGGER = logging.getLogger(__name__)


class LiveStartRequest(BaseModel):
    cacheKey: str = Field(..., min_length=1, description="Key of the cached playlist entry")
    user: str = Field(..., min_length=1, description="User starting the stream")
    entry: EntryPayload | None = Field(None, description="Entry to use instead of the cached one")
    serviceId: str | None = Field(None, description="Streaming service the entry belongs to")


class ViewerHeartbeat(BaseModel):
    clientIp: str | None = Field(None, description="Override for the caller address")


class ConsumerRequest(BaseModel):
    consumerId: str = Field(..., min_length=1, description="Player instance id")
    serviceId: str = Field(..., min_length=1, description="Streaming service the player draws on")
    entry: EntryPayload | None = Field(None, description="Entry being played")


def _ensure_capacity(service_id: str | None) -> None:
    if not service_id:
        return
    hub = get_hub()
    if not hub.monitor.has_capacity(service_id):
        usage = hub.monitor.usage_for_service(service_id)
        raise api_error(
            429,
            "SERVICE_BUSY",
            f"Service {service_id} has no free connections",
            {"serviceId": service_id, "usage": usage},
        )


@router.post("/start")
def start_live(req: LiveStartRequest) -> Dict[str, Any]:
    _ensure_capacity(req.serviceId)
    hub = get_hub()
    result = hub.live.start(req.cacheKey, req.user, req.entry.to_entry() if req.entry else None)
    raise_for_result(result)
    start_live_watcher()
    return result.to_dict()


@router.post("/stop")
def stop_live(req: StopRequest) -> Dict[str, Any]:
    return raise_for_result(get_hub().live.stop(req.cacheKey)).to_dict()


@router.get("/active")
def list_active() -> Dict[str, Any]:
    jobs = get_hub().monitor.active_jobs()
    return {"jobs": [job.to_dict() for job in jobs], "count": len(jobs)}


@router.get("/active/count")
def count_active() -> Dict[str, int]:
    hub = get_hub()
    return {
        "live": len(hub.monitor.active_live_jobs()),
        "downloads": len(hub.monitor.active_download_jobs()),
        "consumers": len(hub.consumers.items()),
    }


@router.post("/{recording_id}/viewers")
def track_viewer(recording_id: str, request: Request, body: ViewerHeartbeat | None = None) -> Dict[str, Any]:
    client_ip = (body.clientIp if body else None) or (request.client.host if request.client else "unknown")
    viewers = get_hub().viewers
    viewers.track(recording_id, client_ip)
    return {"recordingId": recording_id, "viewers": viewers.count(recording_id)}


@router.get("/{recording_id}/viewers")
def count_viewers(recording_id: str) -> Dict[str, Any]:
    return {"recordingId": recording_id, "viewers": get_hub().viewers.count(recording_id)}


@router.post("/consumers")
def add_consumer(req: ConsumerRequest) -> Dict[str, Any]:
    _ensure_capacity(req.serviceId)
    hub = get_hub()
    hub.consumers.add(req.consumerId, req.serviceId, req.entry.to_entry() if req.entry else None)
    return {"consumerId": req.consumerId, "serviceId": req.serviceId, "usage": hub.monitor.usage_for_service(req.serviceId)}


@router.delete("/consumers/{consumer_id}")
def remove_consumer(consumer_id: str) -> Dict[str, Any]:
    removed = get_hub().consumers.remove(consumer_id)
    return {"consumerId": consumer_id, "removed": removed}


@router.get("/services/{service_id}/usage")
def service_usage(service_id: str) -> Dict[str, Any]:
    hub = get_hub()
    service = hub.services.find_by_id(service_id)
    if service is None:
        raise api_error(404, "SERVICE_NOT_FOUND", f"Unknown service {service_id}")
    usage = hub.monitor.usage_for_service(service_id)
    return {
        "serviceId": service_id,
        "usage": usage,
        "max": service.max_concurrent_viewers,
        "available": max(service.max_concurrent_viewers - usage, 0),
    }
