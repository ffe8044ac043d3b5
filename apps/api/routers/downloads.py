from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from apps.api.errors import api_error, raise_for_result
from apps.api.services.hub import get_hub
from apps.api.services.jobs import PlaylistEntry

router = APIRouter()
LOGGER = logging.getLogger(__name__)


class EntryPayload(BaseModel):
    name: str = Field(..., description="Display name of the playlist entry")
    url: str = Field(..., description="Source stream or file URL")
    groupTitle: str = Field("", description="Playlist group")
    tvgLogo: str = Field("", description="Logo URL")
    tvgId: str = Field("", description="EPG channel id")

    def to_entry(self) -> PlaylistEntry:
        return PlaylistEntry(
            name=self.name,
            url=self.url,
            group_title=self.groupTitle,
            tvg_logo=self.tvgLogo,
            tvg_id=self.tvgId,
        )


class DownloadStartRequest(BaseModel):
    cacheKey: str = Field(..., min_length=1, description="Key of the cached playlist entry")
    user: str = Field(..., min_length=1, description="User requesting the download")
    entry: EntryPayload | None = Field(None, description="Entry to use instead of the cached one")


class StopRequest(BaseModel):
    cacheKey: str = Field(..., min_length=1, description="Cache key the job was started with")


@router.post("/start")
def start_download(req: DownloadStartRequest) -> Dict[str, Any]:
    hub = get_hub()
    entry = req.entry.to_entry() if req.entry else None
    result = hub.downloads.start(req.cacheKey, req.user, entry)
    return raise_for_result(result).to_dict()


@router.post("/stop")
def stop_download(req: StopRequest) -> Dict[str, Any]:
    return raise_for_result(get_hub().downloads.stop(req.cacheKey)).to_dict()


@router.get("/monitor")
def monitor_download(
    cacheKey: str | None = Query(None, description="Cache key of the download"),
    recordingId: str | None = Query(None, description="Recording id of the download"),
) -> Dict[str, Any]:
    if not cacheKey and not recordingId:
        raise api_error(400, "MISSING_JOB_REF", "Missing cacheKey or recordingId")
    return get_hub().monitor.describe(cache_key=cacheKey, recording_id=recordingId)
