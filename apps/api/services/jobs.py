"""Job record models shared by the resolvers, finalizer and sweeper.

A job record is written once, before its worker starts, and is never rewritten
afterwards: the worker communicates only through ``<outputFile>.status`` and
``<outputFile>.log``. On disk the record keeps the camelCase keys used by the
worker scripts and the web UI.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


class JobNotFoundError(FileNotFoundError):
    """Raised when attempting to operate on a job that is unknown."""


class JobKind(str, Enum):
    RECORDING = "recording"
    LIVE = "live"
    DOWNLOAD = "download"
    MOVIE = "movie"

    @property
    def auto_stops(self) -> bool:
        """Only live restreams stop on their own once nobody is watching."""
        return self is JobKind.LIVE

    @property
    def cache_backed(self) -> bool:
        """Kinds whose originating cache entry is dropped once the job is finalized."""
        return self in (JobKind.LIVE, JobKind.DOWNLOAD)

    @property
    def record_prefix(self) -> str:
        return {
            JobKind.RECORDING: "recording",
            JobKind.LIVE: "live",
            JobKind.DOWNLOAD: "download",
            JobKind.MOVIE: "movie",
        }[self]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


@dataclass
class PlaylistEntry:
    """Denormalized copy of the playlist entry a job was created from."""

    name: str
    url: str
    group_title: str = ""
    tvg_logo: str = ""
    tvg_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "url": self.url,
            "groupTitle": self.group_title,
            "tvgLogo": self.tvg_logo,
            "tvgId": self.tvg_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PlaylistEntry":
        return cls(
            name=str(data.get("name") or data.get("title") or ""),
            url=str(data.get("url") or ""),
            group_title=str(data.get("groupTitle") or data.get("group_title") or ""),
            tvg_logo=str(data.get("tvgLogo") or data.get("tvg_logo") or ""),
            tvg_id=str(data.get("tvgId") or data.get("tvg_id") or ""),
        )


@dataclass
class Job:
    recording_id: str
    cache_key: str
    kind: JobKind
    user: str
    output_file: str
    final_output_file: str
    format: str
    recording_type: str
    entry: PlaylistEntry
    start_time: str = field(default_factory=utc_now_iso)
    created_at: str = field(default_factory=utc_now_iso)
    duration: Optional[int] = None
    url: Optional[str] = None
    log_file: str = ""
    status_file: str = ""

    def __post_init__(self) -> None:
        # Worker files always live beside the working output.
        if not self.log_file:
            self.log_file = f"{self.output_file}.log"
        if not self.status_file:
            self.status_file = f"{self.output_file}.status"

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "recordingId": self.recording_id,
            "cacheKey": self.cache_key,
            "kind": self.kind.value,
            "user": self.user,
            "outputFile": self.output_file,
            "finalOutputFile": self.final_output_file,
            "logFile": self.log_file,
            "statusFile": self.status_file,
            "format": self.format,
            "recordingType": self.recording_type,
            "startTime": self.start_time,
            "createdAt": self.created_at,
            "entry": self.entry.to_dict(),
        }
        if self.duration is not None:
            payload["duration"] = self.duration
        if self.url is not None:
            payload["url"] = self.url
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Job":
        if not isinstance(data, Mapping):
            raise ValueError(f"job record must be a JSON object, got {type(data).__name__}")
        try:
            recording_id = str(data["recordingId"])
            output_file = str(data["outputFile"])
        except KeyError as exc:
            raise ValueError(f"job record missing field {exc.args[0]!r}") from exc
        entry_data = data.get("entry")
        if isinstance(entry_data, Mapping):
            entry = PlaylistEntry.from_dict(entry_data)
        else:
            entry = PlaylistEntry(name=recording_id, url=str(data.get("url") or ""))
        duration = data.get("duration")
        return cls(
            recording_id=recording_id,
            cache_key=str(data.get("cacheKey") or ""),
            kind=_infer_kind(data),
            user=str(data.get("user") or ""),
            output_file=output_file,
            final_output_file=str(data.get("finalOutputFile") or output_file),
            log_file=str(data.get("logFile") or ""),
            status_file=str(data.get("statusFile") or ""),
            format=str(data.get("format") or ""),
            recording_type=str(data.get("recordingType") or ""),
            start_time=str(data.get("startTime") or ""),
            created_at=str(data.get("createdAt") or ""),
            entry=entry,
            duration=int(duration) if isinstance(duration, (int, float)) else None,
            url=data.get("url"),
        )


def _infer_kind(data: Mapping[str, Any]) -> JobKind:
    raw = data.get("kind")
    if raw:
        return JobKind(raw)
    # Records written before ``kind`` existed.
    if "url" in data:
        return JobKind.DOWNLOAD
    if data.get("format") == "hls-live":
        return JobKind.LIVE
    if data.get("recordingType") == "movie":
        return JobKind.MOVIE
    return JobKind.RECORDING


@dataclass
class InfoRecord:
    """Terminal snapshot of a finished job."""

    job: Job
    logs: List[str]
    status: Dict[str, List[str]]

    def to_dict(self) -> Dict[str, Any]:
        return {"job": self.job.to_dict(), "logs": list(self.logs), "status": dict(self.status)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "InfoRecord":
        if not isinstance(data, Mapping):
            raise ValueError(f"info record must be a JSON object, got {type(data).__name__}")
        raw_status = data.get("status")
        status: Dict[str, List[str]] = {}
        for key, value in (raw_status.items() if isinstance(raw_status, Mapping) else ()):
            status[str(key)] = [str(v) for v in value] if isinstance(value, list) else [str(value)]
        return cls(
            job=Job.from_dict(data.get("job") or {}),
            logs=[str(line) for line in data.get("logs") or []],
            status=status,
        )


__all__ = [
    "InfoRecord",
    "Job",
    "JobKind",
    "JobNotFoundError",
    "PlaylistEntry",
    "utc_now_iso",
]
