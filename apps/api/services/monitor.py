"""Read-side views over jobs: per-job monitor, active listing, service usage."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from apps.api.services.jobs import InfoRecord, Job, JobKind, JobNotFoundError
from apps.api.services.process import is_alive
from apps.api.services.storage import ArtifactStore
from apps.api.services.streaming_services import ServiceRegistry
from apps.api.services.viewers import ConsumerTracker
from py_streamhub.status_files import (
    ACTIVE_STATUSES,
    effective_status,
    extract_latest_progress_percent,
    format_status_lines,
    latest_value,
    parse_content_length,
    parse_pid,
    read_log,
    read_status_latest,
)

LOGGER = logging.getLogger(__name__)

_LIVE_STATUSES = {"live", "recording"}


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _server_time() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


@dataclass
class EnrichedJob:
    recording_id: str
    cache_key: str
    kind: str
    format: str
    recording_type: str
    name: str
    group_title: str
    tvg_logo: str
    started_at: str
    user: str
    status: str
    service_name: Optional[str] = None
    service_id: Optional[str] = None
    duration: Optional[int] = None
    final_output_file: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {_camel(key): value for key, value in asdict(self).items()}


class JobMonitor:
    def __init__(
        self,
        store: ArtifactStore,
        consumers: ConsumerTracker,
        services: ServiceRegistry | None = None,
        *,
        liveness: Callable[[Optional[int]], bool] = is_alive,
    ) -> None:
        self.store = store
        self.consumers = consumers
        self.services = services or ServiceRegistry()
        self.liveness = liveness

    # ------------------------------------------------------------------
    def resolve_recording_id(self, cache_key: str | None, recording_id: str | None) -> str:
        if recording_id:
            return recording_id
        if cache_key:
            job = self.store.find_job_by_cache_key(cache_key)
            if job is not None:
                return job.recording_id
            info = self.store.find_info_by_cache_key(cache_key)
            if info is not None:
                return info.job.recording_id
        raise JobNotFoundError(cache_key or recording_id or "")

    def describe(self, *, cache_key: str | None = None, recording_id: str | None = None) -> Dict[str, Any]:
        """Poll payload for one job, from its info record once finalized."""
        rid = self.resolve_recording_id(cache_key, recording_id)
        if self.store.info_exists(rid):
            return self._describe_finished(self.store.read_info(rid))
        job = self.store.read_job(rid)
        status = read_status_latest(job.status_file)
        logs = read_log(job.log_file)
        pid_alive = self.liveness(parse_pid(status))
        raw_status = status.get("STATUS")
        current = effective_status(raw_status, pid_alive)
        if current == "error" and (raw_status or "").lower() in ACTIVE_STATUSES:
            LOGGER.warning("[monitor] Zombie detected for %s", job.recording_id)
        duration = status.get("DURATION")
        return {
            "recordingId": job.recording_id,
            "cacheKey": job.cache_key,
            "kind": job.kind.value,
            "user": status.get("USER") or job.user,
            "duration": int(duration) if duration and duration.isdigit() else job.duration,
            "createdAt": job.created_at,
            "outputFile": status.get("OUTPUT_FILE") or job.output_file,
            "finalOutputFile": job.final_output_file,
            "currentStatus": current,
            "pidAlive": pid_alive,
            "statusLines": format_status_lines(status),
            "logLines": logs,
            "progressPercent": extract_latest_progress_percent(logs),
            "contentLength": parse_content_length(status),
            "startedAt": status.get("STARTED_AT"),
            "expectedStop": status.get("EXPECTED_STOP"),
            "serverTime": _server_time(),
        }

    def _describe_finished(self, info: InfoRecord) -> Dict[str, Any]:
        job = info.job
        return {
            "recordingId": job.recording_id,
            "cacheKey": job.cache_key,
            "kind": job.kind.value,
            "user": job.user,
            "duration": job.duration,
            "createdAt": job.created_at,
            "outputFile": job.output_file,
            "finalOutputFile": job.final_output_file,
            "currentStatus": "done",
            "pidAlive": False,
            "statusLines": format_status_lines(info.status),
            "logLines": info.logs,
            "progressPercent": extract_latest_progress_percent(info.logs),
            "contentLength": parse_content_length(info.status),
            "startedAt": latest_value(info.status.get("STARTED_AT")),
            "expectedStop": latest_value(info.status.get("EXPECTED_STOP")),
            "serverTime": _server_time(),
        }

    # ------------------------------------------------------------------
    def _running(self) -> List[Tuple[Job, str]]:
        running: List[Tuple[Job, str]] = []
        for job in self.store.list_jobs():
            status = read_status_latest(job.status_file)
            state = (status.get("STATUS") or "").lower()
            if state in ACTIVE_STATUSES and self.liveness(parse_pid(status)):
                running.append((job, state))
        return running

    def active_live_jobs(self) -> List[Job]:
        return [job for job, state in self._running() if state in _LIVE_STATUSES]

    def active_download_jobs(self) -> List[Job]:
        return [job for job, state in self._running() if state == "downloading"]

    def enrich(self, job: Job, status: str) -> EnrichedJob:
        service = self.services.find_for_url(job.url or job.entry.url)
        return EnrichedJob(
            recording_id=job.recording_id,
            cache_key=job.cache_key,
            kind=job.kind.value,
            format=job.format,
            recording_type=job.recording_type,
            name=job.entry.name or "Unknown Stream",
            group_title=job.entry.group_title or "Unknown Group",
            tvg_logo=job.entry.tvg_logo,
            started_at=job.start_time,
            user=job.user,
            status=status,
            service_name=service.name if service else None,
            service_id=service.id if service else None,
            duration=job.duration,
            final_output_file=job.final_output_file,
        )

    def active_jobs(self) -> List[EnrichedJob]:
        """Running workers plus open movie players."""
        enriched = [self.enrich(job, state) for job, state in self._running()]
        for consumer in self.consumers.items():
            service = self.services.find_by_id(consumer.service_id)
            entry = consumer.entry
            enriched.append(
                EnrichedJob(
                    recording_id=consumer.consumer_id,
                    cache_key=consumer.consumer_id,
                    kind=JobKind.MOVIE.value,
                    format="stream",
                    recording_type="movie",
                    name=entry.name if entry else "Unknown Stream",
                    group_title=entry.group_title if entry else "Unknown Group",
                    tvg_logo=entry.tvg_logo if entry else "",
                    started_at=datetime.fromtimestamp(consumer.started_at, timezone.utc).isoformat(),
                    user="inline",
                    status="playing",
                    service_name=service.name if service else "Unknown Service",
                    service_id=consumer.service_id,
                )
            )
        return enriched

    # ------------------------------------------------------------------
    def usage_for_service(self, service_id: str) -> int:
        """Live jobs + movie consumers + downloads currently drawing on a service."""
        service = self.services.find_by_id(service_id)
        worker_count = 0
        if service is not None:
            for job, _state in self._running():
                if service.matches_url(job.url or job.entry.url):
                    worker_count += 1
        return worker_count + self.consumers.count_for_service(service_id)

    def has_capacity(self, service_id: str) -> bool:
        service = self.services.find_by_id(service_id)
        if service is None:
            return True
        return self.usage_for_service(service_id) < service.max_concurrent_viewers


__all__ = ["EnrichedJob", "JobMonitor"]
