"""Per-kind job orchestration: download, live restream, scheduled recording.

Every start follows the same order: build the job, write its record, then
launch the worker. A record therefore always exists for any worker we may have
started; if the launch fails the record stays behind for the sweeper.

Stopping never signals the worker directly. ``stop-record.sh --outputFile``
is launched detached and the effect shows up later as a ``stopped``/``done``
status line.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from apps.api import config
from apps.api.services.cleanup import CleanupSweeper
from apps.api.services.jobs import Job, JobKind, PlaylistEntry
from apps.api.services.process import ProcessLauncher, SpawnError
from apps.api.services.scheduler import JobScheduler, ScheduledJob, SchedulerError
from apps.api.services.storage import ArtifactStore, is_valid_cache_key
from py_streamhub.naming import (
    build_recording_id,
    extension_from_url,
    final_output_filename,
    shell_command,
)

LOGGER = logging.getLogger(__name__)

NOT_FOUND = "not_found"
SPAWN_FAILED = "spawn_failed"
CONFLICT = "conflict"
SCHEDULE_FAILED = "schedule_failed"
INVALID_REQUEST = "invalid_request"


@dataclass
class ResolverResult:
    success: bool
    recording_id: Optional[str] = None
    cache_key: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None
    code: Optional[str] = None
    scheduled_id: Optional[str] = None

    @classmethod
    def failure(cls, code: str, error: str, **extra: Any) -> "ResolverResult":
        return cls(success=False, code=code, error=error, **extra)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": self.success}
        for key, value in (
            ("recordingId", self.recording_id),
            ("cacheKey", self.cache_key),
            ("message", self.message),
            ("error", self.error),
            ("code", self.code),
            ("scheduledId", self.scheduled_id),
        ):
            if value is not None:
                payload[key] = value
        return payload


def build_worker_args(job: Job, *, base_url: str, loglevel: str) -> List[str]:
    """Flat ``--key value`` argument list understood by the worker scripts."""
    args = [
        "--url", job.url or job.entry.url,
        "--outputFile", job.output_file,
        "--user", job.user,
        "--baseUrl", base_url,
        "--cacheKey", job.cache_key,
        "--loglevel", loglevel,
    ]
    if job.kind is JobKind.RECORDING:
        args += [
            "--duration", str(job.duration or 0),
            "--recordingType", job.recording_type,
            "--format", job.format,
        ]
    elif job.kind is JobKind.LIVE:
        args += ["--duration", str(job.duration or 0), "--format", job.format]
    elif job.kind is JobKind.DOWNLOAD:
        args += ["--format", job.format]
    else:
        raise ValueError(f"{job.kind.value} jobs have no worker")
    return args


def _invalid_cache_key(cache_key: str) -> ResolverResult:
    return ResolverResult.failure(INVALID_REQUEST, f"Invalid cacheKey {cache_key!r}", cache_key=cache_key)


class JobResolver:
    kind: JobKind = JobKind.RECORDING
    default_script: Path = config.RECORD_SCRIPT

    def __init__(
        self,
        store: ArtifactStore,
        launcher: ProcessLauncher | None = None,
        *,
        worker_script: Path | str | None = None,
        stop_script: Path | str | None = None,
        base_url: str | None = None,
        loglevel: str | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.store = store
        self.launcher = launcher or ProcessLauncher()
        self.worker_script = Path(worker_script) if worker_script else self.default_script
        self.stop_script = Path(stop_script) if stop_script else config.STOP_SCRIPT
        self.base_url = base_url or config.BASE_URL
        self.loglevel = loglevel or config.WORKER_LOGLEVEL
        self.clock = clock

    # ------------------------------------------------------------------
    def _resolve_entry(self, cache_key: str, entry: PlaylistEntry | None) -> PlaylistEntry | None:
        if entry is not None and entry.url:
            return entry
        return self.store.read_cached_entry(cache_key)

    def worker_args(self, job: Job) -> List[str]:
        return build_worker_args(job, base_url=self.base_url, loglevel=self.loglevel)

    def _persist_and_launch(self, job: Job) -> ResolverResult:
        self.store.write_job(job)
        LOGGER.info("[%s] Wrote job record %s", self.kind.value, job.recording_id)
        return self._launch_worker(job)

    def _launch_worker(self, job: Job) -> ResolverResult:
        try:
            self.launcher.launch(self.worker_script, self.worker_args(job))
        except (SpawnError, OSError) as exc:
            LOGGER.error("[%s] Worker launch failed for %s: %s", self.kind.value, job.recording_id, exc)
            return ResolverResult.failure(SPAWN_FAILED, str(exc), cache_key=job.cache_key)
        return ResolverResult(
            success=True,
            recording_id=job.recording_id,
            cache_key=job.cache_key,
            message=f"{self.kind.value.capitalize()} {job.recording_id} launched in background.",
        )

    # ------------------------------------------------------------------
    def stop(self, cache_key: str) -> ResolverResult:
        job = self.store.find_job_by_cache_key(cache_key)
        if job is None:
            return ResolverResult.failure(NOT_FOUND, f"No job found for cacheKey {cache_key}", cache_key=cache_key)
        return self.stop_job(job)

    def stop_job(self, job: Job) -> ResolverResult:
        try:
            self.launcher.launch(self.stop_script, ["--outputFile", job.output_file])
        except (SpawnError, OSError) as exc:
            LOGGER.error("[%s] Stop helper failed for %s: %s", self.kind.value, job.recording_id, exc)
            return ResolverResult.failure(SPAWN_FAILED, str(exc), recording_id=job.recording_id, cache_key=job.cache_key)
        LOGGER.info("[%s] Sent stop to %s", self.kind.value, job.recording_id)
        return ResolverResult(
            success=True,
            recording_id=job.recording_id,
            cache_key=job.cache_key,
            message=f"Stop requested for {job.recording_id}.",
        )


class DownloadResolver(JobResolver):
    kind = JobKind.DOWNLOAD
    default_script = config.DOWNLOAD_SCRIPT

    def start(self, cache_key: str, user: str, entry: PlaylistEntry | None = None) -> ResolverResult:
        if not is_valid_cache_key(cache_key):
            return _invalid_cache_key(cache_key)
        entry = self._resolve_entry(cache_key, entry)
        if entry is None:
            return ResolverResult.failure(NOT_FOUND, f"No cached entry for {cache_key}", cache_key=cache_key)

        now = self.clock()
        ext = extension_from_url(entry.url)
        recording_id = build_recording_id(self.kind.record_prefix, entry.url, now)
        final_name = final_output_filename(entry.name, entry.url, ext, allow_extension_from_url=True)
        job = Job(
            recording_id=recording_id,
            cache_key=cache_key,
            kind=self.kind,
            user=user,
            output_file=str(self.store.work_dir / recording_id),
            final_output_file=str(self.store.media_dir / final_name),
            format=ext,
            recording_type="download",
            entry=entry,
            url=entry.url,
        )
        self.store.write_job(job)
        LOGGER.info("[download] Wrote job record %s", recording_id)
        # The job now carries its own copy of the entry.
        self.store.delete_cached_entry(cache_key)
        return self._launch_worker(job)


class LiveResolver(JobResolver):
    kind = JobKind.LIVE
    default_script = config.LIVE_SCRIPT

    def __init__(
        self,
        *args: Any,
        duration: int | None = None,
        sweeper: CleanupSweeper | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.duration = duration or config.LIVE_DURATION_SECONDS
        self.sweeper = sweeper or CleanupSweeper(self.store)

    def start(self, cache_key: str, user: str, entry: PlaylistEntry | None = None) -> ResolverResult:
        if not is_valid_cache_key(cache_key):
            return _invalid_cache_key(cache_key)
        for existing in self.store.find_jobs_by_cache_key(cache_key):
            if existing.kind is not JobKind.LIVE:
                continue
            if not self.sweeper.has_ended(existing):
                LOGGER.info("[live] %s already streaming as %s", cache_key, existing.recording_id)
                return ResolverResult.failure(
                    CONFLICT,
                    f"A live stream for {cache_key} is already running.",
                    recording_id=existing.recording_id,
                    cache_key=cache_key,
                )
            LOGGER.info("[live] Finalizing ended stream %s before restart", existing.recording_id)
            self.sweeper.finalize_ended(recording_id=existing.recording_id)

        entry = self._resolve_entry(cache_key, entry)
        if entry is None:
            return ResolverResult.failure(NOT_FOUND, f"No cached entry for {cache_key}", cache_key=cache_key)

        recording_id = build_recording_id(self.kind.record_prefix, entry.url, self.clock())
        output_file = str(self.store.work_dir / f"{recording_id}_hls" / "playlist.m3u8")
        job = Job(
            recording_id=recording_id,
            cache_key=cache_key,
            kind=self.kind,
            user=user,
            output_file=output_file,
            final_output_file=output_file,
            format="hls-live",
            recording_type="hls",
            entry=entry,
            duration=self.duration,
        )
        return self._persist_and_launch(job)

    def stop_recording(self, recording_id: str) -> ResolverResult:
        try:
            job = self.store.read_job(recording_id)
        except FileNotFoundError:
            return ResolverResult.failure(NOT_FOUND, f"Live job {recording_id} not found", recording_id=recording_id)
        return self.stop_job(job)

    def stop_job(self, job: Job) -> ResolverResult:
        result = super().stop_job(job)
        if result.success:
            # Streams whose worker already exited are finalized right away.
            self.sweeper.finalize_ended(kind=JobKind.LIVE)
        return result


class ScheduleResolver(JobResolver):
    kind = JobKind.RECORDING
    default_script = config.RECORD_SCRIPT

    def __init__(self, *args: Any, scheduler: JobScheduler | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.scheduler = scheduler or JobScheduler()

    def schedule(
        self,
        cache_key: str,
        user: str,
        duration_sec: int,
        *,
        entry: PlaylistEntry | None = None,
        record_now: bool = True,
        start_time: str | None = None,
    ) -> ResolverResult:
        if duration_sec <= 0:
            return ResolverResult.failure(INVALID_REQUEST, "duration must be positive", cache_key=cache_key)
        if not record_now and not start_time:
            return ResolverResult.failure(INVALID_REQUEST, "startTime is required unless recordNow is set", cache_key=cache_key)
        if not is_valid_cache_key(cache_key):
            return _invalid_cache_key(cache_key)
        entry = self._resolve_entry(cache_key, entry)
        if entry is None:
            return ResolverResult.failure(NOT_FOUND, f"No cached entry for {cache_key}", cache_key=cache_key)

        now = self.clock()
        recording_id = build_recording_id(self.kind.record_prefix, entry.url, now)
        job = Job(
            recording_id=recording_id,
            cache_key=cache_key,
            kind=self.kind,
            user=user,
            output_file=str(self.store.work_dir / f"{recording_id}.mp4"),
            final_output_file=str(self.store.media_dir / final_output_filename(entry.name)),
            format="mp4",
            recording_type="hls",
            entry=entry,
            duration=duration_sec,
            start_time=now.isoformat(timespec="seconds") if record_now else str(start_time),
        )
        if record_now:
            return self._persist_and_launch(job)

        self.store.write_job(job)
        command = shell_command(["bash", str(self.worker_script), *self.worker_args(job)])
        description = f"Recording {entry.name} for {duration_sec}s"
        try:
            scheduled = self.scheduler.add(str(start_time), description, command)
        except SchedulerError as exc:
            LOGGER.error("[schedule] Could not schedule %s: %s", recording_id, exc)
            return ResolverResult.failure(SCHEDULE_FAILED, str(exc), recording_id=recording_id, cache_key=cache_key)
        return ResolverResult(
            success=True,
            recording_id=recording_id,
            cache_key=cache_key,
            scheduled_id=scheduled.id,
            message=f"Recording {recording_id} scheduled at {start_time}.",
        )

    def unschedule(self, scheduled_id: str) -> ResolverResult:
        try:
            scheduled = self.scheduler.get(scheduled_id)
            self.scheduler.delete(scheduled_id)
        except SchedulerError as exc:
            return ResolverResult.failure(NOT_FOUND, str(exc), scheduled_id=scheduled_id)
        cache_key = scheduled.cache_key
        job = self._scheduled_record(scheduled)
        recording_id = None
        if job is not None:
            # The worker never ran; nothing to finalize.
            self.store.delete_job(job.recording_id)
            recording_id = job.recording_id
        return ResolverResult(
            success=True,
            recording_id=recording_id,
            cache_key=cache_key,
            scheduled_id=scheduled_id,
            message=f"Scheduled job {scheduled_id} removed.",
        )

    def _scheduled_record(self, scheduled: ScheduledJob) -> Optional[Job]:
        """The job record a scheduled command will write to, matched by output file."""
        output_file = scheduled.output_file
        if output_file:
            for job in self.store.list_jobs():
                if job.output_file == output_file:
                    return job
            return None
        if scheduled.cache_key:
            return self.store.find_job_by_cache_key(scheduled.cache_key)
        return None


__all__ = [
    "CONFLICT",
    "DownloadResolver",
    "INVALID_REQUEST",
    "JobResolver",
    "LiveResolver",
    "NOT_FOUND",
    "ResolverResult",
    "SCHEDULE_FAILED",
    "SPAWN_FAILED",
    "ScheduleResolver",
    "build_worker_args",
]
