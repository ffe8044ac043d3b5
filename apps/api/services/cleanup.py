"""Reconcile job records that no longer match reality.

Each job record in the jobs directory is classified:

- ghost:  no info record and no final media; delete outright
- zombie: PID is gone but STATUS still claims activity; finalize
- done:   terminal STATUS that nobody finalized yet; finalize
- forced: ``force`` requested and none of the above; finalize

Records younger than the minimum age are left alone unless ``force`` is set.
A second pass (``delete_old_dangling``) removes artifacts that no job record
points at anymore.

``finalize_ended`` is the targeted pass behind the completion hook and live
stop: no age gate, and only jobs whose worker has ended (terminal STATUS or
dead PID) are touched.

Sweeps take no locks. A request racing a sweep may see one spurious 404.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Literal, Optional, Set

from apps.api import config
from apps.api.services.finalizer import JobFinalizer
from apps.api.services.jobs import InfoRecord, Job, JobKind, JobNotFoundError
from apps.api.services.process import is_alive
from apps.api.services.scheduler import JobScheduler, ScheduledJob
from apps.api.services.storage import INFO_SUFFIX, ArtifactStore
from py_streamhub.status_files import normalize_status, parse_pid, read_status_latest

LOGGER = logging.getLogger(__name__)

CleanupReason = Literal["ghost", "zombie", "done", "forced"]

_TERMINAL = {"done", "error"}
_WORK_SUFFIXES = (".log", ".status", ".part")


@dataclass
class CleanupCandidate:
    job: Job
    reason: CleanupReason
    full_path: Path

    def to_dict(self) -> Dict[str, object]:
        return {
            "recordingId": self.job.recording_id,
            "cacheKey": self.job.cache_key,
            "kind": self.job.kind.value,
            "reason": self.reason,
            "fullPath": str(self.full_path),
        }


@dataclass
class SweepReport:
    force: bool
    candidates: int = 0
    finalized: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    skipped_scheduled: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    dangling_removed: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "force": self.force,
            "candidates": self.candidates,
            "finalized": self.finalized,
            "deleted": self.deleted,
            "skippedScheduled": self.skipped_scheduled,
            "failed": self.failed,
            "danglingRemoved": self.dangling_removed,
        }


class CleanupSweeper:
    def __init__(
        self,
        store: ArtifactStore,
        finalizer: JobFinalizer | None = None,
        *,
        liveness: Callable[[Optional[int]], bool] = is_alive,
        scheduler: JobScheduler | None = None,
        min_age_seconds: float | None = None,
        start_grace_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.finalizer = finalizer or JobFinalizer(store)
        self.liveness = liveness
        self.scheduler = scheduler
        self.min_age_seconds = config.MIN_CLEANUP_AGE_SECONDS if min_age_seconds is None else min_age_seconds
        self.start_grace_seconds = (
            config.WORKER_START_GRACE_SECONDS if start_grace_seconds is None else start_grace_seconds
        )
        self.clock = clock

    def _age(self, path: Path) -> float:
        return self.clock() - path.stat().st_mtime

    # ------------------------------------------------------------------
    def classify(self, job: Job, path: Path, force: bool = False) -> Optional[CleanupReason]:
        has_info = self.store.info_exists(job.recording_id)
        has_final = self.store.exists(job.final_output_file)
        if not force and has_info and has_final:
            return None
        if not force and self._age(path) < self.min_age_seconds:
            return None

        if not has_info and not has_final:
            return "ghost"
        status = read_status_latest(job.status_file)
        state = normalize_status(status.get("STATUS"))
        pid_alive = self.liveness(parse_pid(status))
        if not pid_alive and state not in _TERMINAL:
            return "zombie"
        if state in _TERMINAL:
            return "done"
        if force:
            return "forced"
        return None

    def find_candidates(self, force: bool = False) -> List[CleanupCandidate]:
        candidates: List[CleanupCandidate] = []
        for path in self.store.iter_job_files():
            try:
                job = self.store.read_job_file(path)
                reason = self.classify(job, path, force)
            except (OSError, JobNotFoundError) as exc:
                LOGGER.warning("[cleanup] Skipping %s: %s", path.name, exc)
                continue
            if reason is not None:
                candidates.append(CleanupCandidate(job=job, reason=reason, full_path=path))
        return candidates

    # ------------------------------------------------------------------
    def has_ended(self, job: Job, path: Path | None = None) -> bool:
        """True once the worker behind ``job`` is no longer running.

        A terminal STATUS or a dead PID ends a job. Without either, a record
        older than the start grace period counts as a worker that never came up.
        """
        status = read_status_latest(job.status_file)
        if normalize_status(status.get("STATUS")) in _TERMINAL:
            return True
        pid = parse_pid(status)
        if pid is not None:
            return not self.liveness(pid)
        try:
            return self._age(path or self.store.job_path(job.recording_id)) >= self.start_grace_seconds
        except FileNotFoundError:
            return True

    def finalize_ended(
        self,
        *,
        cache_key: str | None = None,
        recording_id: str | None = None,
        kind: JobKind | None = None,
    ) -> SweepReport:
        """Finalize the matching jobs whose worker has ended, with no age gate."""
        report = SweepReport(force=False)
        candidates: List[CleanupCandidate] = []
        for path in self.store.iter_job_files():
            try:
                job = self.store.read_job_file(path)
            except (OSError, JobNotFoundError) as exc:
                LOGGER.warning("[cleanup] Skipping %s: %s", path.name, exc)
                continue
            if recording_id and job.recording_id != recording_id:
                continue
            if cache_key and job.cache_key != cache_key:
                continue
            if kind is not None and job.kind is not kind:
                continue
            try:
                if not self.has_ended(job, path):
                    LOGGER.info("[cleanup] %s is still running", job.recording_id)
                    continue
                reason = self._ended_reason(job)
            except OSError as exc:
                LOGGER.warning("[cleanup] Skipping %s: %s", path.name, exc)
                continue
            candidates.append(CleanupCandidate(job=job, reason=reason, full_path=path))
        report.candidates = len(candidates)
        self._process(candidates, report)
        return report

    def _ended_reason(self, job: Job) -> CleanupReason:
        if not any(
            (
                self.store.info_exists(job.recording_id),
                self.store.exists(job.final_output_file),
                self.store.exists(job.output_file),
            )
        ):
            return "ghost"
        state = normalize_status(read_status_latest(job.status_file).get("STATUS"))
        return "done" if state in _TERMINAL else "zombie"

    # ------------------------------------------------------------------
    def delete_job_completely(self, job: Job, job_path: Path | None = None) -> None:
        """Remove a job record and every artifact derived from it."""
        final_path = Path(job.final_output_file)
        paths: List[Path] = [
            job_path or self.store.job_path(job.recording_id),
            Path(job.log_file),
            Path(job.status_file),
            self.store.info_path(job.recording_id),
            Path(f"{job.final_output_file}.part"),
        ]
        if job.output_file != job.final_output_file:
            paths.append(Path(job.output_file))
        if not final_path.exists():
            paths.append(Path(f"{job.final_output_file}.json"))
        if self.store.work_dir.exists():
            for entry in self.store.work_dir.iterdir():
                if entry.is_dir() and entry.name.startswith(job.recording_id) and entry.name.endswith("_hls"):
                    paths.append(entry)
        for path in paths:
            if self.store.delete(path):
                LOGGER.info("[cleanup] Removed %s", path)
        if job.kind.cache_backed:
            self.store.delete_cached_entry(job.cache_key)

    def _pending(self) -> List[ScheduledJob]:
        if self.scheduler is None:
            return []
        return self.scheduler.pending_jobs()

    @staticmethod
    def _is_scheduled(job: Job, pending: List[ScheduledJob]) -> bool:
        for scheduled in pending:
            if scheduled.output_file:
                if scheduled.output_file == job.output_file:
                    return True
            elif scheduled.cache_key and scheduled.cache_key == job.cache_key:
                return True
        return False

    def _process(self, candidates: List[CleanupCandidate], report: SweepReport) -> None:
        pending = self._pending() if candidates else []
        for candidate in candidates:
            job = candidate.job
            if self._is_scheduled(job, pending):
                LOGGER.info("[cleanup] Skipping %s: still scheduled", job.recording_id)
                report.skipped_scheduled.append(job.recording_id)
                continue
            LOGGER.info("[cleanup] Cleaning up %s (%s)", job.recording_id, candidate.reason)
            try:
                if candidate.reason == "ghost":
                    self.delete_job_completely(job, candidate.full_path)
                    report.deleted.append(job.recording_id)
                elif self.finalizer.finalize(job):
                    report.finalized.append(job.recording_id)
                else:
                    report.failed.append(job.recording_id)
            except OSError as exc:
                LOGGER.error("[cleanup] Failed to clean %s: %s", job.recording_id, exc)
                report.failed.append(job.recording_id)

    def sweep(self, force: bool = False) -> SweepReport:
        report = SweepReport(force=force)
        candidates = self.find_candidates(force)
        report.candidates = len(candidates)
        self._process(candidates, report)

        report.dangling_removed = self.delete_old_dangling(force)
        LOGGER.info(
            "[cleanup] Sweep done: %d candidates, %d finalized, %d deleted, %d dangling",
            report.candidates,
            len(report.finalized),
            len(report.deleted),
            report.dangling_removed,
        )
        return report

    # ------------------------------------------------------------------
    def delete_old_dangling(self, force: bool = False) -> int:
        """Age-based removal of artifacts with no owning job or media file."""
        max_age = 0.0 if force else float(self.min_age_seconds)
        jobs = self.store.list_jobs()
        removed = 0
        removed += self._clean_cache_entries(max_age, {job.cache_key for job in jobs})
        removed += self._clean_info_records(max_age)
        removed += self._clean_work_files(max_age, jobs)
        removed += self._clean_media_sidecars(max_age)
        return removed

    def _old_enough(self, path: Path, max_age: float) -> bool:
        try:
            return self._age(path) >= max_age
        except FileNotFoundError:
            return False

    def _remove(self, path: Path, label: str) -> int:
        if self.store.delete(path):
            LOGGER.info("[cleanup] Orphan %s: %s", label, path)
            return 1
        return 0

    def _clean_cache_entries(self, max_age: float, used_keys: Set[str]) -> int:
        removed = 0
        for path in self.store.cache_dir.glob("cache-*.json"):
            if path.stem in used_keys or not self._old_enough(path, max_age):
                continue
            removed += self._remove(path, "cache entry")
        return removed

    def _clean_info_records(self, max_age: float) -> int:
        removed = 0
        for path in self.store.jobs_dir.glob(f"*{INFO_SUFFIX}"):
            if not self._old_enough(path, max_age):
                continue
            try:
                info = InfoRecord.from_dict(self.store.read_json(path))
                media_present = self.store.exists(info.job.final_output_file)
            except (OSError, ValueError) as exc:
                LOGGER.warning("[cleanup] Unreadable info record %s: %s", path.name, exc)
                media_present = False
            if not media_present:
                removed += self._remove(path, "info record")
        return removed

    def _clean_work_files(self, max_age: float, jobs: List[Job]) -> int:
        recording_ids = {job.recording_id for job in jobs}
        output_names = {Path(job.output_file).name for job in jobs}
        removed = 0
        for entry in self.store.work_dir.iterdir():
            if entry.name.startswith("."):
                continue
            if entry.is_dir():
                if not entry.name.endswith("_hls"):
                    continue
                tracked = entry.name[: -len("_hls")] in recording_ids
                label = "HLS dir"
            elif entry.name.endswith(_WORK_SUFFIXES):
                base = entry.name.rsplit(".", 1)[0]
                tracked = base in output_names or base in recording_ids or Path(base).stem in recording_ids
                label = "work file"
            else:
                continue
            if tracked or not self._old_enough(entry, max_age):
                continue
            removed += self._remove(entry, label)
        return removed

    def _clean_media_sidecars(self, max_age: float) -> int:
        removed = 0
        for path in self.store.media_dir.glob("*.json"):
            if path.name.startswith("."):
                continue
            media_file = path.with_suffix("")
            if media_file.exists() or not self._old_enough(path, max_age):
                continue
            removed += self._remove(path, "media sidecar")
        return removed


__all__ = ["CleanupCandidate", "CleanupSweeper", "SweepReport"]
