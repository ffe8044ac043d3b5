"""Turn a stopped job into its durable info record."""

from __future__ import annotations

import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Callable

from apps.api.services.jobs import InfoRecord, Job, JobKind
from apps.api.services.storage import ArtifactStore
from py_streamhub.naming import timestamped_sibling
from py_streamhub.status_files import read_log, read_status_full

LOGGER = logging.getLogger(__name__)


class JobFinalizer:
    def __init__(self, store: ArtifactStore, *, clock: Callable[[], datetime] = datetime.now) -> None:
        self.store = store
        self.clock = clock

    def _resolve_final_path(self, job: Job) -> Path:
        final_path = Path(job.final_output_file)
        if final_path.exists():
            renamed = timestamped_sibling(final_path, self.clock())
            LOGGER.info("[finalize] %s already exists, using %s", final_path.name, renamed.name)
            return renamed
        return final_path

    def move_output(self, job: Job) -> bool:
        """Move the working output to its final path; True when a move happened."""
        output = Path(job.output_file)
        if job.output_file == job.final_output_file:
            return False
        if not output.exists():
            LOGGER.warning("[finalize] Working output missing for %s: %s", job.recording_id, output)
            return False
        target = self._resolve_final_path(job)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(output), str(target))
        job.final_output_file = str(target)
        LOGGER.info("[finalize] Moved %s -> %s", output.name, target)
        return True

    def finalize(self, job: Job) -> bool:
        """Snapshot status/logs, move the output into place, drop working files.

        The ``<final>.json`` sidecar is only written when the final file is this
        job's own output; a skipped move leaves another job's sidecar alone.

        Returns False when the worker files cannot be read; move and write
        errors propagate.
        """
        try:
            status = read_status_full(job.status_file)
            logs = read_log(job.log_file)
        except OSError as exc:
            LOGGER.error("[finalize] Could not read worker files for %s: %s", job.recording_id, exc)
            return False

        owns_final = False
        if job.kind is not JobKind.LIVE:
            moved = self.move_output(job)
            owns_final = moved or (
                job.output_file == job.final_output_file and self.store.exists(job.final_output_file)
            )

        info = InfoRecord(job=job, logs=logs, status=status)
        written = self.store.write_info(info, mirror_to_media=owns_final)
        LOGGER.info("[finalize] Wrote info record(s) for %s: %s", job.recording_id, ", ".join(p.name for p in written))

        self.store.delete_job(job.recording_id)
        self.store.delete(job.log_file)
        self.store.delete(job.status_file)
        if job.kind is JobKind.LIVE:
            segments_dir = Path(job.output_file).parent
            if segments_dir.name.endswith("_hls"):
                self.store.delete(segments_dir)
        if job.kind.cache_backed:
            self.store.delete_cached_entry(job.cache_key)
        return True


__all__ = ["JobFinalizer"]
