"""Deferred recordings through the ``jobctl.sh`` helper.

``jobctl.sh`` wraps ``at(1)`` and prints one JSON object per call::

    {"ok": true, "job": {...}}            # add / get
    {"ok": true, "jobs": [{...}, ...]}     # list
    {"ok": true, "deleted": ["12"]}        # delete
    {"ok": false, "error": "..."}
"""

from __future__ import annotations

import json
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Set

from apps.api import config
from py_streamhub.naming import parse_command_flags

LOGGER = logging.getLogger(__name__)


class SchedulerError(RuntimeError):
    """Raised when jobctl fails or returns ``ok: false``."""


@dataclass(frozen=True)
class ScheduledJob:
    id: str
    datetime: str
    description: str
    command: str

    @property
    def cache_key(self) -> Optional[str]:
        return parse_command_flags(self.command).get("cacheKey")

    @property
    def output_file(self) -> Optional[str]:
        return parse_command_flags(self.command).get("outputFile")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "datetime": self.datetime,
            "description": self.description,
            "command": self.command,
            "cacheKey": self.cache_key,
            "outputFile": self.output_file,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScheduledJob":
        return cls(
            id=str(data.get("id", "")),
            datetime=str(data.get("datetime", "")),
            description=str(data.get("description", "")),
            command=str(data.get("command", "")),
        )


class JobScheduler:
    def __init__(
        self,
        script_path: Path | str | None = None,
        *,
        shell: str = "bash",
        timeout: float | None = None,
    ) -> None:
        self.script_path = Path(script_path) if script_path else config.JOBCTL_SCRIPT
        self.shell = shell
        self.timeout = timeout if timeout is not None else config.JOBCTL_TIMEOUT_SECONDS

    def _run(self, *args: str) -> Dict[str, Any]:
        command = [self.shell, str(self.script_path), *args]
        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise SchedulerError(f"jobctl {args[0]} failed: {exc}") from exc
        stdout = (completed.stdout or "").strip()
        try:
            payload = json.loads(stdout) if stdout else {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("[jobctl] Non-JSON output from %s: %s", args[0], stdout[:200])
            raise SchedulerError(f"jobctl {args[0]} returned invalid JSON") from exc
        if not isinstance(payload, dict) or not payload.get("ok"):
            error = payload.get("error") if isinstance(payload, dict) else None
            stderr = (completed.stderr or "").strip()
            raise SchedulerError(str(error or stderr or f"jobctl {args[0]} exited with {completed.returncode}"))
        return payload

    def add(self, when: str, description: str, command: str) -> ScheduledJob:
        payload = self._run("add", when, description, command)
        job = ScheduledJob.from_dict(payload.get("job") or {})
        LOGGER.info("[jobctl] Scheduled job %s at %s", job.id, job.datetime)
        return job

    def list(self) -> List[ScheduledJob]:
        payload = self._run("list")
        return [ScheduledJob.from_dict(item) for item in payload.get("jobs") or [] if isinstance(item, Mapping)]

    def get(self, job_id: str) -> ScheduledJob:
        payload = self._run("get", job_id)
        return ScheduledJob.from_dict(payload.get("job") or {})

    def delete(self, job_id: str) -> List[str]:
        payload = self._run("delete", job_id)
        deleted = [str(item) for item in payload.get("deleted") or []]
        LOGGER.info("[jobctl] Deleted scheduled job(s) %s", ", ".join(deleted) or job_id)
        return deleted

    def pending_jobs(self) -> List[ScheduledJob]:
        """Recordings still waiting for their start time.

        Returns an empty list when jobctl is unavailable so that cleanup never
        blocks on the scheduler.
        """
        try:
            return self.list()
        except SchedulerError as exc:
            LOGGER.warning("[jobctl] Could not list scheduled jobs: %s", exc)
            return []

    def pending_cache_keys(self) -> Set[str]:
        return {job.cache_key for job in self.pending_jobs() if job.cache_key}


__all__ = ["JobScheduler", "ScheduledJob", "SchedulerError"]
