"""Filesystem-backed artifact store.

All job coordination goes through four directories:

- ``cache``: playlist entries saved before a job exists (``<cacheKey>.json``)
- ``jobs``:  live job records (``<recordingId>.json``) and terminal info
             records (``<recordingId>-info.json``)
- ``work``:  worker output while a job runs, plus its ``.log``/``.status``
- ``media``: finalized media files and their ``<file>.json`` sidecars
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import uuid
from pathlib import Path
from typing import Any, Iterator, List, Optional

from apps.api import config
from apps.api.services.jobs import InfoRecord, Job, JobNotFoundError, PlaylistEntry

LOGGER = logging.getLogger(__name__)

INFO_SUFFIX = "-info.json"

_CACHE_KEY_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9._-]*$")


class InvalidCacheKeyError(ValueError):
    """Raised for cache keys that would escape the cache directory."""


def is_valid_cache_key(cache_key: str | None) -> bool:
    """Cache keys are plain file stems: no separators and no ``..``."""
    return bool(cache_key) and ".." not in cache_key and _CACHE_KEY_RE.match(cache_key) is not None


class ArtifactStore:
    def __init__(
        self,
        data_root: Path | str | None = None,
        *,
        cache_dir: Path | str | None = None,
        jobs_dir: Path | str | None = None,
        work_dir: Path | str | None = None,
        media_dir: Path | str | None = None,
    ) -> None:
        root = Path(data_root).expanduser() if data_root else None
        self.cache_dir = self._resolve(cache_dir, root, "cache", config.CACHE_DIR)
        self.jobs_dir = self._resolve(jobs_dir, root, "jobs", config.JOBS_DIR)
        self.work_dir = self._resolve(work_dir, root, "work", config.WORK_DIR)
        self.media_dir = self._resolve(media_dir, root, "media", config.MEDIA_DIR)
        self.ensure_dirs()

    @staticmethod
    def _resolve(explicit: Path | str | None, root: Path | None, name: str, default: Path) -> Path:
        if explicit:
            return Path(explicit).expanduser()
        if root is not None:
            return root / name
        return default

    def ensure_dirs(self) -> None:
        for directory in (self.cache_dir, self.jobs_dir, self.work_dir, self.media_dir):
            directory.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Generic blob access
    def read_json(self, path: Path | str) -> Any:
        return json.loads(Path(path).read_text(encoding="utf-8"))

    def write_json(self, path: Path | str, value: Any) -> None:
        self.write_text(path, json.dumps(value, indent=2, sort_keys=True))

    def read_text(self, path: Path | str) -> str:
        return Path(path).read_text(encoding="utf-8")

    def write_text(self, path: Path | str, content: str) -> None:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = target.with_name(f".{target.name}.{uuid.uuid4().hex[:8]}.tmp")
        tmp_path.write_text(content, encoding="utf-8")
        os.replace(tmp_path, target)

    def exists(self, path: Path | str | None) -> bool:
        if not path:
            return False
        try:
            return Path(path).exists()
        except OSError:
            return False

    def delete(self, path: Path | str | None) -> bool:
        """Remove a file or directory tree; returns False when nothing was there."""
        if not path:
            return False
        target = Path(path)
        try:
            if target.is_dir() and not target.is_symlink():
                shutil.rmtree(target)
            else:
                target.unlink()
        except FileNotFoundError:
            return False
        LOGGER.debug("[store] Deleted %s", target)
        return True

    # ------------------------------------------------------------------
    # Job records
    def job_path(self, recording_id: str) -> Path:
        return self.jobs_dir / f"{recording_id}.json"

    def info_path(self, recording_id: str) -> Path:
        return self.jobs_dir / f"{recording_id}{INFO_SUFFIX}"

    def cache_path(self, cache_key: str) -> Path:
        if not is_valid_cache_key(cache_key):
            raise InvalidCacheKeyError(f"invalid cache key {cache_key!r}")
        return self.cache_dir / f"{cache_key}.json"

    def read_job(self, recording_id: str) -> Job:
        path = self.job_path(recording_id)
        if not path.exists():
            raise JobNotFoundError(recording_id)
        return self.read_job_file(path)

    def read_job_file(self, path: Path) -> Job:
        try:
            return Job.from_dict(self.read_json(path))
        except (json.JSONDecodeError, ValueError) as exc:
            raise JobNotFoundError(path.stem) from exc

    def write_job(self, job: Job) -> Path:
        path = self.job_path(job.recording_id)
        self.write_json(path, job.to_dict())
        return path

    def delete_job(self, recording_id: str) -> bool:
        return self.delete(self.job_path(recording_id))

    def iter_job_files(self) -> Iterator[Path]:
        if not self.jobs_dir.exists():
            return
        for path in sorted(self.jobs_dir.glob("*.json")):
            if path.name.endswith(INFO_SUFFIX):
                continue
            yield path

    def list_jobs(self) -> List[Job]:
        """All readable job records, newest first. Corrupt records are skipped."""
        jobs: List[Job] = []
        for path in self.iter_job_files():
            try:
                jobs.append(self.read_job_file(path))
            except (OSError, JobNotFoundError) as exc:
                LOGGER.warning("[store] Skipping unreadable job record %s: %s", path.name, exc)
        jobs.sort(key=lambda job: job.created_at or "", reverse=True)
        return jobs

    def find_jobs_by_cache_key(self, cache_key: str) -> List[Job]:
        return [job for job in self.list_jobs() if job.cache_key == cache_key]

    def find_job_by_cache_key(self, cache_key: str) -> Optional[Job]:
        matches = self.find_jobs_by_cache_key(cache_key)
        return matches[0] if matches else None

    # ------------------------------------------------------------------
    # Info records
    def info_exists(self, recording_id: str) -> bool:
        return self.info_path(recording_id).exists()

    def read_info(self, recording_id: str) -> InfoRecord:
        path = self.info_path(recording_id)
        if not path.exists():
            raise JobNotFoundError(recording_id)
        return InfoRecord.from_dict(self.read_json(path))

    def find_info_by_cache_key(self, cache_key: str) -> Optional[InfoRecord]:
        for path in sorted(self.jobs_dir.glob(f"*{INFO_SUFFIX}"), reverse=True):
            try:
                info = InfoRecord.from_dict(self.read_json(path))
            except (OSError, ValueError) as exc:
                LOGGER.debug("[store] Skipping info record %s: %s", path.name, exc)
                continue
            if info.job.cache_key == cache_key:
                return info
        return None

    def write_info(self, info: InfoRecord, *, mirror_to_media: bool = True) -> List[Path]:
        payload = info.to_dict()
        written = [self.info_path(info.job.recording_id)]
        if mirror_to_media:
            written.append(Path(f"{info.job.final_output_file}.json"))
        for path in written:
            self.write_json(path, payload)
        return written

    # ------------------------------------------------------------------
    # Playlist cache
    def read_cached_entry(self, cache_key: str) -> Optional[PlaylistEntry]:
        path = self.cache_path(cache_key)
        try:
            data = self.read_json(path)
        except FileNotFoundError:
            return None
        except json.JSONDecodeError:
            LOGGER.warning("[store] Cache entry %s is not valid JSON", path.name)
            return None
        if not isinstance(data, dict):
            return None
        return PlaylistEntry.from_dict(data)

    def write_cached_entry(self, cache_key: str, entry: PlaylistEntry) -> Path:
        path = self.cache_path(cache_key)
        self.write_json(path, entry.to_dict())
        return path

    def delete_cached_entry(self, cache_key: str) -> bool:
        if not is_valid_cache_key(cache_key):
            if cache_key:
                LOGGER.warning("[store] Refusing to delete cache entry for invalid key %r", cache_key)
            return False
        return self.delete(self.cache_path(cache_key))


__all__ = ["ArtifactStore", "INFO_SUFFIX", "InvalidCacheKeyError", "is_valid_cache_key"]
