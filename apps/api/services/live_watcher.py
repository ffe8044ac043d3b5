"""Auto-stop for live restreams nobody is watching.

Every ``interval`` seconds the watcher walks the recordings the viewer
tracker knows about; any that has no viewer left and whose job is a live
restream gets the regular stop path. Stopping an already-stopped job is
harmless, the stop helper no-ops.
"""

from __future__ import annotations

import logging
import threading
from typing import List, Optional

from apps.api import config
from apps.api.services.jobs import Job, JobNotFoundError
from apps.api.services.resolvers import LiveResolver
from apps.api.services.storage import ArtifactStore
from apps.api.services.timers import RecurringTask
from apps.api.services.viewers import ViewerTracker

LOGGER = logging.getLogger(__name__)


class LiveWatcher:
    def __init__(
        self,
        store: ArtifactStore,
        viewers: ViewerTracker,
        resolver: LiveResolver,
        *,
        interval: float | None = None,
    ) -> None:
        self.store = store
        self.viewers = viewers
        self.resolver = resolver
        self.interval = config.LIVE_WATCH_INTERVAL_SECONDS if interval is None else interval
        self._task = RecurringTask("live-watcher", self.interval, self.tick)

    @property
    def running(self) -> bool:
        return self._task.running

    def start(self) -> bool:
        return self._task.start()

    def stop(self) -> None:
        self._task.stop()

    def _load_job(self, recording_id: str) -> Optional[Job]:
        try:
            return self.store.read_job(recording_id)
        except JobNotFoundError:
            return None

    def should_auto_stop(self, recording_id: str) -> bool:
        job = self._load_job(recording_id)
        return job is not None and job.kind.auto_stops

    def tick(self) -> List[str]:
        """Stop idle live jobs once; returns the recording IDs that were stopped."""
        stopped: List[str] = []
        for recording_id in self.viewers.idle_ids():
            job = self._load_job(recording_id)
            if job is None or not job.kind.auto_stops:
                self.viewers.forget(recording_id)
                continue
            LOGGER.info("[live-watcher] No viewers left on %s, stopping", recording_id)
            result = self.resolver.stop_job(job)
            if result.success:
                stopped.append(recording_id)
                self.viewers.forget(recording_id)
            else:
                LOGGER.warning("[live-watcher] Stop failed for %s: %s", recording_id, result.error)
        return stopped


# Global instance
_live_watcher: Optional[LiveWatcher] = None
_live_watcher_lock = threading.Lock()


def get_live_watcher() -> LiveWatcher:
    """Get the process-wide watcher, building it from the shared hub on first use."""
    global _live_watcher
    with _live_watcher_lock:
        if _live_watcher is None:
            from apps.api.services.hub import get_hub

            hub = get_hub()
            _live_watcher = LiveWatcher(hub.store, hub.viewers, hub.live)
        return _live_watcher


def start_live_watcher() -> bool:
    """Start the shared watcher; repeated calls are no-ops."""
    return get_live_watcher().start()


def reset_live_watcher() -> None:
    global _live_watcher
    with _live_watcher_lock:
        watcher, _live_watcher = _live_watcher, None
    if watcher is not None:
        watcher.stop()


__all__ = ["LiveWatcher", "get_live_watcher", "reset_live_watcher", "start_live_watcher"]
