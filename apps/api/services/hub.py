"""Wiring for the shared service graph used by the routers and timers."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from apps.api import config
from apps.api.services.cleanup import CleanupSweeper
from apps.api.services.finalizer import JobFinalizer
from apps.api.services.monitor import JobMonitor
from apps.api.services.process import ProcessLauncher, is_alive
from apps.api.services.resolvers import DownloadResolver, LiveResolver, ScheduleResolver
from apps.api.services.scheduler import JobScheduler
from apps.api.services.storage import ArtifactStore
from apps.api.services.streaming_services import ServiceRegistry
from apps.api.services.viewers import ConsumerTracker, ViewerTracker

LOGGER = logging.getLogger(__name__)


@dataclass
class StreamHub:
    store: ArtifactStore
    launcher: ProcessLauncher
    scheduler: JobScheduler
    downloads: DownloadResolver
    live: LiveResolver
    recordings: ScheduleResolver
    finalizer: JobFinalizer
    sweeper: CleanupSweeper
    viewers: ViewerTracker
    consumers: ConsumerTracker
    services: ServiceRegistry
    monitor: JobMonitor


def build_hub(
    data_root: Path | str | None = None,
    *,
    launcher: ProcessLauncher | None = None,
    scheduler: JobScheduler | None = None,
    services: ServiceRegistry | None = None,
    liveness: Callable[[Optional[int]], bool] = is_alive,
    min_cleanup_age_seconds: float | None = None,
    viewer_timeout: float | None = None,
) -> StreamHub:
    store = ArtifactStore(data_root)
    launcher = launcher or ProcessLauncher()
    scheduler = scheduler or JobScheduler()
    services = services if services is not None else ServiceRegistry.from_yaml(config.SERVICES_FILE)
    finalizer = JobFinalizer(store)
    consumers = ConsumerTracker()
    sweeper = CleanupSweeper(
        store,
        finalizer,
        liveness=liveness,
        scheduler=scheduler,
        min_age_seconds=min_cleanup_age_seconds,
    )
    return StreamHub(
        store=store,
        launcher=launcher,
        scheduler=scheduler,
        downloads=DownloadResolver(store, launcher),
        live=LiveResolver(store, launcher, sweeper=sweeper),
        recordings=ScheduleResolver(store, launcher, scheduler=scheduler),
        finalizer=finalizer,
        sweeper=sweeper,
        viewers=ViewerTracker(timeout=viewer_timeout),
        consumers=consumers,
        services=services,
        monitor=JobMonitor(store, consumers, services, liveness=liveness),
    )


# Global instance
_hub: Optional[StreamHub] = None
_hub_lock = threading.Lock()


def get_hub() -> StreamHub:
    """Get the global service graph."""
    global _hub
    with _hub_lock:
        if _hub is None:
            _hub = build_hub()
            LOGGER.info("[hub] Data directories under %s", _hub.store.jobs_dir.parent)
        return _hub


def set_hub(hub: Optional[StreamHub]) -> None:
    global _hub
    with _hub_lock:
        _hub = hub


__all__ = ["StreamHub", "build_hub", "get_hub", "set_hub"]
