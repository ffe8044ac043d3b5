"""In-memory viewer and consumer registries.

Neither registry is durable: a restart empties both and clients re-register
on their next poll. They are never the source of truth for whether a job is
running; that is the status file plus the PID check.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from apps.api import config
from apps.api.services.jobs import PlaylistEntry

LOGGER = logging.getLogger(__name__)


class ViewerTracker:
    """Tracks which client IPs are polling each live recording."""

    def __init__(self, timeout: float | None = None, clock: Callable[[], float] = time.monotonic) -> None:
        self.timeout = config.VIEWER_TIMEOUT_SECONDS if timeout is None else timeout
        self.clock = clock
        self._viewers: Dict[str, Dict[str, float]] = {}
        self._lock = threading.Lock()

    def track(self, recording_id: str, client_ip: str) -> None:
        with self._lock:
            self._viewers.setdefault(recording_id, {})[client_ip] = self.clock()

    def _prune(self, recording_id: str) -> int:
        seen = self._viewers.get(recording_id)
        if seen is None:
            return 0
        cutoff = self.clock() - self.timeout
        for ip in [ip for ip, ts in seen.items() if ts < cutoff]:
            del seen[ip]
        return len(seen)

    def count(self, recording_id: str) -> int:
        with self._lock:
            return self._prune(recording_id)

    def list_active_ids(self) -> List[str]:
        with self._lock:
            return [rid for rid in list(self._viewers) if self._prune(rid) > 0]

    def tracked_ids(self) -> List[str]:
        with self._lock:
            return list(self._viewers)

    def idle_ids(self) -> List[str]:
        """Tracked recordings whose viewers have all timed out."""
        with self._lock:
            return [rid for rid in list(self._viewers) if self._prune(rid) == 0]

    def forget(self, recording_id: str) -> None:
        with self._lock:
            self._viewers.pop(recording_id, None)


@dataclass
class Consumer:
    consumer_id: str
    service_id: str
    entry: Optional[PlaylistEntry] = None
    started_at: float = 0.0


class ConsumerTracker:
    """Open movie players, each holding one of a service's concurrent connections."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self.clock = clock
        self._consumers: Dict[str, Consumer] = {}
        self._lock = threading.Lock()

    def add(self, consumer_id: str, service_id: str, entry: PlaylistEntry | None = None) -> None:
        with self._lock:
            self._consumers[consumer_id] = Consumer(consumer_id, service_id, entry, self.clock())
        LOGGER.debug("[consumers] + %s on %s", consumer_id, service_id)

    def remove(self, consumer_id: str) -> bool:
        with self._lock:
            removed = self._consumers.pop(consumer_id, None)
        if removed is not None:
            LOGGER.debug("[consumers] - %s", consumer_id)
        return removed is not None

    def count_for_service(self, service_id: str) -> int:
        with self._lock:
            return sum(1 for consumer in self._consumers.values() if consumer.service_id == service_id)

    def items(self) -> List[Consumer]:
        with self._lock:
            return list(self._consumers.values())


__all__ = ["Consumer", "ConsumerTracker", "ViewerTracker"]
