"""Daemon-thread timer used for the live watcher and periodic cleanup."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

LOGGER = logging.getLogger(__name__)


class RecurringTask:
    """Call ``func`` every ``interval`` seconds until stopped.

    ``start()`` is idempotent: a second call while running is a no-op and
    returns False.
    """

    def __init__(self, name: str, interval: float, func: Callable[[], object]) -> None:
        self.name = name
        self.interval = interval
        self.func = func
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        with self._lock:
            if self.running:
                return False
            self._stop.clear()
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()
        LOGGER.info("[%s] Started (every %.1fs)", self.name, self.interval)
        return True

    def stop(self, timeout: float | None = 5.0) -> None:
        with self._lock:
            thread = self._thread
            self._thread = None
            self._stop.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.func()
            except Exception:  # keep the timer alive across a bad tick
                LOGGER.exception("[%s] Tick failed", self.name)


__all__ = ["RecurringTask"]
