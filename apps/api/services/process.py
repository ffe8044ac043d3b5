"""Detached worker launch and PID liveness checks."""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Sequence

import psutil

LOGGER = logging.getLogger(__name__)


class SpawnError(OSError):
    """Raised when a worker or helper script could not be started."""


class ProcessLauncher:
    """Fire-and-forget launcher for the bash worker scripts.

    The child runs in its own session with all stdio detached so it survives
    API restarts; workers write everything they report to their own
    ``.log``/``.status`` files.
    """

    def __init__(self, shell: str = "bash") -> None:
        self.shell = shell

    def launch(self, script_path: Path | str, args: Sequence[str]) -> int:
        command = [self.shell, str(script_path), *[str(arg) for arg in args]]
        try:
            proc = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                close_fds=True,
                start_new_session=True,
                env=os.environ.copy(),
            )
        except OSError as exc:
            LOGGER.error("[launch] Failed to start %s: %s", script_path, exc)
            raise SpawnError(f"failed to launch {script_path}: {exc}") from exc
        LOGGER.info("[launch] Started %s (pid=%s)", Path(script_path).name, proc.pid)
        return proc.pid


def is_alive(pid: int | None) -> bool:
    """True when ``pid`` belongs to a running (non-zombie) process.

    Any lookup failure counts as dead.
    """
    if pid is None or pid <= 0:
        return False
    try:
        proc = psutil.Process(pid)
        return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        return False
    except psutil.Error as exc:
        LOGGER.debug("[liveness] psutil error for pid %s: %s", pid, exc)
        return False


__all__ = ["ProcessLauncher", "SpawnError", "is_alive"]
