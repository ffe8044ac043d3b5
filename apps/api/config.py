"""Central configuration for the StreamHub API.

Consolidates environment-based config for the artifact directories, the
external worker scripts, and the timers that drive cleanup and auto-stop.
"""

import os
from pathlib import Path


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    return Path(raw).expanduser() if raw else default


PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Storage Configuration
DATA_ROOT = _env_path("STREAMHUB_DATA_ROOT", Path("data"))
CACHE_DIR = _env_path("STREAMHUB_CACHE_DIR", DATA_ROOT / "cache")
JOBS_DIR = _env_path("STREAMHUB_JOBS_DIR", DATA_ROOT / "jobs")
WORK_DIR = _env_path("STREAMHUB_WORK_DIR", DATA_ROOT / "work")
MEDIA_DIR = _env_path("STREAMHUB_MEDIA_DIR", DATA_ROOT / "media")

# Worker Configuration
SCRIPTS_DIR = _env_path("STREAMHUB_SCRIPTS_DIR", PROJECT_ROOT / "scripts")
RECORD_SCRIPT = SCRIPTS_DIR / "record.sh"
LIVE_SCRIPT = SCRIPTS_DIR / "live.sh"
DOWNLOAD_SCRIPT = SCRIPTS_DIR / "download.sh"
STOP_SCRIPT = SCRIPTS_DIR / "stop-record.sh"
JOBCTL_SCRIPT = SCRIPTS_DIR / "jobctl.sh"
BASE_URL = os.getenv("STREAMHUB_BASE_URL", "http://localhost:8000")
WORKER_LOGLEVEL = os.getenv("STREAMHUB_WORKER_LOGLEVEL", "info")
JOBCTL_TIMEOUT_SECONDS = _env_float("STREAMHUB_JOBCTL_TIMEOUT_SECONDS", 10.0)

# Lifecycle Configuration
MIN_CLEANUP_AGE_SECONDS = _env_int("STREAMHUB_MIN_CLEANUP_AGE_SECONDS", 8 * 60 * 60)
CLEANUP_INTERVAL_SECONDS = _env_int("STREAMHUB_CLEANUP_INTERVAL_SECONDS", 0)
WORKER_START_GRACE_SECONDS = _env_float("STREAMHUB_WORKER_START_GRACE_SECONDS", 60.0)
VIEWER_TIMEOUT_SECONDS = _env_float("STREAMHUB_VIEWER_TIMEOUT_SECONDS", 15.0)
LIVE_WATCH_INTERVAL_SECONDS = _env_float("STREAMHUB_LIVE_WATCH_INTERVAL_SECONDS", 10.0)
LIVE_DURATION_SECONDS = _env_int("STREAMHUB_LIVE_DURATION_SECONDS", 6 * 60 * 60)

# Streaming Services
SERVICES_FILE = _env_path("STREAMHUB_SERVICES_FILE", PROJECT_ROOT / "config" / "services.yaml")

# API Configuration
API_HOST = os.getenv("API_HOST", "localhost")
API_PORT = _env_int("API_PORT", 8000)
UI_ORIGIN = os.getenv("UI_ORIGIN", "http://localhost:3000")
