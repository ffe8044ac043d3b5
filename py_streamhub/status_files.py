"""Readers for the worker-owned ``.status`` and ``.log`` files.

Workers append ``KEY=VALUE`` lines to ``<outputFile>.status`` and free-form
tool output to ``<outputFile>.log``. Both files are read-only from the API's
point of view and may be polled before the worker has written anything, so a
missing file always reads as empty.

Two projections of a status file are exposed:
- latest-only (``read_status_latest``): last occurrence of each key wins.
- full-history (``read_status_full``): every value per key, in write order.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, Mapping, Sequence

LOGGER = logging.getLogger(__name__)

ACTIVE_STATUSES = frozenset({"recording", "live", "downloading"})
TERMINAL_STATUSES = frozenset({"done", "stopped", "error"})

_PERCENT_RE = re.compile(r"(\d{1,3}(?:[.,]\d+)?)%")


def _read_lines(path: str | Path) -> list[str]:
    try:
        text = Path(path).read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return []
    return text.splitlines()


def _iter_pairs(lines: Iterable[str]) -> Iterable[tuple[str, str]]:
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        yield key, value.strip()


def parse_status_latest(lines: Iterable[str]) -> dict[str, str]:
    latest: dict[str, str] = {}
    for key, value in _iter_pairs(lines):
        latest[key] = value
    return latest


def parse_status_full(lines: Iterable[str]) -> dict[str, list[str]]:
    history: dict[str, list[str]] = {}
    for key, value in _iter_pairs(lines):
        history.setdefault(key, []).append(value)
    return history


def read_status_latest(path: str | Path) -> dict[str, str]:
    """Parse a status file keeping only the last value written per key."""
    return parse_status_latest(_read_lines(path))


def read_status_full(path: str | Path) -> dict[str, list[str]]:
    """Parse a status file keeping every value per key in write order."""
    return parse_status_full(_read_lines(path))


def read_log(path: str | Path) -> list[str]:
    """Return trimmed, non-empty log lines (empty list when the log is absent)."""
    return [line.strip() for line in _read_lines(path) if line.strip()]


def extract_latest_progress_percent(log_lines: Sequence[str]) -> float | None:
    """Return the last ``NN%``/``NN.N%`` value found in the log, scanning from the end."""
    for line in reversed(log_lines):
        matches = _PERCENT_RE.findall(line)
        if matches:
            try:
                return float(matches[-1].replace(",", "."))
            except ValueError:
                continue
    return None


def latest_value(value: str | Sequence[str] | None) -> str | None:
    """Collapse a latest-or-history status value into its most recent entry."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return value[-1] if value else None


def normalize_status(raw: str | None) -> str:
    """Map free-form worker status tokens onto the states the UI understands."""
    token = (raw or "").strip().lower()
    if "error" in token:
        return "error"
    if "downloading" in token:
        return "downloading"
    if "live" in token:
        return "live"
    if "recording" in token:
        return "recording"
    if "packaging" in token and "done" in token:
        return "done"
    if "packaging" in token:
        return "packaging"
    if "preparing" in token:
        return "preparing"
    if token in {"done", "stopped"}:
        return "done"
    return "unknown"


def humanize_status(raw: str | None) -> str:
    return {
        "preparing": "Preparing",
        "recording": "Recording",
        "downloading": "Downloading",
        "live": "Live",
        "packaging": "Packaging",
        "done": "Done",
        "error": "Error",
    }.get(normalize_status(raw), "Unknown")


def effective_status(raw: str | None, pid_alive: bool) -> str:
    """Latest status with zombie detection applied.

    An active status reported by a worker whose PID is gone reads as ``error``.
    """
    token = (raw or "").strip().lower() or "unknown"
    if token in ACTIVE_STATUSES and not pid_alive:
        return "error"
    return token


def parse_pid(status: Mapping[str, str | Sequence[str]]) -> int | None:
    raw = latest_value(status.get("PID"))
    if raw is None:
        return None
    try:
        pid = int(raw.strip())
    except ValueError:
        LOGGER.debug("[status] Ignoring non-numeric PID %r", raw)
        return None
    return pid if pid > 0 else None


def parse_content_length(status: Mapping[str, str | Sequence[str]]) -> int | None:
    raw = latest_value(status.get("CONTENT_LENGTH"))
    if raw is None:
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


def format_status_lines(status: Mapping[str, str | Sequence[str]]) -> list[str]:
    lines: list[str] = []
    for key, value in status.items():
        if isinstance(value, str):
            lines.append(f"{key}: {value}")
        else:
            lines.append(f"{key}: {','.join(value)}")
    return lines


__all__ = [
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "effective_status",
    "extract_latest_progress_percent",
    "format_status_lines",
    "humanize_status",
    "latest_value",
    "normalize_status",
    "parse_content_length",
    "parse_pid",
    "parse_status_full",
    "parse_status_latest",
    "read_log",
    "read_status_full",
    "read_status_latest",
]
