"""Naming conventions for job identifiers and media files.

Recording IDs look like ``download-250517T125433-897760.mkv``: a kind prefix,
a local ``YYMMDDTHHMMSS`` timestamp and the last segment of the source URL.
The timestamp keeps IDs unique, the URL segment keeps them debuggable.
"""

from __future__ import annotations

import re
import shlex
from datetime import datetime
from pathlib import Path
from typing import Iterable
from urllib.parse import urlsplit

_EXT_RE = re.compile(r"\.(\w+)(?:\?|$)")
_FINAL_EXT_RE = re.compile(r"\.(\w{2,5})(?:\?|$)")
_UNSAFE_CHARS_RE = re.compile(r"[^a-zA-Z0-9\-_]")
_UNDERSCORE_RUN_RE = re.compile(r"_+")


def human_timestamp(moment: datetime | None = None) -> str:
    """Return ``YYMMDDTHHMMSS`` for ``moment`` (defaults to now, local time)."""
    moment = moment or datetime.now()
    return moment.strftime("%y%m%dT%H%M%S")


def last_url_segment(url: str) -> str:
    path = urlsplit((url or "").strip()).path
    parts = [part for part in path.split("/") if part]
    return parts[-1] if parts else "unknown"


def build_recording_id(prefix: str, url: str, moment: datetime | None = None) -> str:
    """Compose ``<prefix>-<timestamp>-<last url segment>``."""
    cleaned = prefix.rstrip("-")
    return f"{cleaned}-{human_timestamp(moment)}-{last_url_segment(url)}"


def extension_from_url(url: str, default: str = "mp4") -> str:
    match = _EXT_RE.search(url or "")
    return match.group(1).lower() if match else default


def safe_disk_name(name: str | None, moment: datetime | None = None) -> str:
    base = (name or "").strip() or f"untitled-{human_timestamp(moment)}"
    safe = _UNSAFE_CHARS_RE.sub("_", base)
    safe = _UNDERSCORE_RUN_RE.sub("_", safe).strip("_").lower()
    return safe or "untitled"


def final_output_filename(
    name: str | None,
    url: str | None = None,
    fallback_extension: str = "mp4",
    allow_extension_from_url: bool = False,
) -> str:
    """Sanitized media filename such as ``my_movie_title.mp4``."""
    extension = fallback_extension
    if allow_extension_from_url and url:
        match = _FINAL_EXT_RE.search(url)
        if match:
            extension = match.group(1).lower()
    return f"{safe_disk_name(name)}.{extension}"


def timestamped_sibling(path: str | Path, moment: datetime | None = None) -> Path:
    """``/media/show.mp4`` -> ``/media/show-250517T125433.mp4``."""
    target = Path(path)
    return target.with_name(f"{target.stem}-{human_timestamp(moment)}{target.suffix}")


def shell_command(args: Iterable[str]) -> str:
    return " ".join(shlex.quote(str(arg)) for arg in args)


def parse_command_flags(command: str) -> dict[str, str]:
    """Extract ``--flag value`` pairs from a rendered worker command line."""
    try:
        tokens = shlex.split(command or "")
    except ValueError:
        return {}
    flags: dict[str, str] = {}
    for index, token in enumerate(tokens):
        if not token.startswith("--") or len(token) <= 2:
            continue
        next_index = index + 1
        if next_index < len(tokens) and not tokens[next_index].startswith("--"):
            flags[token[2:]] = tokens[next_index]
    return flags


__all__ = [
    "build_recording_id",
    "extension_from_url",
    "final_output_filename",
    "human_timestamp",
    "last_url_segment",
    "parse_command_flags",
    "safe_disk_name",
    "shell_command",
    "timestamped_sibling",
]
