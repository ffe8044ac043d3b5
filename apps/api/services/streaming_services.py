"""Streaming-service registry loaded from ``config/services.yaml``.

Example::

    services:
      - id: provider-a
        name: Provider A
        server: http://provider-a.example:8080
        username: alice
        password: s3cret
        max_concurrent_viewers: 2
        content_categories: [movies, series]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

import yaml

from apps.api import config

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreamingService:
    id: str
    name: str
    server: str
    username: str = ""
    password: str = ""
    max_concurrent_viewers: int = 1
    refresh_url: str = ""
    viewing_base_url: str = ""
    content_categories: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StreamingService":
        categories = data.get("content_categories") or data.get("contentCategories") or ()
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or data["id"]),
            server=str(data.get("server") or "").rstrip("/"),
            username=str(data.get("username") or ""),
            password=str(data.get("password") or ""),
            max_concurrent_viewers=int(data.get("max_concurrent_viewers", data.get("maxConcurrentViewers", 1))),
            refresh_url=str(data.get("refresh_url") or data.get("refreshUrl") or ""),
            viewing_base_url=str(data.get("viewing_base_url") or data.get("viewingBaseUrl") or ""),
            content_categories=tuple(str(item) for item in categories),
        )

    def to_public_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "server": self.server,
            "maxConcurrentViewers": self.max_concurrent_viewers,
            "contentCategories": list(self.content_categories),
        }

    def matches_url(self, url: str) -> bool:
        """True when ``url`` contains server, username and password in that order."""
        if not self.server or not url:
            return False
        server_at = url.find(self.server)
        if server_at == -1:
            return False
        user_at = url.find(self.username, server_at) if self.username else server_at
        if user_at == -1:
            return False
        password_at = url.find(self.password, user_at) if self.password else user_at
        return password_at != -1


class ServiceRegistry:
    def __init__(self, services: Iterable[StreamingService] = ()) -> None:
        self._services: List[StreamingService] = list(services)

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "ServiceRegistry":
        source = Path(path) if path else config.SERVICES_FILE
        if not source.exists():
            LOGGER.info("[services] No service registry at %s", source)
            return cls()
        try:
            data = yaml.safe_load(source.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            LOGGER.warning("Failed to read streaming services from %s: %s", source, exc)
            return cls()
        raw = data.get("services") if isinstance(data, dict) else data
        services: List[StreamingService] = []
        for item in raw or []:
            if not isinstance(item, Mapping) or "id" not in item:
                LOGGER.warning("[services] Ignoring malformed service entry: %r", item)
                continue
            services.append(StreamingService.from_dict(item))
        return cls(services)

    def all(self) -> List[StreamingService]:
        return list(self._services)

    def find_by_id(self, service_id: str) -> Optional[StreamingService]:
        return next((service for service in self._services if service.id == service_id), None)

    def find_by_server(self, server: str) -> Optional[StreamingService]:
        server = server.rstrip("/")
        return next((service for service in self._services if service.server == server), None)

    def find_for_url(self, url: str) -> Optional[StreamingService]:
        return next((service for service in self._services if service.matches_url(url)), None)


__all__ = ["ServiceRegistry", "StreamingService"]
