"""Deployment state store: container records, proxy routes, release history.

Each resource has a single writer: container records are written only by the
lifecycle driver and proxy routes only by the proxy reconciler. Everything
else reads.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from deckhand.image import Release

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    UNKNOWN = "unknown"
    STARTING = "starting"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


def _release_or_none(d):
    return Release.from_dict(d) if d else None


@dataclass
class ContainerRecord:
    """What runs for one role on one host.

    ``converged`` is False between a healthy transition and the end of its
    cutover: traffic may still reach ``previous`` and its container may still run.
    """

    host: str
    role: str
    current: Release | None = None
    previous: Release | None = None
    health: HealthStatus = HealthStatus.UNKNOWN
    failed: Release | None = None
    converged: bool = False

    def to_dict(self) -> dict:
        return {
            "host": self.host,
            "role": self.role,
            "current": self.current.to_dict() if self.current else None,
            "previous": self.previous.to_dict() if self.previous else None,
            "health": self.health.value,
            "failed": self.failed.to_dict() if self.failed else None,
            "converged": self.converged,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ContainerRecord":
        return cls(
            host=d["host"],
            role=d["role"],
            current=_release_or_none(d.get("current")),
            previous=_release_or_none(d.get("previous")),
            health=HealthStatus(d.get("health", "unknown")),
            failed=_release_or_none(d.get("failed")),
            converged=d.get("converged", False),
        )


@dataclass
class DrainingEndpoint:
    endpoint: str
    until: float  # epoch seconds


@dataclass
class ProxyRoute:
    """Routing for one role on one host: the live endpoint plus draining ones."""

    role: str
    host: str
    endpoint: str | None = None
    draining: list[DrainingEndpoint] = field(default_factory=list)
    public_host: str | None = None
    path: str = "/"

    def to_dict(self) -> dict:
        return {
            "role": self.role,
            "host": self.host,
            "endpoint": self.endpoint,
            "draining": [{"endpoint": d.endpoint, "until": d.until} for d in self.draining],
            "public_host": self.public_host,
            "path": self.path,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ProxyRoute":
        return cls(
            role=d["role"],
            host=d["host"],
            endpoint=d.get("endpoint"),
            draining=[DrainingEndpoint(x["endpoint"], x["until"]) for x in d.get("draining", [])],
            public_host=d.get("public_host"),
            path=d.get("path", "/"),
        )


class StateStore(ABC):
    """Explicit state store interface; no module-level deployment state."""

    @abstractmethod
    def get_record(self, host: str, role: str) -> ContainerRecord:
        """Return the record, or an empty one if the host/role was never deployed."""
        ...

    @abstractmethod
    def put_record(self, record: ContainerRecord) -> None:
        ...

    @abstractmethod
    def get_route(self, role: str, host: str) -> ProxyRoute | None:
        ...

    @abstractmethod
    def put_route(self, route: ProxyRoute) -> None:
        ...

    @abstractmethod
    def add_release(self, release: Release) -> None:
        ...

    @abstractmethod
    def releases(self) -> list[Release]:
        """Release history, oldest first."""
        ...

    def find_release(self, version: str) -> Release | None:
        for release in reversed(self.releases()):
            if release.version == version:
                return release
        return None


class MemoryStateStore(StateStore):
    """In-memory store, for tests and embedding."""

    def __init__(self):
        self._records: dict[tuple[str, str], ContainerRecord] = {}
        self._routes: dict[tuple[str, str], ProxyRoute] = {}
        self._releases: list[Release] = []

    def get_record(self, host, role):
        record = self._records.get((host, role))
        if record is None:
            return ContainerRecord(host=host, role=role)
        return ContainerRecord.from_dict(record.to_dict())

    def put_record(self, record):
        self._records[(record.host, record.role)] = ContainerRecord.from_dict(record.to_dict())
        self._changed()

    def get_route(self, role, host):
        route = self._routes.get((role, host))
        return ProxyRoute.from_dict(route.to_dict()) if route else None

    def put_route(self, route):
        self._routes[(route.role, route.host)] = ProxyRoute.from_dict(route.to_dict())
        self._changed()

    def add_release(self, release):
        if release not in self._releases:
            self._releases.append(release)
            self._changed()

    def releases(self):
        return list(self._releases)

    def _changed(self):
        pass

    def to_dict(self) -> dict:
        return {
            "releases": [r.to_dict() for r in self._releases],
            "records": [r.to_dict() for r in self._records.values()],
            "routes": [r.to_dict() for r in self._routes.values()],
        }


class FileStateStore(MemoryStateStore):
    """JSON-file backed store, rewritten atomically on every change.

    With read_only=True changes stay in memory (dry runs).
    """

    def __init__(self, path, read_only=False):
        super().__init__()
        self.path = Path(path)
        self.read_only = read_only
        if self.path.exists():
            data = json.loads(self.path.read_text())
            self._releases = [Release.from_dict(r) for r in data.get("releases", [])]
            for r in data.get("records", []):
                record = ContainerRecord.from_dict(r)
                self._records[(record.host, record.role)] = record
            for r in data.get("routes", []):
                route = ProxyRoute.from_dict(r)
                self._routes[(route.role, route.host)] = route
            logger.debug(f"Loaded state from {self.path}")

    def _changed(self):
        if self.read_only:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".state_")
        with os.fdopen(fd, "w") as f:
            f.write(json.dumps(self.to_dict(), indent=2) + "\n")
        os.replace(tmp_path, self.path)
