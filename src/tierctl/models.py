"""Data model shared by the deployment pipeline stages."""
from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any


class ResourceKind(str, Enum):
    """Kinds of external resources managed by the reconciler."""

    PACKAGE = "package"
    DATABASE = "database"
    ROLE = "role"
    GRANT = "grant"
    AUTH_RULE = "auth-rule"
    ENV_FILE = "env-file"
    VHOST = "vhost"
    PROCESS = "process"


class ReconcileOutcome(str, Enum):
    """Result of reconciling a single resource."""

    UNCHANGED = "unchanged"
    CREATED = "created"
    UPDATED = "updated"


@dataclass(slots=True)
class ManagedResource:
    """Observed versus desired state of one resource."""

    kind: ResourceKind
    name: str
    desired_spec: Mapping[str, Any] = field(default_factory=dict)
    current_spec: Mapping[str, Any] | None = None
    exists: bool = False


@dataclass(slots=True, frozen=True)
class ResourceResult:
    """Outcome recorded for one resource in a run."""

    kind: ResourceKind
    name: str
    outcome: ReconcileOutcome | None
    detail: str = ""
    error: str | None = None

    @property
    def failed(self) -> bool:
        """Return ``True`` when the resource did not reach its desired state."""
        return self.error is not None


@dataclass(slots=True, frozen=True)
class Snapshot:
    """Immutable record of a captured snapshot directory."""

    id: str
    path: Path
    created_at: datetime
    contents: tuple[str, ...] = ()
    skipped: tuple[str, ...] = ()
    sources: tuple[tuple[str, str], ...] = ()

    def source_of(self, label: str) -> str | None:
        """Return the original location captured under *label*."""
        for name, origin in self.sources:
            if name == label:
                return origin
        return None

    def to_dict(self) -> dict[str, object]:
        """Return the JSON manifest representation."""
        return {
            "id": self.id,
            "path": str(self.path),
            "created_at": self.created_at.isoformat(),
            "contents": list(self.contents),
            "skipped": list(self.skipped),
            "sources": {name: origin for name, origin in self.sources},
        }


class HealthLayer(str, Enum):
    """System layers probed after a deployment."""

    DATABASE = "database"
    BACKEND = "backend"
    PROXY = "proxy"
    FRONTEND_ASSETS = "frontend-assets"


class HealthStatus(str, Enum):
    """Outcome of a single layer probe."""

    OK = "ok"
    DEGRADED = "degraded"
    FAIL = "fail"


@dataclass(slots=True, frozen=True)
class HealthCheckResult:
    """Result of probing one layer."""

    layer: HealthLayer
    status: HealthStatus
    detail: str
    checked_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    data: Mapping[str, Any] | None = None

    @property
    def ok(self) -> bool:
        """Return ``True`` when the layer is fully healthy."""
        return self.status is HealthStatus.OK


@dataclass(slots=True, frozen=True)
class HealthReport:
    """Aggregated health for every probed layer."""

    results: tuple[HealthCheckResult, ...]
    healthy: bool

    @classmethod
    def from_results(cls, results: Iterable[HealthCheckResult]) -> HealthReport:
        """Build a report whose overall health is the AND of every layer."""
        collected = tuple(results)
        return cls(results=collected, healthy=all(result.ok for result in collected))

    def for_layer(self, layer: HealthLayer) -> HealthCheckResult | None:
        """Return the result recorded for *layer*, if any."""
        for result in self.results:
            if result.layer is layer:
                return result
        return None


@dataclass(slots=True, frozen=True)
class RunMode:
    """Operator-selected flags for a run."""

    skip_backup: bool = False
    skip_proxy_config: bool = False
    fresh_install: bool = False
    backend_only: bool = False
    frontend_only: bool = False

    def __post_init__(self) -> None:
        """Reject flag combinations that would select no component."""
        if self.backend_only and self.frontend_only:
            raise ValueError("--backend-only and --frontend-only cannot be combined.")

    @property
    def backend(self) -> bool:
        """Return ``True`` when the backend component is selected."""
        return not self.frontend_only

    @property
    def frontend(self) -> bool:
        """Return ``True`` when the frontend component is selected."""
        return not self.backend_only

    def describe(self) -> list[str]:
        """Return human readable notes for the active flags."""
        notes: list[str] = []
        if self.backend_only:
            notes.append("backend only")
        elif self.frontend_only:
            notes.append("frontend only")
        else:
            notes.append("backend and frontend")
        if self.skip_backup:
            notes.append("skipping backup")
        if self.skip_proxy_config:
            notes.append("skipping nginx configuration")
        if self.fresh_install:
            notes.append("fresh install")
        return notes


@dataclass(slots=True)
class StageResult:
    """Tagged outcome of one pipeline stage."""

    stage: str
    ok: bool
    detail: str = ""
    skipped: bool = False


@dataclass(slots=True)
class DeploymentRun:
    """Execution context owned by a single deploy or update invocation."""

    kind: str
    mode: RunMode
    started_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    snapshot: Snapshot | None = None
    resource_results: list[ResourceResult] = field(default_factory=list)
    health_report: HealthReport | None = None
    stages: list[StageResult] = field(default_factory=list)
    server_name: str | None = None
    notes: list[str] = field(default_factory=list)
    error: str | None = None
    failed_stage: str | None = None

    @property
    def failed_resources(self) -> Sequence[ResourceResult]:
        """Return resources that did not reach their desired state."""
        return [result for result in self.resource_results if result.failed]

    @property
    def succeeded(self) -> bool:
        """Return ``True`` when no fatal error occurred and health (if probed) is good."""
        if self.error is not None:
            return False
        if self.health_report is not None and not self.health_report.healthy:
            return False
        return True

    def record_stage(self, stage: str, *, ok: bool, detail: str = "", skipped: bool = False) -> None:
        """Append a stage outcome."""
        self.stages.append(StageResult(stage=stage, ok=ok, detail=detail, skipped=skipped))


__all__ = [
    "DeploymentRun",
    "HealthCheckResult",
    "HealthLayer",
    "HealthReport",
    "HealthStatus",
    "ManagedResource",
    "ReconcileOutcome",
    "ResourceKind",
    "ResourceResult",
    "RunMode",
    "Snapshot",
    "StageResult",
]
