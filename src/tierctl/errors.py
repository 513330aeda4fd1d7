"""Exception taxonomy shared by the deployment pipeline."""
from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .models import ResourceResult
    from .prober import ProbeReport


class TierctlError(RuntimeError):
    """Base class for fatal orchestration failures."""

    stage: str = "unknown"


class PreconditionError(TierctlError):
    """Raised when one or more required tools are missing after safe installs."""

    stage = "precondition"

    def __init__(self, message: str, report: ProbeReport) -> None:
        """Store the full probe report so every unmet dependency can be listed."""
        super().__init__(message)
        self.report = report


class ReconcileError(TierctlError):
    """Raised when a managed resource could not reach its desired state."""

    stage = "reconcile"

    def __init__(self, message: str, results: Sequence[ResourceResult] = ()) -> None:
        """Store the outcomes recorded up to and including the failing resource."""
        super().__init__(message)
        self.results = tuple(results)


class ReconcileOrderError(ReconcileError):
    """Raised when resource dependencies cannot be satisfied by any ordering."""


class SnapshotError(TierctlError):
    """Raised when a snapshot cannot be captured or pruned."""

    stage = "backup"


class BuildError(TierctlError):
    """Raised when a dependency install or production build fails."""

    stage = "execute"


class MigrationError(TierctlError):
    """Raised when a migration fails for a reason other than being already applied."""

    stage = "execute"


class DeploymentError(TierctlError):
    """Raised when artifacts cannot be placed or services cannot be (re)started."""

    stage = "execute"


class OperatorAbort(TierctlError):
    """Raised when the operator declines a confirmation prompt."""

    stage = "confirm"


__all__ = [
    "BuildError",
    "DeploymentError",
    "MigrationError",
    "OperatorAbort",
    "PreconditionError",
    "ReconcileError",
    "ReconcileOrderError",
    "SnapshotError",
    "TierctlError",
]
