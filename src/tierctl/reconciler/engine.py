"""Dependency-ordered reconciliation driver."""
from __future__ import annotations

import heapq
import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from jinja2 import TemplateError

from ..errors import ReconcileError, ReconcileOrderError
from ..models import ReconcileOutcome, ResourceKind, ResourceResult
from .resources import Resource

logger = logging.getLogger(__name__)

# Resources of an earlier kind reconcile first when no explicit dependency decides.
KIND_ORDER: tuple[ResourceKind, ...] = (
    ResourceKind.PACKAGE,
    ResourceKind.DATABASE,
    ResourceKind.ROLE,
    ResourceKind.GRANT,
    ResourceKind.AUTH_RULE,
    ResourceKind.ENV_FILE,
    ResourceKind.VHOST,
    ResourceKind.PROCESS,
)
_KIND_RANK = {kind: index for index, kind in enumerate(KIND_ORDER)}

Checkpoint = Callable[[], object]
ResultCallback = Callable[[ResourceResult], None]


def order_resources(resources: Iterable[Resource]) -> list[Resource]:
    """Return *resources* in an order that satisfies every declared dependency.

    Ties are broken by kind rank, then by input position. Unknown dependency
    keys, duplicate keys and cycles raise :class:`ReconcileOrderError`.
    """
    items = list(resources)
    by_key: dict[str, int] = {}
    for index, resource in enumerate(items):
        if resource.key in by_key:
            raise ReconcileOrderError(f"Duplicate resource {resource.key}.")
        by_key[resource.key] = index

    pending: dict[int, set[int]] = {}
    dependents: dict[int, set[int]] = {index: set() for index in range(len(items))}
    for index, resource in enumerate(items):
        requirements: set[int] = set()
        for required in resource.requires:
            if required not in by_key:
                raise ReconcileOrderError(
                    f"{resource.key} requires {required}, which is not part of this run."
                )
            requirements.add(by_key[required])
            dependents[by_key[required]].add(index)
        pending[index] = requirements

    def priority(index: int) -> tuple[int, int]:
        return (_KIND_RANK.get(items[index].kind, len(KIND_ORDER)), index)

    ready = [priority(index) for index, deps in pending.items() if not deps]
    heapq.heapify(ready)
    ordered: list[Resource] = []
    while ready:
        _, index = heapq.heappop(ready)
        ordered.append(items[index])
        for dependent in dependents[index]:
            pending[dependent].discard(index)
            if not pending[dependent]:
                heapq.heappush(ready, priority(dependent))

    if len(ordered) != len(items):
        stuck = sorted(items[index].key for index, deps in pending.items() if deps)
        raise ReconcileOrderError(f"Dependency cycle between: {', '.join(stuck)}.")
    return ordered


@dataclass(slots=True)
class Reconciler:
    """Drive resources from observed to desired state."""

    on_result: ResultCallback | None = None
    results: list[ResourceResult] = field(default_factory=list)

    def reconcile(self, resource: Resource) -> ReconcileOutcome:
        """Reconcile one resource and return its outcome.

        Raises :class:`ReconcileError` when the resource cannot be probed or
        does not reach its desired state; the failure is recorded first.
        """
        try:
            observed = resource.observe()
            if resource.matches(observed.current_spec):
                outcome = ReconcileOutcome.UNCHANGED
                detail = resource.describe_unchanged()
            else:
                detail = resource.apply(observed.current_spec)
                outcome = ReconcileOutcome.UPDATED if observed.exists else ReconcileOutcome.CREATED
        except (RuntimeError, OSError, ValueError, TemplateError) as exc:
            failure = ResourceResult(
                kind=resource.kind,
                name=resource.name,
                outcome=None,
                detail="",
                error=str(exc),
            )
            self._record(failure)
            raise ReconcileError(
                f"{resource.key} could not be reconciled: {exc}",
                self.results,
            ) from exc

        logger.debug("Reconciled %s: %s", resource.key, outcome.value)
        self._record(
            ResourceResult(kind=resource.kind, name=resource.name, outcome=outcome, detail=detail)
        )
        return outcome

    def reconcile_all(
        self,
        resources: Sequence[Resource],
        *,
        checkpoints: Mapping[ResourceKind, Checkpoint] | None = None,
    ) -> list[ResourceResult]:
        """Reconcile *resources* in dependency order, stopping at the first failure.

        *checkpoints* run once after the last resource of their kind; a
        checkpoint that raises aborts the run with the results collected so far.
        """
        ordered = order_resources(resources)
        pending_checks = dict(checkpoints or {})
        last_index = {resource.kind: index for index, resource in enumerate(ordered)}
        start = len(self.results)
        for index, resource in enumerate(ordered):
            self.reconcile(resource)
            kind = resource.kind
            if kind in pending_checks and last_index[kind] == index:
                self._run_checkpoint(kind, pending_checks.pop(kind))
        # Checkpoints for kinds absent from this run still execute, in rank order.
        for kind in sorted(pending_checks, key=lambda item: _KIND_RANK.get(item, len(KIND_ORDER))):
            self._run_checkpoint(kind, pending_checks[kind])
        return self.results[start:]

    # ------------------------------------------------------------------
    def _run_checkpoint(self, kind: ResourceKind, check: Checkpoint) -> None:
        try:
            check()
        except (RuntimeError, OSError, ValueError) as exc:
            raise ReconcileError(
                f"Check after {kind.value} resources failed: {exc}",
                self.results,
            ) from exc

    def _record(self, result: ResourceResult) -> None:
        self.results.append(result)
        if self.on_result is not None:
            self.on_result(result)


__all__ = ["KIND_ORDER", "Reconciler", "order_resources"]
