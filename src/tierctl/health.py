"""Post-deployment health verification.

Each active layer gets exactly one bounded probe. Probing is exhaustive: a
failing layer is recorded and the remaining layers are still checked. The
optional load probe is the only concurrent code path in tierctl.
"""
from __future__ import annotations

import concurrent.futures
import logging
import time
import traceback
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

import requests

from .config import AppConfig
from .models import (
    DeploymentRun,
    HealthCheckResult,
    HealthLayer,
    HealthReport,
    HealthStatus,
    RunMode,
)
from .providers.pm2 import Pm2Provider
from .providers.postgres import PostgresError, PostgresProvider

logger = logging.getLogger(__name__)

HEALTHY_CODES = frozenset({200, 304})


def aggregate(results: Iterable[HealthCheckResult]) -> HealthReport:
    """Combine layer results; the overall verdict is the AND of every layer."""
    return HealthReport.from_results(results)


def active_layers(mode: RunMode) -> list[HealthLayer]:
    """Return the layers probed for *mode*, in reporting order."""
    layers: list[HealthLayer] = []
    if mode.backend:
        layers.extend([HealthLayer.DATABASE, HealthLayer.BACKEND])
    layers.append(HealthLayer.PROXY)
    if mode.frontend:
        layers.append(HealthLayer.FRONTEND_ASSETS)
    return layers


@dataclass(slots=True, frozen=True)
class LoadProbeResult:
    """Outcome of the bounded concurrent request burst."""

    requested: int
    succeeded: int
    concurrency: int
    duration_ms: int

    @property
    def ok(self) -> bool:
        """Return ``True`` when every request succeeded."""
        return self.succeeded == self.requested

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "requested": self.requested,
            "succeeded": self.succeeded,
            "concurrency": self.concurrency,
            "duration_ms": self.duration_ms,
        }


@dataclass(slots=True)
class HealthVerifier:
    """Probe database, backend, proxy and static assets after a deployment."""

    config: AppConfig
    postgres: PostgresProvider
    pm2: Pm2Provider
    session: requests.Session = field(default_factory=requests.Session)
    sleep: Callable[[float], None] = field(default=time.sleep)
    db_password: str | None = field(default=None, repr=False)

    def verify(self, run: DeploymentRun | None = None, *, settle: bool = True) -> HealthReport:
        """Wait for the settle delay, then probe every active layer."""
        mode = run.mode if run is not None else RunMode()
        if settle and self.config.health.settle_seconds > 0:
            self.sleep(self.config.health.settle_seconds)
        probes: dict[HealthLayer, Callable[[], HealthCheckResult]] = {
            HealthLayer.DATABASE: self.check_database,
            HealthLayer.BACKEND: self.check_backend,
            HealthLayer.PROXY: self.check_proxy,
            HealthLayer.FRONTEND_ASSETS: self.check_assets,
        }
        results = [self._run_probe(layer, probes[layer]) for layer in active_layers(mode)]
        report = aggregate(results)
        if run is not None:
            run.health_report = report
        return report

    # ------------------------------------------------------------------
    @staticmethod
    def _run_probe(layer: HealthLayer, probe: Callable[[], HealthCheckResult]) -> HealthCheckResult:
        try:
            return probe()
        except Exception as exc:  # pragma: no cover - defensive catch
            logger.debug("Health probe %s raised: %s", layer.value, traceback.format_exc())
            return HealthCheckResult(layer, HealthStatus.FAIL, f"Probe raised an unexpected error: {exc}")

    def _timeout(self) -> tuple[float, float]:
        return (self.config.health.connect_timeout, self.config.health.request_timeout)

    def _get_status(self, url: str) -> tuple[int | None, str]:
        try:
            response = self.session.get(url, timeout=self._timeout())
        except requests.exceptions.RequestException as exc:
            return None, f"{url} unreachable: {exc}"
        return response.status_code, f"{url} returned HTTP {response.status_code}"

    def check_database(self) -> HealthCheckResult:
        """Run ``SELECT 1`` as the application role (or the superuser without credentials)."""
        database = self.config.database
        try:
            if self.db_password:
                self.postgres.check_connection(database.name, database.user, self.db_password)
                detail = f"SELECT 1 succeeded as {database.user}@{database.name}"
            else:
                if self.postgres.admin_query("SELECT 1;", database=database.name) != "1":
                    raise PostgresError("unexpected SELECT 1 result")
                detail = f"SELECT 1 succeeded on {database.name} (admin connection)"
        except PostgresError as exc:
            return HealthCheckResult(HealthLayer.DATABASE, HealthStatus.FAIL, str(exc))
        return HealthCheckResult(HealthLayer.DATABASE, HealthStatus.OK, detail)

    def check_backend(self) -> HealthCheckResult:
        """Require the pm2 process online and the liveness endpoint answering 200."""
        backend = self.config.backend
        process = self.pm2.describe(backend.process_name)
        if process is None or not process.online:
            state = "not registered" if process is None else process.status
            return HealthCheckResult(
                HealthLayer.BACKEND,
                HealthStatus.FAIL,
                f"pm2 process {backend.process_name} is {state}.",
            )
        status_code, detail = self._get_status(backend.health_url)
        data: dict[str, object] = {"status_code": status_code, "restarts": process.restarts}
        status = HealthStatus.OK if status_code in HEALTHY_CODES else HealthStatus.DEGRADED

        if self.config.health.load_requests > 0:
            load = self.load_probe(backend.health_url)
            data["load"] = load.to_dict()
            detail = f"{detail}; load probe {load.succeeded}/{load.requested} succeeded"
            if not load.ok and status is HealthStatus.OK:
                status = HealthStatus.DEGRADED
        return HealthCheckResult(HealthLayer.BACKEND, status, detail, data=data)

    def check_proxy(self) -> HealthCheckResult:
        """Require the proxy root document to answer 200."""
        status_code, detail = self._get_status(self.config.health.proxy_url)
        status = HealthStatus.OK if status_code in HEALTHY_CODES else HealthStatus.FAIL
        return HealthCheckResult(
            HealthLayer.PROXY, status, detail, data={"status_code": status_code}
        )

    def check_assets(self) -> HealthCheckResult:
        """Require the frontend entry file in the served root."""
        entry = self.config.frontend.web_root / self.config.frontend.entry_file
        if entry.is_file():
            return HealthCheckResult(HealthLayer.FRONTEND_ASSETS, HealthStatus.OK, f"{entry} present")
        return HealthCheckResult(HealthLayer.FRONTEND_ASSETS, HealthStatus.FAIL, f"{entry} missing")

    def load_probe(self, url: str) -> LoadProbeResult:
        """Issue ``health.load_requests`` GETs with bounded concurrency and wait for all."""
        requested = self.config.health.load_requests
        workers = max(1, min(self.config.health.load_concurrency, requested))
        start = time.perf_counter()

        def _one() -> bool:
            status_code, _ = self._get_status(url)
            return status_code in HEALTHY_CODES

        succeeded = 0
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(_one) for _ in range(requested)]
            for future in concurrent.futures.as_completed(futures):
                if future.result():
                    succeeded += 1
        return LoadProbeResult(
            requested=requested,
            succeeded=succeeded,
            concurrency=workers,
            duration_ms=int((time.perf_counter() - start) * 1000),
        )


__all__ = ["HEALTHY_CODES", "HealthVerifier", "LoadProbeResult", "active_layers", "aggregate"]
