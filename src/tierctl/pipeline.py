"""Stage sequencing for deploy, update and verify runs.

Prober -> Backup -> Reconciler -> Executor -> Verifier, then Reporting.
A fatal error in any stage stops the run; the reporter is always called,
success or failure, so the snapshot location is never lost.
"""
from __future__ import annotations

import logging
import os
import traceback
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TypeVar

from .backups import CaptureTarget, SnapshotManager
from .config import AppConfig
from .errors import DeploymentError, PreconditionError, TierctlError
from .executor import DeploymentExecutor
from .health import HealthVerifier
from .models import DeploymentRun, ResourceKind, ResourceResult
from .prober import (
    ProbeReport,
    ToolSpec,
    VersionReader,
    WhichFunc,
    deploy_tools,
    probe,
    read_version,
    update_tools,
)
from .providers import (
    AptProvider,
    GitError,
    GitProvider,
    MetadataClient,
    NginxProvider,
    NpmProvider,
    Pm2Provider,
    PostgresProvider,
    SystemdProvider,
    resolve_server_name,
)
from .reconciler import (
    AuthRuleResource,
    DatabaseResource,
    EnvFileResource,
    GrantResource,
    PackageResource,
    Reconciler,
    Resource,
    RoleResource,
    VhostResource,
)
from .reconciler.resources import resource_key
from .report import LABEL_BACKEND, LABEL_DATABASE, LABEL_ENV, LABEL_FRONTEND, LABEL_VHOST, LABEL_WEB_ROOT
from .templates import TemplateEngine

logger = logging.getLogger(__name__)

T = TypeVar("T")
ProgressCallback = Callable[[str, str, str], None]
Reporter = Callable[[DeploymentRun], None]


def read_env_file(path: Path) -> dict[str, str]:
    """Parse ``KEY=value`` lines from an environment file (comments ignored)."""
    values: dict[str, str] = {}
    if not path.is_file():
        return values
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip()] = value.strip().strip("'\"")
    return values


@dataclass(slots=True)
class Providers:
    """External-tool wrappers shared by every stage of a run."""

    apt: AptProvider
    npm: NpmProvider
    pm2: Pm2Provider
    postgres: PostgresProvider
    systemd: SystemdProvider
    nginx: NginxProvider
    git: GitProvider
    metadata: MetadataClient | None

    @classmethod
    def from_config(cls, config: AppConfig, templates: TemplateEngine) -> Providers:
        """Build providers bound to the configured binaries and paths."""
        database = config.database
        return cls(
            apt=AptProvider(command_prefix=() if os.geteuid() == 0 else ("sudo",)),
            npm=NpmProvider(),
            pm2=Pm2Provider(pm2_bin=config.pm2.pm2_bin),
            postgres=PostgresProvider(
                admin_command=database.admin_command,
                psql_bin=database.psql_bin,
                pg_dump_bin=database.pg_dump_bin,
                host=database.host,
                port=database.port,
            ),
            systemd=SystemdProvider(),
            nginx=NginxProvider(
                templates=templates,
                sites_available=config.nginx.sites_available,
                sites_enabled=config.nginx.sites_enabled,
                nginx_bin=config.nginx.nginx_bin,
            ),
            git=GitProvider(repo=config.project.root),
            metadata=MetadataClient(endpoint=config.metadata.endpoint, timeout=config.metadata.timeout),
        )


@dataclass(slots=True)
class Pipeline:
    """Run the provisioning stages for one :class:`DeploymentRun`."""

    config: AppConfig
    providers: Providers
    templates: TemplateEngine
    snapshots: SnapshotManager
    reporter: Reporter
    progress: ProgressCallback | None = None
    which: WhichFunc | None = None
    version_reader: VersionReader = field(default=read_version)
    sleep: Callable[[float], None] | None = None
    verifier: HealthVerifier | None = None

    # Public entry points --------------------------------------------
    def deploy(self, run: DeploymentRun, *, server_name: str | None = None) -> DeploymentRun:
        """Provision database, configuration, code and services from scratch or in place."""
        mode = run.mode
        config = self.config
        reconciler = Reconciler(on_result=self._on_resource)
        try:
            report = self._stage(
                run,
                "precondition",
                lambda: self._probe(
                    run,
                    deploy_tools(
                        self.providers.apt,
                        self.providers.npm,
                        include_proxy=not mode.skip_proxy_config,
                        include_database=mode.backend,
                    )
                ),
            )
            self._emit("precondition", "ok", report.summary())

            if mode.skip_proxy_config:
                run.server_name = None
            else:
                run.server_name = resolve_server_name(
                    server_name or config.nginx.server_name, self.providers.metadata
                )
                self._emit("server-name", "ok", run.server_name)

            self._backup(run, self._deploy_targets(run))

            resources = self._deploy_resources(run)
            checkpoints = {ResourceKind.AUTH_RULE: self._connection_test} if mode.backend else {}
            self._stage(
                run,
                "reconcile",
                lambda: self._reconcile(run, reconciler, resources, checkpoints),
            )

            executor = self._executor(reconciler, password=config.database.password, restart_proxy=True)
            self._stage(run, "execute", lambda: executor.execute(run))
            self._verify(run, password=config.database.password)
        except TierctlError:
            pass  # recorded on the run by _stage
        finally:
            self.reporter(run)
        return run

    def update(self, run: DeploymentRun) -> DeploymentRun:
        """Pull the latest code, rebuild and restart without touching provisioning."""
        mode = run.mode
        config = self.config
        reconciler = Reconciler(on_result=self._on_resource)
        password = config.database.password or read_env_file(self._env_path()).get("DB_PASSWORD")
        try:
            report = self._stage(
                run,
                "precondition",
                lambda: self._probe(run, update_tools(self.providers.npm)),
            )
            self._emit("precondition", "ok", report.summary())

            targets: list[CaptureTarget] = []
            if mode.backend:
                targets.append(CaptureTarget.for_path(LABEL_BACKEND, config.project.backend_dir))
            if mode.frontend:
                targets.append(CaptureTarget.for_path(LABEL_FRONTEND, config.project.frontend_dir))
                targets.append(CaptureTarget.for_path(LABEL_WEB_ROOT, config.frontend.web_root))
            self._backup(run, targets)

            self._stage(run, "refresh", lambda: self._refresh(run))
            run.record_stage("reconcile", ok=True, skipped=True, detail="update does not reprovision resources")

            executor = self._executor(
                reconciler,
                password=password,
                restart_proxy=False,
                run_migrations=bool(password),
            )
            self._stage(run, "execute", lambda: executor.execute(run))
            self._verify(run, password=password)
        except TierctlError:
            pass  # recorded on the run by _stage
        finally:
            self.reporter(run)
        return run

    def verify(self, run: DeploymentRun) -> DeploymentRun:
        """Probe every layer and report, without changing anything."""
        password = self.config.database.password or read_env_file(self._env_path()).get("DB_PASSWORD")
        try:
            self._verify(run, password=password, settle=False)
        finally:
            self.reporter(run)
        return run

    # Stage plumbing -------------------------------------------------
    def _emit(self, stage: str, status: str, detail: str) -> None:
        logger.info("[%s] %s: %s", stage, status, detail)
        if self.progress is not None:
            self.progress(stage, status, detail)

    def _on_resource(self, result: ResourceResult) -> None:
        status = "error" if result.failed else (result.outcome.value if result.outcome else "")
        self._emit("reconcile", status, f"{result.kind.value} {result.name}: {result.error or result.detail}")

    def _stage(self, run: DeploymentRun, name: str, func: Callable[[], T]) -> T:
        self._emit(name, "started", "")
        try:
            value = func()
        except TierctlError as exc:
            self._fail(run, name, exc)
            raise
        except Exception as exc:
            logger.debug("Stage %s raised: %s", name, traceback.format_exc())
            wrapped = DeploymentError(f"Unexpected {type(exc).__name__}: {exc}")
            self._fail(run, name, wrapped)
            raise wrapped from exc
        run.record_stage(name, ok=True)
        return value

    def _fail(self, run: DeploymentRun, name: str, exc: TierctlError) -> None:
        run.error = str(exc)
        run.failed_stage = name
        run.record_stage(name, ok=False, detail=str(exc))
        self._emit(name, "error", str(exc))
        if isinstance(exc, PreconditionError):
            for item in exc.report.missing:
                hint = f" (hint: {item.install_hint})" if item.install_hint else ""
                run.notes.append(f"{item.name}: {item.detail}{hint}")

    def _probe(self, run: DeploymentRun, tools: Iterable[ToolSpec]) -> ProbeReport:
        if self.which is not None:
            report = probe(tools, which=self.which, version_reader=self.version_reader)
        else:
            report = probe(tools, version_reader=self.version_reader)
        for item in report.installed:
            run.notes.append(f"installed {item.name} during precondition checks")
        if not report.ok:
            raise PreconditionError(report.summary(), report)
        return report

    def _backup(self, run: DeploymentRun, targets: list[CaptureTarget]) -> None:
        if run.mode.skip_backup:
            run.record_stage("backup", ok=True, skipped=True, detail="disabled by --skip-backup")
            self._emit("backup", "skipped", "disabled by --skip-backup")
            return

        def _capture() -> None:
            snapshot = self.snapshots.snapshot(targets)
            run.snapshot = snapshot
            removed = self.snapshots.prune(self.config.backups.retain)
            for item in snapshot.skipped:
                run.notes.append(f"snapshot skipped {item}")
            if removed:
                run.notes.append(f"pruned {len(removed)} old snapshot(s)")
            self._emit("backup", "ok", str(snapshot.path))

        self._stage(run, "backup", _capture)

    def _reconcile(
        self,
        run: DeploymentRun,
        reconciler: Reconciler,
        resources: list[Resource],
        checkpoints: dict[ResourceKind, Callable[[], object]],
    ) -> None:
        try:
            reconciler.reconcile_all(resources, checkpoints=checkpoints)
        finally:
            run.resource_results = list(reconciler.results)

    def _connection_test(self) -> None:
        database = self.config.database
        self.providers.postgres.check_connection(database.name, database.user, database.password)
        self._emit("reconcile", "ok", f"connection test as {database.user}@{database.name}")

    def _executor(
        self,
        reconciler: Reconciler,
        *,
        password: str | None,
        restart_proxy: bool,
        run_migrations: bool = True,
    ) -> DeploymentExecutor:
        providers = self.providers
        return DeploymentExecutor(
            config=self.config,
            npm=providers.npm,
            pm2=providers.pm2,
            postgres=providers.postgres,
            systemd=providers.systemd,
            nginx=providers.nginx,
            reconciler=reconciler,
            progress=lambda step, detail: self._emit("execute", step, detail),
            db_password=password,
            run_migrations=run_migrations,
            restart_proxy=restart_proxy,
        )

    def _verify(self, run: DeploymentRun, *, password: str | None, settle: bool = True) -> None:
        verifier = self.verifier or HealthVerifier(
            config=self.config,
            postgres=self.providers.postgres,
            pm2=self.providers.pm2,
            db_password=password,
        )
        if self.sleep is not None:
            verifier.sleep = self.sleep
        self._emit("verify", "started", f"settling {self.config.health.settle_seconds:g}s" if settle else "")
        report = verifier.verify(run, settle=settle)
        run.record_stage(
            "verify",
            ok=report.healthy,
            detail="all layers healthy" if report.healthy else "one or more layers unhealthy",
        )

    def _refresh(self, run: DeploymentRun) -> None:
        git = self.providers.git
        project = self.config.project
        try:
            if not git.is_repository():
                raise DeploymentError(f"{project.root} is not a git work tree.")
            branch = project.git_branch or git.current_branch()
            if git.is_dirty():
                git.stash(f"tierctl update {run.started_at:%Y%m%d_%H%M%S}")
                run.notes.append("local changes stashed before pull")
            before = git.head()
            git.pull(project.git_remote, branch)
            after = git.head()
            summary = git.last_commit()
        except GitError as exc:
            raise DeploymentError(f"Code refresh failed: {exc}") from exc
        change = "no new commits" if before == after else f"{before[:7]} -> {after[:7]}"
        run.notes.append(f"latest commit: {summary}")
        self._emit("refresh", "ok", f"{project.git_remote}/{branch}: {change}")

    # Deploy inputs --------------------------------------------------
    def _env_path(self) -> Path:
        return self.config.project.backend_dir / self.config.backend.env_file

    def _deploy_targets(self, run: DeploymentRun) -> list[CaptureTarget]:
        config = self.config
        targets: list[CaptureTarget] = []
        if run.mode.backend:
            targets.append(CaptureTarget.for_path(LABEL_ENV, self._env_path()))
        if run.mode.frontend:
            targets.append(CaptureTarget.for_path(LABEL_WEB_ROOT, config.frontend.web_root))
        if not run.mode.skip_proxy_config:
            targets.append(
                CaptureTarget.for_path(LABEL_VHOST, self.providers.nginx.site_path(config.nginx.site_name))
            )
        database = config.database
        if run.mode.backend and database.password:
            targets.append(
                CaptureTarget.for_dump(
                    LABEL_DATABASE,
                    lambda destination: self.providers.postgres.dump(
                        database.name, database.user, database.password, destination
                    ),
                    f"pg_dump {database.name}",
                )
            )
        return targets

    def env_context(self) -> dict[str, object]:
        """Return the template context for the backend environment file."""
        database = self.config.database
        backend = self.config.backend
        return {
            "database_url": database.url,
            "db_user": database.user,
            "db_password": database.password or "",
            "db_name": database.name,
            "db_host": database.host,
            "db_port": database.port,
            "port": backend.port,
            "node_env": backend.node_env,
            "cors_origin": backend.cors_origin,
        }

    def vhost_context(self, server_name: str) -> dict[str, object]:
        """Return the template context for the nginx site."""
        config = self.config
        return {
            "listen_port": 80,
            "server_name": server_name,
            "web_root": str(config.frontend.web_root),
            "index_file": config.frontend.entry_file,
            "api_prefix": "/api/",
            "upstream_port": config.backend.port,
            "access_log": config.nginx.access_log,
            "error_log": config.nginx.error_log,
        }

    def _deploy_resources(self, run: DeploymentRun) -> list[Resource]:
        config = self.config
        providers = self.providers
        database = config.database
        resources: list[Resource] = []
        if run.mode.backend:
            db_key = resource_key(ResourceKind.DATABASE, database.name)
            role_key = resource_key(ResourceKind.ROLE, database.user)
            grant_name = f"{database.user}@{database.name}"
            resources.extend(
                [
                    PackageResource(
                        name="postgresql",
                        apt=providers.apt,
                        packages=("postgresql", "postgresql-contrib"),
                        service="postgresql",
                        systemd=providers.systemd,
                    ),
                    DatabaseResource(
                        name=database.name,
                        postgres=providers.postgres,
                        requires=(resource_key(ResourceKind.PACKAGE, "postgresql"),),
                    ),
                    RoleResource(
                        name=database.user,
                        postgres=providers.postgres,
                        password=database.password,
                        requires=(resource_key(ResourceKind.PACKAGE, "postgresql"),),
                    ),
                    GrantResource(
                        name=grant_name,
                        postgres=providers.postgres,
                        database=database.name,
                        user=database.user,
                        requires=(db_key, role_key),
                    ),
                    AuthRuleResource(
                        name=grant_name,
                        postgres=providers.postgres,
                        database=database.name,
                        user=database.user,
                        requires=(resource_key(ResourceKind.GRANT, grant_name),),
                    ),
                    EnvFileResource(
                        name=str(self._env_path()),
                        path=self._env_path(),
                        templates=self.templates,
                        context=self.env_context(),
                    ),
                ]
            )
        if not run.mode.skip_proxy_config:
            resources.extend(
                [
                    PackageResource(
                        name="nginx",
                        apt=providers.apt,
                        packages=("nginx",),
                        service="nginx",
                        systemd=providers.systemd,
                    ),
                    VhostResource(
                        name=config.nginx.site_name,
                        nginx=providers.nginx,
                        context=self.vhost_context(run.server_name or "_"),
                        remove_default_site=config.nginx.remove_default_site,
                        requires=(resource_key(ResourceKind.PACKAGE, "nginx"),),
                    ),
                ]
            )
        return resources


def with_password(config: AppConfig, password: str | None) -> AppConfig:
    """Return *config* with the database password replaced."""
    return replace(config, database=replace(config.database, password=password))


__all__ = ["Pipeline", "Providers", "read_env_file", "with_password"]
