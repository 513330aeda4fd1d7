"""Deployment executor: install, migrate, build, place and (re)start."""
from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from .config import AppConfig
from .errors import BuildError, DeploymentError, MigrationError, ReconcileError
from .models import DeploymentRun, ReconcileOutcome
from .providers.nginx import NginxError, NginxProvider
from .providers.npm import NpmError, NpmProvider
from .providers.pm2 import Pm2Error, Pm2Provider
from .providers.postgres import PostgresError, PostgresProvider, split_migration_errors
from .providers.systemd import SystemdError, SystemdProvider
from .reconciler import ProcessResource, Reconciler

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, str], None]
ChownFunc = Callable[[Path, str, str], None]


@dataclass(slots=True, frozen=True)
class MigrationResult:
    """Outcome of one migration file."""

    name: str
    already_applied: bool
    detail: str = ""


@dataclass(slots=True)
class ExecutionOutcome:
    """What the executor did during a run."""

    steps: list[tuple[str, str]] = field(default_factory=list)
    migrations: list[MigrationResult] = field(default_factory=list)
    process_outcome: ReconcileOutcome | None = None
    startup_configured: bool = False
    proxy_restarted: bool = False


def _chown_tree(root: Path, owner: str, group: str) -> None:
    shutil.chown(root, owner, group)
    for directory, dirnames, filenames in os.walk(root):
        for name in (*dirnames, *filenames):
            shutil.chown(Path(directory) / name, owner, group)


def _chmod_tree(root: Path, mode: int) -> None:
    os.chmod(root, mode)
    for directory, dirnames, filenames in os.walk(root):
        for name in (*dirnames, *filenames):
            os.chmod(Path(directory) / name, mode)


@dataclass(slots=True)
class DeploymentExecutor:
    """Sequence component installs, builds, artifact placement and restarts.

    All builds complete (and the frontend entry artifact is verified) before
    anything is placed or restarted, so a broken build never takes down the
    running site.
    """

    config: AppConfig
    npm: NpmProvider
    pm2: Pm2Provider
    postgres: PostgresProvider
    systemd: SystemdProvider
    nginx: NginxProvider
    reconciler: Reconciler
    progress: ProgressCallback | None = None
    chown: ChownFunc = field(default=_chown_tree)
    db_password: str | None = field(default=None, repr=False)
    run_migrations: bool = True
    restart_proxy: bool = True

    def execute(self, run: DeploymentRun) -> ExecutionOutcome:
        """Run every step selected by ``run.mode``; raise on the first fatal error."""
        outcome = ExecutionOutcome()
        mode = run.mode
        if mode.backend:
            self._install(self.config.project.backend_dir, production=True, fresh=mode.fresh_install, outcome=outcome)
            if self.run_migrations:
                self._migrate(outcome)
        if mode.frontend:
            self._install(self.config.project.frontend_dir, production=False, fresh=mode.fresh_install, outcome=outcome)
            self._build_frontend(outcome)
            self._place_frontend(outcome)
        if mode.backend:
            self._start_backend(run, outcome)
        if self.restart_proxy and not mode.skip_proxy_config:
            self._restart_proxy(outcome)
        return outcome

    # ------------------------------------------------------------------
    def _note(self, outcome: ExecutionOutcome, step: str, detail: str) -> None:
        outcome.steps.append((step, detail))
        logger.info("%s: %s", step, detail)
        if self.progress is not None:
            self.progress(step, detail)

    def _install(self, project_dir: Path, *, production: bool, fresh: bool, outcome: ExecutionOutcome) -> None:
        component = project_dir.name
        if not project_dir.is_dir():
            raise BuildError(f"{component} directory not found: {project_dir}")
        if fresh:
            extra = (self.config.frontend.build_dir,) if not production else ()
            try:
                removed = NpmProvider.clean(project_dir, *extra)
            except OSError as exc:
                raise BuildError(f"Could not clean {component} before install: {exc}") from exc
            self._note(
                outcome,
                f"{component}.clean",
                ", ".join(str(path) for path in removed) or "nothing to remove",
            )
        try:
            command = self.npm.install(project_dir, production=production)
        except NpmError as exc:
            raise BuildError(f"Dependency install failed for {component}: {exc}") from exc
        self._note(outcome, f"{component}.install", " ".join(command))

    def _migrate(self, outcome: ExecutionOutcome) -> None:
        migrations_dir = self.config.project.backend_dir / self.config.database.migrations_dir
        files = sorted(migrations_dir.glob("*.sql")) if migrations_dir.is_dir() else []
        if not files:
            self._note(outcome, "backend.migrations", "no migration files")
            return
        database = self.config.database
        for path in files:
            try:
                result = self.postgres.run_file(path, database.name, database.user, self.db_password)
            except PostgresError as exc:
                raise MigrationError(f"Migration {path.name} could not run: {exc}") from exc
            output = f"{result.stdout or ''}\n{result.stderr or ''}"
            already, fatal = split_migration_errors(output)
            if fatal:
                raise MigrationError(f"Migration {path.name} failed: {fatal[0]}")
            if result.returncode != 0:
                raise MigrationError(
                    f"Migration {path.name} failed (exit {result.returncode}): {output.strip() or 'no output'}"
                )
            entry = MigrationResult(
                name=path.name,
                already_applied=bool(already),
                detail=already[0] if already else "applied",
            )
            outcome.migrations.append(entry)
            self._note(
                outcome,
                "backend.migration",
                f"{path.name}: {'already applied' if entry.already_applied else 'applied'}",
            )

    def _build_frontend(self, outcome: ExecutionOutcome) -> None:
        frontend_dir = self.config.project.frontend_dir
        try:
            self.npm.build(frontend_dir)
        except NpmError as exc:
            raise BuildError(f"Frontend build failed: {exc}") from exc
        entry = frontend_dir / self.config.frontend.build_dir / self.config.frontend.entry_file
        if not entry.is_file():
            raise BuildError(f"Frontend build did not produce {entry}.")
        self._note(outcome, "frontend.build", f"verified {entry}")

    def _place_frontend(self, outcome: ExecutionOutcome) -> None:
        frontend = self.config.frontend
        build_dir = self.config.project.frontend_dir / frontend.build_dir
        web_root = frontend.web_root
        try:
            web_root.mkdir(parents=True, exist_ok=True)
            for child in web_root.iterdir():
                if child.is_dir() and not child.is_symlink():
                    shutil.rmtree(child)
                else:
                    child.unlink()
            shutil.copytree(build_dir, web_root, dirs_exist_ok=True)
            self.chown(web_root, frontend.owner, frontend.group)
            _chmod_tree(web_root, frontend.mode)
        except (OSError, LookupError) as exc:
            raise DeploymentError(f"Failed to place frontend assets in {web_root}: {exc}") from exc
        self._note(outcome, "frontend.place", f"{build_dir} -> {web_root}")

    def _start_backend(self, run: DeploymentRun, outcome: ExecutionOutcome) -> None:
        backend = self.config.backend
        backend_dir = self.config.project.backend_dir
        resource = ProcessResource(
            name=backend.process_name,
            pm2=self.pm2,
            script=backend_dir / backend.entry,
            cwd=backend_dir,
            env_name=backend.node_env,
        )
        try:
            process_outcome = self.reconciler.reconcile(resource)
        except ReconcileError as exc:
            run.resource_results = list(self.reconciler.results)
            raise DeploymentError(f"Backend process could not be started: {exc}") from exc
        run.resource_results = list(self.reconciler.results)
        outcome.process_outcome = process_outcome

        try:
            if process_outcome is ReconcileOutcome.UNCHANGED:
                # Registered and online: restart so the new code is loaded.
                self.pm2.restart(backend.process_name)
                self._note(outcome, "backend.restart", backend.process_name)
            else:
                self._note(outcome, "backend.process", f"{backend.process_name} {process_outcome.value}")
            self.pm2.save()
            self._note(outcome, "backend.persist", "pm2 process list saved")

            user = self.config.pm2.startup_user
            unit = Pm2Provider.unit_name(user)
            if self.systemd.is_enabled(unit):
                self._note(outcome, "backend.startup", f"{unit} already enabled")
            else:
                commands = self.pm2.startup(user, self.config.pm2.startup_home)
                outcome.startup_configured = True
                self._note(outcome, "backend.startup", "; ".join(commands))
        except (Pm2Error, SystemdError) as exc:
            raise DeploymentError(f"Backend process supervision failed: {exc}") from exc

    def _restart_proxy(self, outcome: ExecutionOutcome) -> None:
        try:
            self.nginx.test_config()
            self.systemd.restart("nginx")
            self.systemd.enable("nginx")
        except (NginxError, SystemdError) as exc:
            raise DeploymentError(f"Reverse proxy restart failed: {exc}") from exc
        outcome.proxy_restarted = True
        self._note(outcome, "proxy.restart", "nginx configuration valid; service restarted")


__all__ = ["DeploymentExecutor", "ExecutionOutcome", "MigrationResult"]
