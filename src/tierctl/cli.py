"""Typer command line interface for ``tierctl``."""
from __future__ import annotations

import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .backups import SnapshotManager
from .config import AppConfig, ConfigError, load_config
from .errors import OperatorAbort, SnapshotError
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .models import DeploymentRun, RunMode
from .pipeline import Pipeline, Providers, with_password
from .report import ReportAdvisor
from .templates import TemplateEngine

console = Console()

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to tierctl's YAML config file.",
)
SKIP_PROXY_OPTION = typer.Option(
    False,
    "--skip-nginx",
    "--skip-proxy",
    help="Do not (re)configure the nginx reverse proxy.",
)
SKIP_BACKUP_OPTION = typer.Option(
    False,
    "--skip-backup",
    "--no-backup",
    help="Do not capture a snapshot before changing anything.",
)
FRESH_OPTION = typer.Option(
    False,
    "--fresh",
    help="Remove node_modules (and the frontend build) before installing.",
)
BACKEND_ONLY_OPTION = typer.Option(False, "--backend-only", help="Only deploy the backend.")
FRONTEND_ONLY_OPTION = typer.Option(False, "--frontend-only", help="Only deploy the frontend.")
YES_OPTION = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation.")
JSON_OPTION = typer.Option(False, "--json", help="Emit the run report as JSON.")

app = typer.Typer(
    add_completion=False,
    context_settings=CONTEXT_SETTINGS,
    help=textwrap.dedent(
        """
        Idempotent provisioning for a React + Express + PostgreSQL application
        on a single Ubuntu host.

        `deploy` provisions the database, environment file, nginx site and pm2
        process; `update` pulls new code and redeploys it; `verify` probes every
        layer. Each run snapshots mutable state first and prints rollback steps
        when something fails.
        """
    ).strip(),
)
snapshots_app = typer.Typer(
    help="Inspect and prune deployment snapshots.",
    context_settings=CONTEXT_SETTINGS,
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    templates: TemplateEngine
    providers: Providers
    snapshots: SnapshotManager


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=int(ExitCode.FAILURE)) from exc
    templates = TemplateEngine.with_overrides(config.templates_dir)
    runtime = RuntimeContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        templates=templates,
        providers=Providers.from_config(config, templates),
        snapshots=SnapshotManager(root=config.backups.root, prefix=config.backups.prefix),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the tierctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"tierctl {__version__}")
        raise typer.Exit(code=int(ExitCode.OK))

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=int(ExitCode.OK))

    _ensure_runtime(ctx, config_file)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = int(ExitCode.FAILURE),
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


def _build_mode(
    op: OperationScope,
    *,
    skip_backup: bool = False,
    skip_proxy: bool = False,
    fresh: bool = False,
    backend_only: bool = False,
    frontend_only: bool = False,
) -> RunMode:
    try:
        return RunMode(
            skip_backup=skip_backup,
            skip_proxy_config=skip_proxy,
            fresh_install=fresh,
            backend_only=backend_only,
            frontend_only=frontend_only,
        )
    except ValueError as exc:
        _command_error(op, str(exc))


def _confirm(op: OperationScope, question: str, *, assume_yes: bool) -> None:
    if assume_yes:
        op.add_step("confirm", status="skipped", detail="--yes")
        return
    try:
        if not typer.confirm(question, default=False):
            raise OperatorAbort("Cancelled by operator; nothing was changed.")
    except typer.Abort as exc:
        raise OperatorAbort("Cancelled by operator; nothing was changed.") from exc
    op.add_step("confirm", status="success")


def _pipeline(
    runtime: RuntimeContext,
    config: AppConfig,
    op: OperationScope,
    *,
    json_output: bool,
) -> Pipeline:
    advisor = ReportAdvisor(config=config, console=console)

    def _progress(stage: str, status: str, detail: str) -> None:
        op.add_step(f"{stage}.{status}", status="error" if status == "error" else "success", detail=detail or None)
        if json_output or status == "started":
            return
        style = "red" if status == "error" else "cyan"
        console.print(f"[{style}]{stage}[/{style}] {status}: {detail}" if detail else f"[{style}]{stage}[/{style}] {status}")

    def _report(run: DeploymentRun) -> None:
        if json_output:
            console.print_json(data=advisor.to_dict(run))
        else:
            advisor.report(run)

    return Pipeline(
        config=config,
        providers=runtime.providers,
        templates=runtime.templates,
        snapshots=runtime.snapshots,
        reporter=_report,
        progress=_progress,
    )


def _finish_run(op: OperationScope, run: DeploymentRun) -> None:
    context: dict[str, object] = {
        "stages": [stage.stage for stage in run.stages if stage.ok and not stage.skipped],
        "snapshot": str(run.snapshot.path) if run.snapshot else None,
        "failed_resources": [result.name for result in run.failed_resources],
    }
    backups = [str(run.snapshot.path)] if run.snapshot else None
    changed = sum(1 for result in run.resource_results if result.outcome and result.outcome.value != "unchanged")
    if run.succeeded:
        op.success(f"{run.kind.capitalize()} completed.", changed=changed, backups=backups, context=context)
        return
    if run.error is None:
        message = f"{run.kind.capitalize()} finished but the stack is unhealthy."
    else:
        message = f"{run.kind.capitalize()} failed during {run.failed_stage}: {run.error}"
    op.error(message, rc=int(ExitCode.FAILURE), backups=backups, context=context)
    raise typer.Exit(code=int(ExitCode.FAILURE))


@app.command()
def deploy(
    ctx: typer.Context,
    skip_proxy: bool = SKIP_PROXY_OPTION,
    skip_backup: bool = SKIP_BACKUP_OPTION,
    fresh: bool = FRESH_OPTION,
    backend_only: bool = BACKEND_ONLY_OPTION,
    frontend_only: bool = FRONTEND_ONLY_OPTION,
    server_name: str | None = typer.Option(
        None,
        "--server-name",
        help="Public hostname for the nginx site (default: discovered public IPv4, else `_`).",
    ),
    yes: bool = YES_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Provision and deploy the full stack."""
    runtime = _get_runtime(ctx)
    config = runtime.config
    args = {
        "skip_proxy": skip_proxy,
        "skip_backup": skip_backup,
        "fresh": fresh,
        "backend_only": backend_only,
        "frontend_only": frontend_only,
        "server_name": server_name,
    }
    with runtime.logger.operation(
        "deploy",
        args=args,
        target={"kind": "deployment", "site": config.nginx.site_name, "database": config.database.name},
    ) as op:
        mode = _build_mode(
            op,
            skip_backup=skip_backup,
            skip_proxy=skip_proxy,
            fresh=fresh,
            backend_only=backend_only,
            frontend_only=frontend_only,
        )
        try:
            password = config.database.password
            if mode.backend and not password:
                try:
                    password = typer.prompt(
                        f"Password for database role {config.database.user}",
                        hide_input=True,
                        confirmation_prompt=True,
                    )
                except typer.Abort as exc:
                    raise OperatorAbort("No database password supplied; nothing was changed.") from exc
                op.add_step("credentials", status="success", detail="password entered interactively")
            if not json_output:
                console.print(f"[bold]Deploy plan:[/bold] {', '.join(mode.describe())}")
            _confirm(op, "Proceed with deployment?", assume_yes=yes)
        except OperatorAbort as exc:
            _command_error(op, str(exc))

        effective = with_password(config, password)
        run = DeploymentRun(kind="deploy", mode=mode)
        _pipeline(runtime, effective, op, json_output=json_output).deploy(run, server_name=server_name)
        _finish_run(op, run)


@app.command()
def update(
    ctx: typer.Context,
    skip_backup: bool = SKIP_BACKUP_OPTION,
    fresh: bool = FRESH_OPTION,
    backend_only: bool = BACKEND_ONLY_OPTION,
    frontend_only: bool = FRONTEND_ONLY_OPTION,
    yes: bool = YES_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Pull the latest code, rebuild and restart the application."""
    runtime = _get_runtime(ctx)
    config = runtime.config
    args = {
        "skip_backup": skip_backup,
        "fresh": fresh,
        "backend_only": backend_only,
        "frontend_only": frontend_only,
    }
    with runtime.logger.operation(
        "update",
        args=args,
        target={"kind": "deployment", "project": str(config.project.root)},
    ) as op:
        mode = _build_mode(
            op,
            skip_backup=skip_backup,
            fresh=fresh,
            backend_only=backend_only,
            frontend_only=frontend_only,
        )
        try:
            if not json_output:
                console.print(f"[bold]Update plan:[/bold] {', '.join(mode.describe())}")
            _confirm(op, "Proceed with update?", assume_yes=yes)
        except OperatorAbort as exc:
            _command_error(op, str(exc))

        run = DeploymentRun(kind="update", mode=mode)
        _pipeline(runtime, config, op, json_output=json_output).update(run)
        _finish_run(op, run)


@app.command()
def verify(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Probe database, backend, proxy and static assets."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("verify", target={"kind": "health"}) as op:
        run = DeploymentRun(kind="verify", mode=RunMode())
        _pipeline(runtime, runtime.config, op, json_output=json_output).verify(run)
        _finish_run(op, run)


@snapshots_app.command("list")
def snapshots_list(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """List snapshots, newest first."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("snapshots list", target={"kind": "snapshot"}) as op:
        snapshots = runtime.snapshots.list_snapshots()
        if json_output:
            console.print_json(data={"snapshots": [item.to_dict() for item in snapshots]})
        elif not snapshots:
            console.print(f"No snapshots under {runtime.snapshots.root}.")
        else:
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("ID")
            table.add_column("Created")
            table.add_column("Contents")
            table.add_column("Path")
            for item in snapshots:
                table.add_row(
                    item.id,
                    item.created_at.isoformat(timespec="seconds"),
                    ", ".join(item.contents) or "-",
                    str(item.path),
                )
            console.print(table)
        op.success(f"Listed {len(snapshots)} snapshot(s).", context={"count": len(snapshots)})


@snapshots_app.command("prune")
def snapshots_prune(
    ctx: typer.Context,
    retain: int | None = typer.Option(
        None,
        "--retain",
        min=1,
        help="Number of snapshots to keep (default: backups.retain).",
    ),
) -> None:
    """Delete all but the most recent snapshots."""
    runtime = _get_runtime(ctx)
    keep = retain if retain is not None else runtime.config.backups.retain
    with runtime.logger.operation(
        "snapshots prune",
        args={"retain": keep},
        target={"kind": "snapshot", "root": str(runtime.snapshots.root)},
    ) as op:
        try:
            removed = runtime.snapshots.prune(keep)
        except SnapshotError as exc:
            _command_error(op, str(exc))
        for item in removed:
            console.print(f"Removed {item.path}")
        console.print(f"Kept the {keep} most recent snapshot(s); removed {len(removed)}.")
        op.success(
            f"Pruned {len(removed)} snapshot(s).",
            changed=len(removed),
            context={"removed": [item.id for item in removed]},
        )


app.add_typer(snapshots_app, name="snapshots")


def main() -> None:  # pragma: no cover - thin wrapper for console_scripts
    """Run the CLI application."""
    app()


__all__ = ["app", "main"]
