"""Run summary and advisory rollback instructions."""
from __future__ import annotations

import shlex
from dataclasses import dataclass

from rich.console import Console
from rich.table import Table

from .config import AppConfig
from .models import DeploymentRun, HealthStatus, Snapshot

_HEALTH_STYLE = {
    HealthStatus.OK: "[green]ok[/green]",
    HealthStatus.DEGRADED: "[yellow]degraded[/yellow]",
    HealthStatus.FAIL: "[red]fail[/red]",
}

# Snapshot labels; the pipeline captures targets under these names.
LABEL_ENV = "backend.env"
LABEL_BACKEND = "backend"
LABEL_FRONTEND = "frontend"
LABEL_WEB_ROOT = "web_root"
LABEL_VHOST = "nginx_site"
LABEL_DATABASE = "database.sql"


def _q(value: object) -> str:
    return shlex.quote(str(value))


def rollback_commands(snapshot: Snapshot, config: AppConfig) -> list[str]:
    """Return the shell commands that restore *snapshot*; never executed by tierctl."""
    commands: list[str] = []
    for label in snapshot.contents:
        captured = snapshot.path / label
        origin = snapshot.source_of(label)
        if label == LABEL_DATABASE:
            database = config.database
            commands.append(
                f"# review before restoring: {captured} recreates schema objects and data"
            )
            commands.append(
                f"psql -U {database.user} -d {database.name} -h {database.host} -f {_q(captured)}"
            )
            continue
        if not origin:
            continue
        if label in {LABEL_BACKEND, LABEL_FRONTEND, LABEL_WEB_ROOT}:
            commands.append(f"sudo rm -rf {_q(origin)}")
            commands.append(f"sudo cp -a {_q(captured)} {_q(origin)}")
        else:
            commands.append(f"sudo cp -a {_q(captured)} {_q(origin)}")
        if label == LABEL_VHOST:
            commands.append(f"sudo {config.nginx.nginx_bin} -t && sudo systemctl reload nginx")
    commands.append(f"{config.pm2.pm2_bin} restart {config.backend.process_name}")
    return commands


def useful_commands(config: AppConfig) -> list[str]:
    """Return day-two operator commands for the deployed stack."""
    pm2 = config.pm2.pm2_bin
    name = config.backend.process_name
    database = config.database
    return [
        f"{pm2} status",
        f"{pm2} logs {name}",
        f"{pm2} restart {name}",
        f"sudo {config.nginx.nginx_bin} -t",
        "sudo systemctl reload nginx",
        f"psql -U {database.user} -d {database.name} -h {database.host}",
    ]


def access_url(run: DeploymentRun) -> str | None:
    """Return the public URL when the server name is a concrete host."""
    if not run.server_name or run.server_name == "_":
        return None
    return f"http://{run.server_name}/"


@dataclass(slots=True)
class ReportAdvisor:
    """Render the outcome of a run and, on failure, how to roll back."""

    config: AppConfig
    console: Console

    def report(self, run: DeploymentRun) -> None:
        """Print the run summary, health report, snapshot and guidance."""
        console = self.console
        verdict = "[green]succeeded[/green]" if run.succeeded else "[red]failed[/red]"
        console.print()
        console.print(f"[bold]{run.kind.capitalize()} {verdict}[/bold] ({', '.join(run.mode.describe())})")
        console.print(f"Started: {run.started_at.isoformat(timespec='seconds')}")

        if run.stages:
            stages = Table("Stage", "Status", "Detail", show_header=True, header_style="bold magenta")
            for stage in run.stages:
                if stage.skipped:
                    status = "[dim]skipped[/dim]"
                elif stage.ok:
                    status = "[green]ok[/green]"
                else:
                    status = "[red]failed[/red]"
                stages.add_row(stage.stage, status, stage.detail)
            console.print(stages)

        if run.resource_results:
            resources = Table("Kind", "Resource", "Outcome", "Detail", show_header=True, header_style="bold magenta")
            for result in run.resource_results:
                if result.failed:
                    outcome = "[red]failed[/red]"
                    detail = result.error or ""
                else:
                    outcome = result.outcome.value if result.outcome else ""
                    detail = result.detail
                resources.add_row(result.kind.value, result.name, outcome, detail)
            console.print(resources)
            console.print(f"Failed resources: {len(run.failed_resources)}")

        if run.health_report is not None:
            self.render_health(run)

        if run.error:
            console.print(f"[red]Error during {run.failed_stage or 'run'}:[/red] {run.error}")
        for note in run.notes:
            console.print(f"  - {note}")

        if run.snapshot is not None:
            console.print(f"Snapshot: {run.snapshot.path}")
            if not run.succeeded:
                console.print("[yellow]To restore the previous state (review each step first):[/yellow]")
                for command in rollback_commands(run.snapshot, self.config):
                    console.print(f"  {command}", markup=False)

        url = access_url(run)
        if url and run.succeeded:
            console.print(f"Application URL: {url}")
        console.print("Useful commands:")
        for command in useful_commands(self.config):
            console.print(f"  {command}", markup=False)

    def render_health(self, run: DeploymentRun) -> None:
        """Print the per-layer health table and the overall verdict."""
        report = run.health_report
        if report is None:
            return
        table = Table("Layer", "Status", "Detail", show_header=True, header_style="bold magenta")
        for result in report.results:
            table.add_row(result.layer.value, _HEALTH_STYLE[result.status], result.detail)
        self.console.print(table)
        overall = "[green]healthy[/green]" if report.healthy else "[red]unhealthy[/red]"
        self.console.print(f"Overall health: {overall}")

    def to_dict(self, run: DeploymentRun) -> dict[str, object]:
        """Return a JSON-serialisable summary of *run*."""
        payload: dict[str, object] = {
            "kind": run.kind,
            "succeeded": run.succeeded,
            "mode": run.mode.describe(),
            "started_at": run.started_at.isoformat(),
            "server_name": run.server_name,
            "error": run.error,
            "failed_stage": run.failed_stage,
            "notes": list(run.notes),
            "stages": [
                {"stage": stage.stage, "ok": stage.ok, "skipped": stage.skipped, "detail": stage.detail}
                for stage in run.stages
            ],
            "resources": [
                {
                    "kind": result.kind.value,
                    "name": result.name,
                    "outcome": result.outcome.value if result.outcome else None,
                    "detail": result.detail,
                    "error": result.error,
                }
                for result in run.resource_results
            ],
            "health": None,
            "snapshot": run.snapshot.to_dict() if run.snapshot else None,
        }
        if run.health_report is not None:
            payload["health"] = {
                "healthy": run.health_report.healthy,
                "results": [
                    {
                        "layer": result.layer.value,
                        "status": result.status.value,
                        "detail": result.detail,
                        "checked_at": result.checked_at.isoformat(),
                    }
                    for result in run.health_report.results
                ],
            }
        if run.snapshot is not None and not run.succeeded:
            payload["rollback"] = rollback_commands(run.snapshot, self.config)
        return payload


__all__ = [
    "LABEL_BACKEND",
    "LABEL_DATABASE",
    "LABEL_ENV",
    "LABEL_FRONTEND",
    "LABEL_VHOST",
    "LABEL_WEB_ROOT",
    "ReportAdvisor",
    "access_url",
    "rollback_commands",
    "useful_commands",
]
