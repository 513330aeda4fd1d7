"""Tests for run reports and rollback advice."""
from __future__ import annotations

import io
from datetime import UTC, datetime
from pathlib import Path

from rich.console import Console

from tierctl.models import (
    DeploymentRun,
    HealthCheckResult,
    HealthLayer,
    HealthReport,
    HealthStatus,
    RunMode,
    Snapshot,
)
from tierctl.report import ReportAdvisor, access_url, rollback_commands


def _snapshot(tmp_path: Path) -> Snapshot:
    path = tmp_path / "snapshots" / "deployment_20260301_090000"
    return Snapshot(
        id=path.name,
        path=path,
        created_at=datetime(2026, 3, 1, 9, 0, tzinfo=UTC),
        contents=("backend.env", "web_root", "nginx_site", "database.sql"),
        sources=(
            ("backend.env", "/home/ubuntu/app/backend/.env"),
            ("web_root", "/var/www/bmi-app"),
            ("nginx_site", "/etc/nginx/sites-available/bmi-app"),
        ),
    )


def _advisor(config) -> tuple[ReportAdvisor, io.StringIO]:  # type: ignore[no-untyped-def]
    buffer = io.StringIO()
    console = Console(file=buffer, width=200, color_system=None)
    return ReportAdvisor(config=config, console=console), buffer


def test_rollback_commands_restore_each_capture(make_config, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    """Every captured item maps to a restore command, ending with a backend restart."""
    snapshot = _snapshot(tmp_path)

    commands = rollback_commands(snapshot, make_config())

    assert f"sudo cp -a {snapshot.path / 'backend.env'} /home/ubuntu/app/backend/.env" in commands
    assert "sudo rm -rf /var/www/bmi-app" in commands
    assert "sudo nginx -t && sudo systemctl reload nginx" in commands
    assert any(command.startswith("psql -U bmi_user -d bmidb") for command in commands)
    assert commands[-1] == "pm2 restart bmi-backend"


def test_access_url_needs_concrete_server_name() -> None:
    """The catch-all server name has no public URL."""
    run = DeploymentRun(kind="deploy", mode=RunMode(), server_name="_")
    assert access_url(run) is None
    run.server_name = "203.0.113.7"
    assert access_url(run) == "http://203.0.113.7/"


def test_failed_run_includes_rollback(make_config, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    """A failed run with a snapshot carries rollback guidance in every rendering."""
    advisor, buffer = _advisor(make_config())
    run = DeploymentRun(kind="deploy", mode=RunMode(), snapshot=_snapshot(tmp_path))
    run.record_stage("build", ok=False, detail="vite exited 1")
    run.error = "Frontend build failed"
    run.failed_stage = "build"

    payload = advisor.to_dict(run)
    advisor.report(run)

    assert payload["succeeded"] is False
    assert payload["failed_stage"] == "build"
    assert payload["rollback"][-1] == "pm2 restart bmi-backend"  # type: ignore[index]
    output = buffer.getvalue()
    assert "Deploy failed" in output
    assert "To restore the previous state" in output
    assert "pm2 restart bmi-backend" in output


def test_successful_run_omits_rollback(make_config, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    """Healthy runs show the URL and health table but no rollback."""
    advisor, buffer = _advisor(make_config())
    run = DeploymentRun(kind="deploy", mode=RunMode(), snapshot=_snapshot(tmp_path), server_name="bmi.example.com")
    run.health_report = HealthReport.from_results(
        [HealthCheckResult(HealthLayer.PROXY, HealthStatus.OK, "http://localhost/ returned HTTP 200")]
    )

    payload = advisor.to_dict(run)
    advisor.report(run)

    assert "rollback" not in payload
    assert payload["health"]["healthy"] is True  # type: ignore[index]
    output = buffer.getvalue()
    assert "Overall health: healthy" in output
    assert "Application URL: http://bmi.example.com/" in output
    assert "To restore" not in output


def test_unhealthy_run_is_failed(make_config) -> None:  # type: ignore[no-untyped-def]
    """A degraded layer fails the run even without an error."""
    advisor, _ = _advisor(make_config())
    run = DeploymentRun(kind="update", mode=RunMode(backend_only=True))
    run.health_report = HealthReport.from_results(
        [HealthCheckResult(HealthLayer.BACKEND, HealthStatus.DEGRADED, "HTTP 500")]
    )

    payload = advisor.to_dict(run)

    assert payload["succeeded"] is False
    assert payload["health"]["results"][0]["status"] == "degraded"  # type: ignore[index]
