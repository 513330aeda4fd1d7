"""Tests for precondition probing."""
from __future__ import annotations

import pytest

from tierctl.prober import (
    ToolSpec,
    ToolStatus,
    deploy_tools,
    probe,
    probe_tool,
    update_tools,
)
from tierctl.providers import AptProvider, NpmProvider


class FakeHost:
    """PATH lookup and version table that installs can mutate."""

    def __init__(self, versions: dict[str, str | None]) -> None:
        """Store the tools currently on PATH and their versions."""
        self.versions = dict(versions)

    def which(self, name: str) -> str | None:
        return f"/usr/bin/{name}" if name in self.versions else None

    def version(self, spec: ToolSpec) -> str | None:
        return self.versions.get(spec.executable)


def test_present_tool_reports_version() -> None:
    """Tools already on PATH are reported as present."""
    host = FakeHost({"node": "20.11.1"})

    result = probe_tool(ToolSpec("node", min_version="18.0"), which=host.which, version_reader=host.version)

    assert result.status is ToolStatus.PRESENT
    assert result.version == "20.11.1"


def test_old_version_without_installer_is_fatal() -> None:
    """A too-old tool with no safe install action is a fatal precondition."""
    host = FakeHost({"node": "16.20.0"})

    result = probe_tool(
        ToolSpec("node", min_version="18.0", install_hint="nvm install --lts"),
        which=host.which,
        version_reader=host.version,
    )

    assert result.status is ToolStatus.MISSING_FATAL
    assert "older than required 18.0" in result.detail
    assert result.install_hint == "nvm install --lts"


def test_unknown_version_is_accepted() -> None:
    """An unreadable version does not block the run."""
    host = FakeHost({"node": None})

    result = probe_tool(ToolSpec("node", min_version="18.0"), which=host.which, version_reader=host.version)

    assert result.status is ToolStatus.PRESENT
    assert "could not be determined" in result.detail


def test_missing_tool_is_installed_and_rechecked() -> None:
    """A safe install action runs once and the tool is re-probed."""
    host = FakeHost({})
    installs: list[str] = []

    def install() -> None:
        installs.append("pm2")
        host.versions["pm2"] = "5.3.0"

    result = probe_tool(ToolSpec("pm2", install=install), which=host.which, version_reader=host.version)

    assert installs == ["pm2"]
    assert result.status is ToolStatus.INSTALLED
    assert result.version == "5.3.0"


def test_failed_install_is_fatal() -> None:
    """Install errors are captured in the probe result rather than raised."""
    host = FakeHost({})

    def install() -> None:
        raise RuntimeError("E: Unable to locate package nginx")

    result = probe_tool(ToolSpec("nginx", install=install), which=host.which, version_reader=host.version)

    assert result.status is ToolStatus.MISSING_FATAL
    assert "Unable to locate package nginx" in result.detail


def test_install_that_does_not_help_is_fatal() -> None:
    """A tool still absent after installing is reported as such."""
    host = FakeHost({})

    result = probe_tool(ToolSpec("pm2", install=lambda: None), which=host.which, version_reader=host.version)

    assert result.status is ToolStatus.MISSING_FATAL
    assert result.detail.startswith("Still unavailable after install")


def test_probe_enumerates_every_missing_tool() -> None:
    """The report lists all unmet dependencies, not just the first."""
    host = FakeHost({"npm": "10.2.0"})

    report = probe(
        [ToolSpec("node", min_version="18.0"), ToolSpec("npm"), ToolSpec("git")],
        which=host.which,
        version_reader=host.version,
    )

    assert report.ok is False
    assert [item.name for item in report.missing] == ["node", "git"]
    assert report.summary() == "Missing required tools: node, git."


def test_deploy_tools_follow_mode() -> None:
    """Database and proxy tools are only required when those parts are deployed."""
    apt = AptProvider()
    npm = NpmProvider()

    full = [spec.name for spec in deploy_tools(apt, npm)]
    frontend_only = [spec.name for spec in deploy_tools(apt, npm, include_database=False)]
    no_proxy = [spec.name for spec in deploy_tools(apt, npm, include_proxy=False)]

    assert full == ["node", "npm", "psql", "nginx", "pm2"]
    assert "psql" not in frontend_only
    assert "nginx" not in no_proxy
    assert [spec.name for spec in update_tools(npm)] == ["git", "npm", "pm2"]


def test_deploy_tools_install_actions(monkeypatch: pytest.MonkeyPatch) -> None:
    """Install actions delegate to apt and npm."""
    apt_calls: list[list[str]] = []
    npm_calls: list[str] = []
    monkeypatch.setattr(AptProvider, "install", lambda self, packages: apt_calls.append(list(packages)))
    monkeypatch.setattr(NpmProvider, "install_global", lambda self, package: npm_calls.append(package))

    specs = {spec.name: spec for spec in deploy_tools(AptProvider(), NpmProvider())}
    for name in ("psql", "nginx", "pm2"):
        install = specs[name].install
        assert install is not None
        install()

    assert specs["node"].install is None
    assert apt_calls == [["postgresql", "postgresql-contrib"], ["nginx"]]
    assert npm_calls == ["pm2"]
