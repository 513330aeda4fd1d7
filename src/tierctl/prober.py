"""Precondition probing for external tools.

Every required tool is checked, optionally installed when a safe
non-interactive install action exists, and re-checked. The report always
covers the full tool set so operators see every unmet dependency at once.
"""
from __future__ import annotations

import logging
import re
import shutil
import subprocess
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from packaging.version import InvalidVersion, Version

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .providers import AptProvider, NpmProvider

logger = logging.getLogger(__name__)

_VERSION_PATTERN = re.compile(r"(\d+(?:\.\d+){0,3})")

WhichFunc = Callable[[str], "str | None"]
VersionReader = Callable[["ToolSpec"], "str | None"]


class ToolStatus(str, Enum):
    """Outcome of probing one tool."""

    PRESENT = "present"
    INSTALLED = "installed"
    MISSING_FATAL = "missing-fatal"


@dataclass(slots=True, frozen=True)
class ToolSpec:
    """Declaration of an external tool the run depends on."""

    name: str
    command: str | None = None
    min_version: str | None = None
    install_hint: str = ""
    install: Callable[[], object] | None = None
    version_args: tuple[str, ...] = ("--version",)

    @property
    def executable(self) -> str:
        """Return the executable looked up on ``PATH``."""
        return self.command or self.name


@dataclass(slots=True, frozen=True)
class ToolProbe:
    """Result recorded for one :class:`ToolSpec`."""

    name: str
    status: ToolStatus
    version: str | None = None
    detail: str = ""
    install_hint: str = ""


@dataclass(slots=True, frozen=True)
class ProbeReport:
    """Outcome for every required tool."""

    results: tuple[ToolProbe, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        """Return ``True`` when no tool is missing."""
        return not self.missing

    @property
    def missing(self) -> list[ToolProbe]:
        """Return every tool that could not be satisfied."""
        return [item for item in self.results if item.status is ToolStatus.MISSING_FATAL]

    @property
    def installed(self) -> list[ToolProbe]:
        """Return tools installed during the probe."""
        return [item for item in self.results if item.status is ToolStatus.INSTALLED]

    def summary(self) -> str:
        """Return a one-line summary naming unmet dependencies."""
        if self.ok:
            return f"All {len(self.results)} required tools available."
        names = ", ".join(item.name for item in self.missing)
        return f"Missing required tools: {names}."


def read_version(spec: ToolSpec) -> str | None:
    """Run the tool's version command and extract the first version number."""
    try:
        result = subprocess.run(  # noqa: S603
            [spec.executable, *spec.version_args],
            capture_output=True,
            text=True,
            check=False,
            timeout=15,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.debug("Unable to read version of %s: %s", spec.executable, exc)
        return None
    text = f"{result.stdout or ''}\n{result.stderr or ''}"
    match = _VERSION_PATTERN.search(text)
    return match.group(1) if match else None


def _satisfies(version: str | None, minimum: str | None) -> bool | None:
    """Return whether *version* meets *minimum*; ``None`` when undecidable."""
    if minimum is None:
        return True
    if version is None:
        return None
    try:
        return Version(version) >= Version(minimum)
    except InvalidVersion:
        return None


def _check(spec: ToolSpec, which: WhichFunc, version_reader: VersionReader) -> tuple[bool, str | None, str]:
    if which(spec.executable) is None:
        return False, None, f"`{spec.executable}` not found on PATH."
    version = version_reader(spec)
    verdict = _satisfies(version, spec.min_version)
    if verdict is False:
        return False, version, f"version {version} is older than required {spec.min_version}."
    if verdict is None:
        return True, version, f"version could not be determined (need >= {spec.min_version})."
    return True, version, ""


def probe_tool(
    spec: ToolSpec,
    *,
    which: WhichFunc = shutil.which,
    version_reader: VersionReader = read_version,
) -> ToolProbe:
    """Check one tool, installing it when a safe install action is declared."""
    available, version, detail = _check(spec, which, version_reader)
    if available:
        return ToolProbe(spec.name, ToolStatus.PRESENT, version, detail, spec.install_hint)
    if spec.install is None:
        return ToolProbe(spec.name, ToolStatus.MISSING_FATAL, version, detail, spec.install_hint)

    logger.info("Installing missing tool %s", spec.name)
    try:
        spec.install()
    except RuntimeError as exc:
        return ToolProbe(
            spec.name,
            ToolStatus.MISSING_FATAL,
            version,
            f"{detail} Install failed: {exc}",
            spec.install_hint,
        )
    available, version, recheck_detail = _check(spec, which, version_reader)
    if available:
        return ToolProbe(spec.name, ToolStatus.INSTALLED, version, recheck_detail, spec.install_hint)
    return ToolProbe(
        spec.name,
        ToolStatus.MISSING_FATAL,
        version,
        f"Still unavailable after install: {recheck_detail}",
        spec.install_hint,
    )


def probe(
    required: Iterable[ToolSpec],
    *,
    which: WhichFunc = shutil.which,
    version_reader: VersionReader = read_version,
) -> ProbeReport:
    """Probe every tool in *required* and return the complete report."""
    results = [
        probe_tool(spec, which=which, version_reader=version_reader) for spec in required
    ]
    return ProbeReport(results=tuple(results))


def deploy_tools(
    apt: AptProvider,
    npm: NpmProvider,
    *,
    include_proxy: bool = True,
    include_database: bool = True,
) -> list[ToolSpec]:
    """Return the tool set needed by a full provisioning run."""
    tools: list[ToolSpec] = [
        ToolSpec(
            "node",
            min_version="18.0",
            install_hint="Install Node.js LTS (e.g. `nvm install --lts`).",
        ),
        ToolSpec(
            "npm",
            install_hint="npm ships with Node.js; reinstall Node.js LTS.",
        ),
    ]
    if include_database:
        tools.append(
            ToolSpec(
                "psql",
                install_hint="sudo apt install postgresql postgresql-contrib",
                install=lambda: apt.install(["postgresql", "postgresql-contrib"]),
            )
        )
    if include_proxy:
        tools.append(
            ToolSpec(
                "nginx",
                version_args=("-v",),
                install_hint="sudo apt install nginx",
                install=lambda: apt.install(["nginx"]),
            )
        )
    tools.append(
        ToolSpec(
            "pm2",
            install_hint="npm install -g pm2",
            install=lambda: npm.install_global("pm2"),
        )
    )
    return tools


def update_tools(npm: NpmProvider) -> list[ToolSpec]:
    """Return the tool set needed by a code refresh."""
    return [
        ToolSpec("git", install_hint="sudo apt install git"),
        ToolSpec("npm", install_hint="Install Node.js LTS (e.g. `nvm install --lts`)."),
        ToolSpec(
            "pm2",
            install_hint="npm install -g pm2",
            install=lambda: npm.install_global("pm2"),
        ),
    ]


__all__ = [
    "ProbeReport",
    "ToolProbe",
    "ToolSpec",
    "ToolStatus",
    "deploy_tools",
    "probe",
    "probe_tool",
    "read_version",
    "update_tools",
]
