"""Debian/Ubuntu package provider."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field

from ._command import run_command


class AptError(RuntimeError):
    """Raised when apt or dpkg commands fail."""


@dataclass(slots=True)
class AptProvider:
    """Query and install system packages non-interactively."""

    command_prefix: Sequence[str] = field(default_factory=lambda: ("sudo",))
    apt_bin: str = "apt-get"
    dpkg_query_bin: str = "dpkg-query"
    _updated: bool = field(default=False, init=False)

    def is_installed(self, package: str) -> bool:
        """Return ``True`` when dpkg reports *package* as installed."""
        result = run_command(
            [self.dpkg_query_bin, "-W", "-f=${Status}", package],
            error_cls=AptError,
            check=False,
        )
        return result.returncode == 0 and "install ok installed" in (result.stdout or "")

    def missing(self, packages: Sequence[str]) -> list[str]:
        """Return the subset of *packages* that is not installed."""
        return [package for package in packages if not self.is_installed(package)]

    def install(self, packages: Sequence[str]) -> list[str]:
        """Install *packages*; the package index is refreshed once per provider."""
        if not packages:
            return []
        if not self._updated:
            self._run(["update", "-q"])
            self._updated = True
        self._run(["install", "-y", "-q", *packages])
        return list(packages)

    # ------------------------------------------------------------------
    def _run(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        return run_command(
            [*self.command_prefix, "env", "DEBIAN_FRONTEND=noninteractive", self.apt_bin, *args],
            error_cls=AptError,
            error_prefix=f"{self.apt_bin} {args[0]}",
        )


__all__ = ["AptError", "AptProvider"]
