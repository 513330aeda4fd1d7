"""npm provider for dependency installs and production builds."""
from __future__ import annotations

import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from ._command import run_command


class NpmError(RuntimeError):
    """Raised when npm commands fail."""


LOCKFILES = ("package-lock.json", "npm-shrinkwrap.json")


@dataclass(slots=True)
class NpmProvider:
    """Install and build Node.js projects with npm."""

    npm_bin: str = "npm"

    @staticmethod
    def has_lockfile(project_dir: Path) -> bool:
        """Return ``True`` when *project_dir* pins its dependency tree."""
        return any((project_dir / name).is_file() for name in LOCKFILES)

    def install(self, project_dir: Path, *, production: bool = False) -> list[str]:
        """Install dependencies reproducibly; return the command that ran.

        ``npm ci`` is used when a lockfile is present so the installed tree
        matches it exactly; otherwise ``npm install`` resolves one.
        """
        args = ["ci"] if self.has_lockfile(project_dir) else ["install"]
        if production:
            args.append("--omit=dev")
        self._run(args, cwd=project_dir)
        return [self.npm_bin, *args]

    def build(self, project_dir: Path) -> subprocess.CompletedProcess[str]:
        """Run the project's ``build`` script."""
        return self._run(["run", "build"], cwd=project_dir)

    def install_global(self, package: str) -> subprocess.CompletedProcess[str]:
        """Install *package* globally (used for pm2)."""
        return self._run(["install", "-g", package])

    @staticmethod
    def clean(project_dir: Path, *extra: str) -> list[Path]:
        """Remove ``node_modules`` and any *extra* directories; keep lockfiles."""
        removed: list[Path] = []
        for name in ("node_modules", *extra):
            target = project_dir / name
            if target.is_dir():
                shutil.rmtree(target)
                removed.append(target)
        return removed

    # ------------------------------------------------------------------
    def _run(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
    ) -> subprocess.CompletedProcess[str]:
        return run_command(
            [self.npm_bin, *args],
            error_cls=NpmError,
            error_prefix=f"{self.npm_bin} {' '.join(args)}",
            cwd=cwd,
        )


__all__ = ["LOCKFILES", "NpmError", "NpmProvider"]
