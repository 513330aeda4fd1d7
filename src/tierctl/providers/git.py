"""Git provider used by the update flow."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from ._command import run_command


class GitError(RuntimeError):
    """Raised when git commands fail."""


@dataclass(slots=True)
class GitProvider:
    """Refresh a working tree from its remote."""

    repo: Path
    git_bin: str = "git"

    def is_repository(self) -> bool:
        """Return ``True`` when :attr:`repo` is inside a git work tree."""
        result = self._run(["rev-parse", "--is-inside-work-tree"], check=False)
        return result.returncode == 0 and (result.stdout or "").strip() == "true"

    def current_branch(self) -> str:
        """Return the checked out branch name."""
        result = self._run(["rev-parse", "--abbrev-ref", "HEAD"])
        branch = (result.stdout or "").strip()
        if not branch or branch == "HEAD":
            raise GitError(f"{self.repo} is not on a branch (detached HEAD).")
        return branch

    def is_dirty(self) -> bool:
        """Return ``True`` when the work tree has uncommitted changes."""
        result = self._run(["status", "--porcelain"])
        return bool((result.stdout or "").strip())

    def stash(self, message: str) -> subprocess.CompletedProcess[str]:
        """Stash local changes under *message*."""
        return self._run(["stash", "push", "--include-untracked", "-m", message])

    def head(self) -> str:
        """Return the current commit hash."""
        return (self._run(["rev-parse", "HEAD"]).stdout or "").strip()

    def pull(self, remote: str, branch: str) -> subprocess.CompletedProcess[str]:
        """Pull *branch* from *remote*."""
        return self._run(["pull", remote, branch])

    def last_commit(self) -> str:
        """Return a one-line summary of the latest commit."""
        result = self._run(["log", "-1", "--pretty=format:%h - %s (%cr) <%an>"])
        return (result.stdout or "").strip()

    # ------------------------------------------------------------------
    def _run(self, args: Sequence[str], *, check: bool = True) -> subprocess.CompletedProcess[str]:
        return run_command(
            [self.git_bin, *args],
            error_cls=GitError,
            error_prefix=f"{self.git_bin} {args[0]}",
            cwd=self.repo,
            check=check,
        )


__all__ = ["GitError", "GitProvider"]
