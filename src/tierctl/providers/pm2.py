"""PM2 process supervisor provider."""
from __future__ import annotations

import json
import logging
import os
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from ._command import run_command

logger = logging.getLogger(__name__)


class Pm2Error(RuntimeError):
    """Raised when pm2 commands fail."""


@dataclass(slots=True, frozen=True)
class Pm2Process:
    """Subset of ``pm2 jlist`` fields for one process."""

    name: str
    status: str
    pid: int | None = None
    restarts: int = 0

    @property
    def online(self) -> bool:
        """Return ``True`` when pm2 reports the process as running."""
        return self.status == "online"


@dataclass(slots=True)
class Pm2Provider:
    """Register, restart and persist the backend process under pm2."""

    pm2_bin: str = "pm2"

    def list_processes(self) -> list[Pm2Process]:
        """Return the processes known to pm2."""
        result = self._run(["jlist"])
        text = (result.stdout or "").strip()
        if not text:
            return []
        # pm2 may print banner lines before the JSON document.
        start = text.find("[")
        try:
            payload = json.loads(text[start:] if start >= 0 else text)
        except json.JSONDecodeError as exc:
            raise Pm2Error(f"Unable to parse `pm2 jlist` output: {exc}") from exc
        processes: list[Pm2Process] = []
        for entry in payload if isinstance(payload, list) else []:
            if not isinstance(entry, Mapping):
                continue
            env = entry.get("pm2_env") or {}
            processes.append(
                Pm2Process(
                    name=str(entry.get("name", "")),
                    status=str(env.get("status", "unknown")) if isinstance(env, Mapping) else "unknown",
                    pid=entry.get("pid") or None,
                    restarts=int(env.get("restart_time", 0) or 0) if isinstance(env, Mapping) else 0,
                )
            )
        return processes

    def describe(self, name: str) -> Pm2Process | None:
        """Return the process registered as *name*, if any."""
        for process in self.list_processes():
            if process.name == name:
                return process
        return None

    def start(
        self,
        script: Path,
        name: str,
        *,
        cwd: Path | None = None,
        env_name: str = "production",
    ) -> subprocess.CompletedProcess[str]:
        """Start *script* under pm2 as *name*."""
        return self._run(
            ["start", str(script), "--name", name, "--env", env_name],
            cwd=cwd,
        )

    def restart(self, name: str, *, update_env: bool = True) -> subprocess.CompletedProcess[str]:
        """Restart the process registered as *name*."""
        args = ["restart", name]
        if update_env:
            args.append("--update-env")
        return self._run(args)

    def save(self) -> subprocess.CompletedProcess[str]:
        """Persist the current process list so it survives supervisor restarts."""
        return self._run(["save"])

    def startup(self, user: str, home: Path) -> list[str]:
        """Register pm2 with systemd for *user*.

        ``pm2 startup`` run without root prints the ``sudo env ...`` command it
        needs instead of performing the registration; that command is executed
        when present. Returns the commands that were run.
        """
        args = ["startup", "systemd", "-u", user, "--hp", str(home)]
        result = self._run(args, check=False)
        executed = [" ".join([self.pm2_bin, *args])]
        follow_up = _startup_follow_up(result.stdout or "")
        if follow_up is not None:
            logger.debug("Running pm2 startup follow-up command: %s", follow_up)
            run_command(follow_up, error_cls=Pm2Error, error_prefix="pm2 startup")
            executed.append(" ".join(follow_up))
        elif result.returncode != 0:
            raise Pm2Error(
                f"pm2 startup failed (exit {result.returncode}): "
                f"{(result.stderr or result.stdout or 'no output').strip()}"
            )
        return executed

    @staticmethod
    def unit_name(user: str) -> str:
        """Return the systemd unit pm2 installs for *user*."""
        return f"pm2-{user}"

    # ------------------------------------------------------------------
    def _run(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        return run_command(
            [self.pm2_bin, *args],
            error_cls=Pm2Error,
            error_prefix=f"{self.pm2_bin} {args[0]}",
            cwd=cwd,
            check=check,
        )


def _startup_follow_up(output: str) -> list[str] | None:
    for line in output.splitlines():
        text = line.strip()
        if text.startswith("sudo env "):
            return [os.path.expandvars(part) for part in text.split()]
    return None


__all__ = ["Pm2Error", "Pm2Process", "Pm2Provider"]
