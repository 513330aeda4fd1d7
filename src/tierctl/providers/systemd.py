"""Systemd provider for the host services the application depends on."""
from __future__ import annotations

import subprocess
from dataclasses import dataclass

from ._command import run_command


class SystemdError(RuntimeError):
    """Raised when systemd operations fail."""


@dataclass(slots=True)
class SystemdProvider:
    """Query and control system services (postgresql, nginx, pm2 startup units)."""

    systemctl_bin: str = "systemctl"

    def is_active(self, unit: str) -> bool:
        """Return ``True`` when *unit* is active."""
        result = self._systemctl("is-active", "--quiet", unit, check=False)
        return result.returncode == 0

    def is_enabled(self, unit: str) -> bool:
        """Return ``True`` when *unit* is enabled for boot."""
        result = self._systemctl("is-enabled", "--quiet", unit, check=False)
        return result.returncode == 0

    def start(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Start *unit*."""
        return self._systemctl("start", unit)

    def restart(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Restart *unit*."""
        return self._systemctl("restart", unit)

    def enable(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Enable *unit* at boot."""
        return self._systemctl("enable", unit)

    def ensure_running(self, unit: str) -> bool:
        """Start and enable *unit* when it is not active; return ``True`` if started."""
        if self.is_active(unit):
            return False
        self.start(unit)
        self.enable(unit)
        if not self.is_active(unit):
            raise SystemdError(f"{unit} did not become active after start.")
        return True

    # ------------------------------------------------------------------
    def _systemctl(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        return run_command(
            [self.systemctl_bin, *args],
            error_cls=SystemdError,
            error_prefix=f"{self.systemctl_bin} {' '.join(args)}",
            check=check,
        )


__all__ = ["SystemdError", "SystemdProvider"]
