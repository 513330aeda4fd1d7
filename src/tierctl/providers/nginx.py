"""Nginx provider for managing the application virtual host."""
from __future__ import annotations

import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from ..templates import TemplateEngine
from ._command import run_command


class NginxError(RuntimeError):
    """Raised when nginx operations fail."""


@dataclass(slots=True)
class NginxRenderResult:
    """Outcome of rendering an nginx site configuration."""

    changed: bool
    validation: subprocess.CompletedProcess[str] | None = None
    validation_error: str | None = None


@dataclass(slots=True)
class NginxProvider:
    """Render and manage the nginx site configuration for the application."""

    templates: TemplateEngine
    sites_available: Path = Path("/etc/nginx/sites-available")
    sites_enabled: Path = Path("/etc/nginx/sites-enabled")
    nginx_bin: str = "nginx"

    def site_path(self, site: str) -> Path:
        """Return the path to the nginx site configuration file."""
        return self.sites_available / site

    def enabled_path(self, site: str) -> Path:
        """Return the path of the symlink in sites-enabled for *site*."""
        return self.sites_enabled / site

    def render_site(
        self,
        site: str,
        context: Mapping[str, object],
        *,
        enable: bool = True,
    ) -> NginxRenderResult:
        """Render the nginx site configuration for *site*.

        When the on-disk configuration changes the site is enabled and the new
        configuration is validated with ``nginx -t``. Validation failures roll
        back to the previous configuration to keep nginx in a working state;
        the error is reported on the result rather than raised.
        """
        template_name = "nginx/site.conf.j2"
        destination = self.site_path(site)
        destination.parent.mkdir(parents=True, exist_ok=True)

        previous: tuple[str, int] | None = None
        if destination.exists():
            previous = (
                destination.read_text(encoding="utf-8"),
                destination.stat().st_mode,
            )
        was_enabled = self.is_enabled(site)

        changed = self.templates.render_to_path(
            template_name,
            destination,
            context,
            mode=0o644,
        )
        if enable:
            self.enable(site)
        if not changed:
            return NginxRenderResult(changed=False)

        try:
            validation_result = self.test_config()
        except NginxError as exc:
            if previous is None:
                destination.unlink(missing_ok=True)
            else:
                content, mode = previous
                destination.write_text(content, encoding="utf-8")
                destination.chmod(mode)
            if not was_enabled:
                self.disable(site)
            return NginxRenderResult(changed=False, validation_error=str(exc))

        return NginxRenderResult(
            changed=True,
            validation=validation_result,
        )

    def enable(self, site: str) -> bool:
        """Enable the site by creating a symlink in sites-enabled."""
        source = self.site_path(site)
        target = self.enabled_path(site)
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.exists() or target.is_symlink():
            try:
                if target.resolve() == source.resolve():
                    return False
            except FileNotFoundError:
                # Broken symlink; replace it with a fresh one.
                pass
            target.unlink()
        target.symlink_to(source)
        return True

    def disable(self, site: str) -> bool:
        """Disable the site by removing the symlink."""
        target = self.enabled_path(site)
        try:
            target.unlink()
        except FileNotFoundError:
            return False
        return True

    def disable_default_site(self) -> bool:
        """Remove the distribution's ``default`` site from sites-enabled."""
        return self.disable("default")

    def default_site_enabled(self) -> bool:
        """Return True when the distribution's default site is still enabled."""
        target = self.enabled_path("default")
        return target.exists() or target.is_symlink()

    def is_enabled(self, site: str) -> bool:
        """Return True when the site is enabled via sites-enabled symlink."""
        target = self.enabled_path(site)
        if not target.exists() and not target.is_symlink():
            return False
        try:
            return target.is_symlink() and target.resolve() == self.site_path(site).resolve()
        except FileNotFoundError:
            return False

    def test_config(self) -> subprocess.CompletedProcess[str]:
        """Run ``nginx -t`` to validate the configuration."""
        return self._run_nginx(["-t"])

    # ------------------------------------------------------------------
    def _run_nginx(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        return run_command(
            [self.nginx_bin, *args],
            error_cls=NginxError,
            error_prefix=f"{self.nginx_bin} {' '.join(args)}",
        )


__all__ = ["NginxError", "NginxProvider", "NginxRenderResult"]
