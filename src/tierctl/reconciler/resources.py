"""Managed resource types.

Each resource pairs ``probe()`` (observe the current spec, ``None`` when
absent) with ``apply()`` (mutate towards the desired spec). Specs never carry
secrets: passwords and rendered files are represented by match flags and
digests.
"""
from __future__ import annotations

import hashlib
import re
import shutil
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, ClassVar

from ..models import ManagedResource, ResourceKind
from ..providers.apt import AptProvider
from ..providers.nginx import NginxError, NginxProvider
from ..providers.pm2 import Pm2Provider
from ..providers.postgres import PostgresProvider, password_matches
from ..providers.systemd import SystemdProvider
from ..templates import TemplateEngine, write_if_changed

Spec = Mapping[str, Any]
HBA_MARKER = "# IPv4 local connections:"


def _digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def resource_key(kind: ResourceKind, name: str) -> str:
    """Return the identifier used to declare dependencies on a resource."""
    return f"{kind.value}:{name}"


class Resource(ABC):
    """Probe/apply capability pair for one external resource."""

    kind: ClassVar[ResourceKind]
    name: str
    requires: tuple[str, ...]

    @property
    def key(self) -> str:
        """Return ``<kind>:<name>``."""
        return resource_key(self.kind, self.name)

    @abstractmethod
    def desired_spec(self) -> Spec:
        """Return the state this resource should converge to."""

    @abstractmethod
    def probe(self) -> Spec | None:
        """Return the observed state, or ``None`` when the resource is absent."""

    @abstractmethod
    def apply(self, current: Spec | None) -> str:
        """Mutate the resource towards :meth:`desired_spec`; return a detail line."""

    def observe(self) -> ManagedResource:
        """Probe the resource and pair the result with its desired spec."""
        current = self.probe()
        return ManagedResource(
            kind=self.kind,
            name=self.name,
            desired_spec=self.desired_spec(),
            current_spec=current,
            exists=current is not None,
        )

    def matches(self, current: Spec | None) -> bool:
        """Return ``True`` when *current* already satisfies the desired spec."""
        if current is None:
            return False
        return all(current.get(key) == value for key, value in self.desired_spec().items())

    def describe_unchanged(self) -> str:
        """Return the detail recorded when nothing had to change."""
        return "already in desired state"


@dataclass(slots=True)
class PackageResource(Resource):
    """System packages, optionally backing a service that must be running."""

    kind: ClassVar[ResourceKind] = ResourceKind.PACKAGE

    name: str
    apt: AptProvider
    packages: tuple[str, ...]
    service: str | None = None
    systemd: SystemdProvider | None = None
    requires: tuple[str, ...] = ()

    def desired_spec(self) -> Spec:
        spec: dict[str, Any] = {"installed": list(self.packages)}
        if self.service:
            spec["service_active"] = True
        return spec

    def probe(self) -> Spec | None:
        missing = set(self.apt.missing(self.packages))
        installed = [package for package in self.packages if package not in missing]
        if not installed:
            return None
        spec: dict[str, Any] = {"installed": installed}
        if self.service:
            spec["service_active"] = self._systemd().is_active(self.service)
        return spec

    def apply(self, current: Spec | None) -> str:
        already = set(current.get("installed", [])) if current else set()
        to_install = [package for package in self.packages if package not in already]
        notes: list[str] = []
        if to_install:
            self.apt.install(to_install)
            notes.append(f"installed {' '.join(to_install)}")
        if self.service and self._systemd().ensure_running(self.service):
            notes.append(f"started {self.service}")
        return "; ".join(notes) or "packages verified"

    def _systemd(self) -> SystemdProvider:
        if self.systemd is None:
            self.systemd = SystemdProvider()
        return self.systemd


@dataclass(slots=True)
class DatabaseResource(Resource):
    """The application database."""

    kind: ClassVar[ResourceKind] = ResourceKind.DATABASE

    name: str
    postgres: PostgresProvider
    requires: tuple[str, ...] = ()

    def desired_spec(self) -> Spec:
        return {"name": self.name}

    def probe(self) -> Spec | None:
        return {"name": self.name} if self.postgres.database_exists(self.name) else None

    def apply(self, current: Spec | None) -> str:
        self.postgres.create_database(self.name)
        return f"created database {self.name}"


@dataclass(slots=True)
class RoleResource(Resource):
    """The application login role and its password."""

    kind: ClassVar[ResourceKind] = ResourceKind.ROLE

    name: str
    postgres: PostgresProvider
    password: str | None = field(default=None, repr=False)
    requires: tuple[str, ...] = ()

    def desired_spec(self) -> Spec:
        spec: dict[str, Any] = {"login": True}
        if self.password:
            spec["password_current"] = True
        return spec

    def probe(self) -> Spec | None:
        if not self.postgres.role_exists(self.name):
            return None
        spec: dict[str, Any] = {"login": True}
        if self.password:
            verifier = self.postgres.role_verifier(self.name)
            spec["password_current"] = password_matches(verifier, self.name, self.password)
        return spec

    def apply(self, current: Spec | None) -> str:
        if current is None:
            self.postgres.create_role(self.name, self.password)
            return f"created role {self.name}"
        self.postgres.set_role_password(self.name, self.password or "")
        return f"updated password for role {self.name}"


@dataclass(slots=True)
class GrantResource(Resource):
    """Database, schema and default-table privileges for the application role."""

    kind: ClassVar[ResourceKind] = ResourceKind.GRANT

    name: str
    postgres: PostgresProvider
    database: str
    user: str
    requires: tuple[str, ...] = ()

    def desired_spec(self) -> Spec:
        return {"missing": []}

    def probe(self) -> Spec | None:
        missing = self.postgres.missing_grants(self.database, self.user)
        if len(missing) == len(self.postgres.grant_statements(self.database, self.user)):
            return None
        return {"missing": missing}

    def apply(self, current: Spec | None) -> str:
        statements = None if current is None else list(current.get("missing", []))
        self.postgres.grant(self.database, self.user, statements)
        if statements is None:
            statements = [sql for _, sql in self.postgres.grant_statements(self.database, self.user)]
        count = len(statements)
        return f"granted {count} privilege set(s) to {self.user} on {self.database}"


@dataclass(slots=True)
class AuthRuleResource(Resource):
    """Password authentication rule in ``pg_hba.conf`` for local TCP clients."""

    kind: ClassVar[ResourceKind] = ResourceKind.AUTH_RULE

    name: str
    postgres: PostgresProvider
    database: str
    user: str
    address: str = "127.0.0.1/32"
    method: str = "md5"
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(tz=UTC))
    requires: tuple[str, ...] = ()

    @property
    def rule(self) -> str:
        """Return the configuration line this resource manages."""
        return f"host    {self.database}    {self.user}    {self.address}    {self.method}"

    def desired_spec(self) -> Spec:
        return {"rule": self.rule}

    def probe(self) -> Spec | None:
        text = self.postgres.hba_file().read_text(encoding="utf-8")
        pattern = re.compile(
            rf"^host\s+{re.escape(self.database)}\s+{re.escape(self.user)}\s+"
            rf"{re.escape(self.address)}\s+{re.escape(self.method)}\s*$",
            re.MULTILINE,
        )
        return {"rule": self.rule} if pattern.search(text) else None

    def apply(self, current: Spec | None) -> str:
        path = self.postgres.hba_file()
        text = path.read_text(encoding="utf-8")
        stamp = self.clock().strftime("%Y%m%d_%H%M%S")
        backup = path.with_name(f"{path.name}.backup_{stamp}")
        shutil.copy2(path, backup)

        lines = text.splitlines()
        for index, line in enumerate(lines):
            if line.startswith(HBA_MARKER):
                lines.insert(index + 1, self.rule)
                break
        else:
            lines.append(self.rule)
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        self.postgres.reload_config()
        return f"added rule to {path} (previous copy at {backup})"


@dataclass(slots=True)
class EnvFileResource(Resource):
    """Backend environment file rendered from a template with owner-only access."""

    kind: ClassVar[ResourceKind] = ResourceKind.ENV_FILE

    name: str
    path: Path
    templates: TemplateEngine
    context: Mapping[str, object] = field(repr=False)
    template_name: str = "backend/env.j2"
    mode: int = 0o600
    requires: tuple[str, ...] = ()

    def _rendered(self) -> str:
        return self.templates.render_to_string(self.template_name, self.context)

    def desired_spec(self) -> Spec:
        return {"sha256": _digest(self._rendered()), "mode": f"{self.mode:04o}"}

    def probe(self) -> Spec | None:
        if not self.path.is_file():
            return None
        return {
            "sha256": _digest(self.path.read_text(encoding="utf-8")),
            "mode": f"{self.path.stat().st_mode & 0o777:04o}",
        }

    def apply(self, current: Spec | None) -> str:
        write_if_changed(self.path, self._rendered(), mode=self.mode)
        return f"wrote {self.path} ({self.mode:04o})"


@dataclass(slots=True)
class VhostResource(Resource):
    """Reverse proxy site serving the frontend and forwarding the API."""

    kind: ClassVar[ResourceKind] = ResourceKind.VHOST

    name: str
    nginx: NginxProvider
    context: Mapping[str, object]
    remove_default_site: bool = True
    requires: tuple[str, ...] = ()

    def desired_spec(self) -> Spec:
        rendered = self.nginx.templates.render_to_string("nginx/site.conf.j2", self.context)
        spec: dict[str, Any] = {"sha256": _digest(rendered), "enabled": True}
        if self.remove_default_site:
            spec["default_site_enabled"] = False
        return spec

    def probe(self) -> Spec | None:
        path = self.nginx.site_path(self.name)
        if not path.is_file():
            return None
        spec: dict[str, Any] = {
            "sha256": _digest(path.read_text(encoding="utf-8")),
            "enabled": self.nginx.is_enabled(self.name),
        }
        if self.remove_default_site:
            spec["default_site_enabled"] = self.nginx.default_site_enabled()
        return spec

    def apply(self, current: Spec | None) -> str:
        result = self.nginx.render_site(self.name, self.context, enable=True)
        if result.validation_error:
            raise NginxError(
                f"Generated site failed validation and was rolled back: {result.validation_error}"
            )
        notes = [f"rendered {self.nginx.site_path(self.name)}" if result.changed else "site enabled"]
        if self.remove_default_site and self.nginx.disable_default_site():
            notes.append("disabled default site")
        return "; ".join(notes)


@dataclass(slots=True)
class ProcessResource(Resource):
    """Backend process registered and online under pm2."""

    kind: ClassVar[ResourceKind] = ResourceKind.PROCESS

    name: str
    pm2: Pm2Provider
    script: Path
    cwd: Path
    env_name: str = "production"
    requires: tuple[str, ...] = ()

    def desired_spec(self) -> Spec:
        return {"registered": True, "online": True}

    def probe(self) -> Spec | None:
        process = self.pm2.describe(self.name)
        if process is None:
            return None
        return {"registered": True, "online": process.online}

    def apply(self, current: Spec | None) -> str:
        if current is None:
            self.pm2.start(self.script, self.name, cwd=self.cwd, env_name=self.env_name)
            return f"started {self.name} under pm2"
        self.pm2.restart(self.name)
        return f"restarted {self.name} (was {'online' if current.get('online') else 'offline'})"


__all__ = [
    "AuthRuleResource",
    "DatabaseResource",
    "EnvFileResource",
    "GrantResource",
    "PackageResource",
    "ProcessResource",
    "Resource",
    "RoleResource",
    "VhostResource",
    "resource_key",
]
