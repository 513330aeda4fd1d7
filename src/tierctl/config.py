"""Configuration loader for tierctl.

This module centralises the logic for reading configuration values from
multiple sources:

1. Built-in defaults.
2. ``/etc/tierctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``TIERCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export TIERCTL_DATABASE__NAME=bmidb
    export TIERCTL_BACKUPS__RETAIN=3

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` for convenient access and type safety.
"""
from __future__ import annotations

import getpass
import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast
from urllib.parse import quote

import yaml


ENV_PREFIX = "TIERCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class ProjectConfig:
    """Location of the application checkout and its git remote."""

    root: Path
    backend_dir: Path
    frontend_dir: Path
    git_remote: str = "origin"
    git_branch: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "root": str(self.root),
            "backend_dir": str(self.backend_dir),
            "frontend_dir": str(self.frontend_dir),
            "git_remote": self.git_remote,
            "git_branch": self.git_branch,
        }


@dataclass(frozen=True)
class DatabaseConfig:
    """PostgreSQL connection and administration settings."""

    name: str = "bmidb"
    user: str = "bmi_user"
    password: str | None = None
    host: str = "localhost"
    port: int = 5432
    admin_command: tuple[str, ...] = ("sudo", "-u", "postgres")
    psql_bin: str = "psql"
    pg_dump_bin: str = "pg_dump"
    migrations_dir: str = "migrations"

    @property
    def url(self) -> str:
        """Return the application connection string."""
        user = quote(self.user, safe="")
        password = quote(self.password or "", safe="")
        return f"postgresql://{user}:{password}@{self.host}:{self.port}/{self.name}"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation (the password is redacted)."""
        return {
            "name": self.name,
            "user": self.user,
            "password": "***" if self.password else None,
            "host": self.host,
            "port": self.port,
            "admin_command": list(self.admin_command),
            "psql_bin": self.psql_bin,
            "pg_dump_bin": self.pg_dump_bin,
            "migrations_dir": self.migrations_dir,
        }


@dataclass(frozen=True)
class BackendConfig:
    """Backend process settings."""

    process_name: str = "bmi-backend"
    entry: str = "src/server.js"
    port: int = 3000
    node_env: str = "production"
    cors_origin: str = "*"
    health_path: str = "/api/measurements"
    env_file: str = ".env"

    @property
    def health_url(self) -> str:
        """Return the liveness URL of the backend process."""
        path = self.health_path if self.health_path.startswith("/") else f"/{self.health_path}"
        return f"http://localhost:{self.port}{path}"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "process_name": self.process_name,
            "entry": self.entry,
            "port": self.port,
            "node_env": self.node_env,
            "cors_origin": self.cors_origin,
            "health_path": self.health_path,
            "env_file": self.env_file,
        }


@dataclass(frozen=True)
class FrontendConfig:
    """Frontend build output and serving location."""

    web_root: Path = Path("/var/www/bmi-health-tracker")
    build_dir: str = "dist"
    entry_file: str = "index.html"
    owner: str = "www-data"
    group: str = "www-data"
    mode: int = 0o755

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "web_root": str(self.web_root),
            "build_dir": self.build_dir,
            "entry_file": self.entry_file,
            "owner": self.owner,
            "group": self.group,
            "mode": f"{self.mode:04o}",
        }


@dataclass(frozen=True)
class NginxConfig:
    """Reverse proxy virtual host settings."""

    site_name: str = "bmi-health-tracker"
    sites_available: Path = Path("/etc/nginx/sites-available")
    sites_enabled: Path = Path("/etc/nginx/sites-enabled")
    nginx_bin: str = "nginx"
    server_name: str | None = None
    remove_default_site: bool = True
    access_log: str = "/var/log/nginx/bmi-access.log"
    error_log: str = "/var/log/nginx/bmi-error.log"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "site_name": self.site_name,
            "sites_available": str(self.sites_available),
            "sites_enabled": str(self.sites_enabled),
            "nginx_bin": self.nginx_bin,
            "server_name": self.server_name,
            "remove_default_site": self.remove_default_site,
            "access_log": self.access_log,
            "error_log": self.error_log,
        }


@dataclass(frozen=True)
class Pm2Config:
    """Process supervisor settings."""

    pm2_bin: str = "pm2"
    startup_user: str = "root"
    startup_home: Path = Path("/root")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "pm2_bin": self.pm2_bin,
            "startup_user": self.startup_user,
            "startup_home": str(self.startup_home),
        }


@dataclass(frozen=True)
class BackupConfig:
    """Snapshot storage and retention defaults."""

    root: Path
    retain: int = 5
    prefix: str = "deployment"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"root": str(self.root), "retain": self.retain, "prefix": self.prefix}


@dataclass(frozen=True)
class HealthConfig:
    """Health verification timing and targets."""

    settle_seconds: float = 3.0
    connect_timeout: float = 2.0
    request_timeout: float = 5.0
    proxy_url: str = "http://localhost/"
    load_requests: int = 0
    load_concurrency: int = 4

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "settle_seconds": self.settle_seconds,
            "connect_timeout": self.connect_timeout,
            "request_timeout": self.request_timeout,
            "proxy_url": self.proxy_url,
            "load_requests": self.load_requests,
            "load_concurrency": self.load_concurrency,
        }


@dataclass(frozen=True)
class MetadataConfig:
    """Instance metadata endpoint used for public address discovery."""

    endpoint: str = "http://169.254.169.254"
    timeout: float = 2.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"endpoint": self.endpoint, "timeout": self.timeout}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for tierctl."""

    config_file: Path
    logs_dir: Path
    templates_dir: Path
    project: ProjectConfig
    database: DatabaseConfig
    backend: BackendConfig
    frontend: FrontendConfig
    nginx: NginxConfig
    pm2: Pm2Config
    backups: BackupConfig
    health: HealthConfig
    metadata: MetadataConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "logs_dir": str(self.logs_dir),
            "templates_dir": str(self.templates_dir),
            "project": self.project.to_dict(),
            "database": self.database.to_dict(),
            "backend": self.backend.to_dict(),
            "frontend": self.frontend.to_dict(),
            "nginx": self.nginx.to_dict(),
            "pm2": self.pm2.to_dict(),
            "backups": self.backups.to_dict(),
            "health": self.health.to_dict(),
            "metadata": self.metadata.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/tierctl/config.yml",
    "logs_dir": "/var/log/tierctl",
    "templates_dir": "/etc/tierctl/templates",
    "project": {
        "root": ".",
        "backend_dir": None,  # derived from project.root when absent
        "frontend_dir": None,
        "git_remote": "origin",
        "git_branch": None,
    },
    "database": {
        "name": "bmidb",
        "user": "bmi_user",
        "password": None,
        "host": "localhost",
        "port": 5432,
        "admin_command": ["sudo", "-u", "postgres"],
        "psql_bin": "psql",
        "pg_dump_bin": "pg_dump",
        "migrations_dir": "migrations",
    },
    "backend": {
        "process_name": "bmi-backend",
        "entry": "src/server.js",
        "port": 3000,
        "node_env": "production",
        "cors_origin": "*",
        "health_path": "/api/measurements",
        "env_file": ".env",
    },
    "frontend": {
        "web_root": "/var/www/bmi-health-tracker",
        "build_dir": "dist",
        "entry_file": "index.html",
        "owner": "www-data",
        "group": "www-data",
        "mode": "0755",
    },
    "nginx": {
        "site_name": "bmi-health-tracker",
        "sites_available": "/etc/nginx/sites-available",
        "sites_enabled": "/etc/nginx/sites-enabled",
        "nginx_bin": "nginx",
        "server_name": None,
        "remove_default_site": True,
        "access_log": "/var/log/nginx/bmi-access.log",
        "error_log": "/var/log/nginx/bmi-error.log",
    },
    "pm2": {
        "pm2_bin": "pm2",
        "startup_user": None,  # derived from the invoking user when absent
        "startup_home": None,
    },
    "backups": {
        "root": "~/bmi_deployments_backup",
        "retain": 5,
        "prefix": "deployment",
    },
    "health": {
        "settle_seconds": 3.0,
        "connect_timeout": 2.0,
        "request_timeout": 5.0,
        "proxy_url": "http://localhost/",
        "load_requests": 0,
        "load_concurrency": 4,
    },
    "metadata": {
        "endpoint": "http://169.254.169.254",
        "timeout": 2.0,
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_SECTION_KEYS: dict[str, set[str]] = {
    key: set(cast(Mapping[str, object], value).keys())
    for key, value in DEFAULTS.items()
    if isinstance(value, Mapping)
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in ALLOWED_SECTION_KEYS.items():
        value = raw.get(section)
        if value is None:
            continue
        mapping = _as_dict(value, section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    backups = _as_dict(raw.get("backups"), "backups")
    retain = backups.get("retain")
    if retain is not None and _expect_int(retain, "backups.retain", default=5) < 1:
        raise ConfigError("backups.retain must be at least 1.")

    health = _as_dict(raw.get("health"), "health")
    load_requests = health.get("load_requests")
    if load_requests is not None:
        if _expect_int(load_requests, "health.load_requests", default=0) < 0:
            raise ConfigError("health.load_requests must be non-negative.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    logs_dir = _to_path(raw.get("logs_dir"))
    templates_dir = _to_path(raw.get("templates_dir"))

    project_map = _as_dict(raw.get("project"), "project")
    project_root = _to_path(project_map.get("root", ".")).resolve()
    backend_value = project_map.get("backend_dir")
    frontend_value = project_map.get("frontend_dir")
    branch_value = project_map.get("git_branch")
    project = ProjectConfig(
        root=project_root,
        backend_dir=_to_path(backend_value) if backend_value else project_root / "backend",
        frontend_dir=_to_path(frontend_value) if frontend_value else project_root / "frontend",
        git_remote=str(project_map.get("git_remote", "origin")),
        git_branch=str(branch_value) if branch_value else None,
    )

    db_map = _as_dict(raw.get("database"), "database")
    password_value = db_map.get("password")
    database = DatabaseConfig(
        name=_expect_identifier(db_map.get("name", "bmidb"), "database.name"),
        user=_expect_identifier(db_map.get("user", "bmi_user"), "database.user"),
        password=str(password_value) if password_value not in (None, "") else None,
        host=str(db_map.get("host", "localhost")),
        port=_expect_int(db_map.get("port"), "database.port", default=5432),
        admin_command=tuple(
            str(part)
            for part in _as_sequence(
                db_map.get("admin_command", ["sudo", "-u", "postgres"]),
                "database.admin_command",
            )
        ),
        psql_bin=str(db_map.get("psql_bin", "psql")),
        pg_dump_bin=str(db_map.get("pg_dump_bin", "pg_dump")),
        migrations_dir=str(db_map.get("migrations_dir", "migrations")),
    )

    backend_map = _as_dict(raw.get("backend"), "backend")
    backend = BackendConfig(
        process_name=str(backend_map.get("process_name", "bmi-backend")),
        entry=str(backend_map.get("entry", "src/server.js")),
        port=_expect_int(backend_map.get("port"), "backend.port", default=3000),
        node_env=str(backend_map.get("node_env", "production")),
        cors_origin=str(backend_map.get("cors_origin", "*")),
        health_path=str(backend_map.get("health_path", "/api/measurements")),
        env_file=str(backend_map.get("env_file", ".env")),
    )

    frontend_map = _as_dict(raw.get("frontend"), "frontend")
    frontend = FrontendConfig(
        web_root=_to_path(frontend_map.get("web_root", "/var/www/bmi-health-tracker")),
        build_dir=str(frontend_map.get("build_dir", "dist")),
        entry_file=str(frontend_map.get("entry_file", "index.html")),
        owner=str(frontend_map.get("owner", "www-data")),
        group=str(frontend_map.get("group", "www-data")),
        mode=_parse_permission_mode(frontend_map.get("mode", "0755"), "frontend.mode"),
    )

    nginx_map = _as_dict(raw.get("nginx"), "nginx")
    server_name_value = nginx_map.get("server_name")
    nginx = NginxConfig(
        site_name=str(nginx_map.get("site_name", "bmi-health-tracker")),
        sites_available=_to_path(nginx_map.get("sites_available", "/etc/nginx/sites-available")),
        sites_enabled=_to_path(nginx_map.get("sites_enabled", "/etc/nginx/sites-enabled")),
        nginx_bin=str(nginx_map.get("nginx_bin", "nginx")),
        server_name=str(server_name_value).strip() or None if server_name_value else None,
        remove_default_site=bool(nginx_map.get("remove_default_site", True)),
        access_log=str(nginx_map.get("access_log", "/var/log/nginx/bmi-access.log")),
        error_log=str(nginx_map.get("error_log", "/var/log/nginx/bmi-error.log")),
    )

    pm2_map = _as_dict(raw.get("pm2"), "pm2")
    startup_user_value = pm2_map.get("startup_user")
    startup_user = str(startup_user_value) if startup_user_value else getpass.getuser()
    startup_home_value = pm2_map.get("startup_home")
    pm2 = Pm2Config(
        pm2_bin=str(pm2_map.get("pm2_bin", "pm2")),
        startup_user=startup_user,
        startup_home=(
            _to_path(startup_home_value)
            if startup_home_value
            else Path(f"~{startup_user}").expanduser()
        ),
    )

    backups_map = _as_dict(raw.get("backups"), "backups")
    backups = BackupConfig(
        root=_to_path(backups_map.get("root", "~/bmi_deployments_backup")),
        retain=_expect_int(backups_map.get("retain"), "backups.retain", default=5),
        prefix=str(backups_map.get("prefix", "deployment")),
    )

    health_map = _as_dict(raw.get("health"), "health")
    health = HealthConfig(
        settle_seconds=_expect_non_negative_float(
            health_map.get("settle_seconds"), "health.settle_seconds", default=3.0
        ),
        connect_timeout=_expect_positive_float(
            health_map.get("connect_timeout"), "health.connect_timeout", default=2.0
        ),
        request_timeout=_expect_positive_float(
            health_map.get("request_timeout"), "health.request_timeout", default=5.0
        ),
        proxy_url=str(health_map.get("proxy_url", "http://localhost/")),
        load_requests=_expect_int(
            health_map.get("load_requests"), "health.load_requests", default=0
        ),
        load_concurrency=max(
            1,
            _expect_int(health_map.get("load_concurrency"), "health.load_concurrency", default=4),
        ),
    )

    metadata_map = _as_dict(raw.get("metadata"), "metadata")
    metadata = MetadataConfig(
        endpoint=str(metadata_map.get("endpoint", "http://169.254.169.254")).rstrip("/"),
        timeout=_expect_positive_float(
            metadata_map.get("timeout"), "metadata.timeout", default=2.0
        ),
    )

    return AppConfig(
        config_file=config_file,
        logs_dir=logs_dir,
        templates_dir=templates_dir,
        project=project,
        database=database,
        backend=backend,
        frontend=frontend,
        nginx=nginx,
        pm2=pm2,
        backups=backups,
        health=health,
        metadata=metadata,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        # Passwords are taken verbatim; YAML coercion would turn "0123" into 123.
        if path_segments == ["database", "password"]:
            _assign_nested(overrides, path_segments, value)
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _parse_permission_mode(value: object, label: str) -> int:
    if value is None:
        raise ConfigError(f"{label} must be specified.")
    if isinstance(value, bool):
        raise ConfigError(f"{label} must be an octal integer string. Got boolean {value!r}.")
    if isinstance(value, int):
        mode = value
    elif isinstance(value, str):
        text = value.strip().lower()
        if not text:
            raise ConfigError(f"{label} must be an octal integer string.")
        if text.startswith("0o"):
            text = text[2:]
        try:
            mode = int(text, 8)
        except ValueError as exc:
            raise ConfigError(f"{label} must be an octal integer string.") from exc
    else:
        raise ConfigError(f"{label} must be an octal integer or string.")
    if mode < 0 or mode > 0o777:
        raise ConfigError(f"{label} must be between 0000 and 0777 inclusive.")
    return mode


def _expect_identifier(value: object, label: str) -> str:
    """Return *value* when it is a safe unquoted SQL identifier."""
    text = str(value).strip() if value is not None else ""
    if not text:
        raise ConfigError(f"{label} must be a non-empty string.")
    if not (text[0].isalpha() or text[0] == "_") or not all(
        char.isalnum() or char == "_" for char in text
    ):
        raise ConfigError(
            f"{label} must contain only letters, digits and underscores. Got {text!r}."
        )
    return text


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_number(value: object, label: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be numeric. Got {type(value).__name__}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    numeric = _expect_number(value, label)
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _expect_non_negative_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    numeric = _expect_number(value, label)
    if numeric < 0:
        raise ConfigError(f"{label} must be non-negative. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "BackendConfig",
    "BackupConfig",
    "ConfigError",
    "DatabaseConfig",
    "FrontendConfig",
    "HealthConfig",
    "MetadataConfig",
    "NginxConfig",
    "Pm2Config",
    "ProjectConfig",
    "load_config",
]
