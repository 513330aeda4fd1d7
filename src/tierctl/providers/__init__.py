"""Wrappers around the external tools the orchestrator drives."""
from __future__ import annotations

from .apt import AptError, AptProvider
from .git import GitError, GitProvider
from .metadata import MetadataClient, resolve_server_name
from .nginx import NginxError, NginxProvider, NginxRenderResult
from .npm import NpmError, NpmProvider
from .pm2 import Pm2Error, Pm2Process, Pm2Provider
from .postgres import PostgresError, PostgresProvider
from .systemd import SystemdError, SystemdProvider

__all__ = [
    "AptError",
    "AptProvider",
    "GitError",
    "GitProvider",
    "MetadataClient",
    "NginxError",
    "NginxProvider",
    "NginxRenderResult",
    "NpmError",
    "NpmProvider",
    "Pm2Error",
    "Pm2Process",
    "Pm2Provider",
    "PostgresError",
    "PostgresProvider",
    "SystemdError",
    "SystemdProvider",
    "resolve_server_name",
]
