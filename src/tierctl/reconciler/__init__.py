"""Resource reconciliation: probe/apply capability pairs and their driver."""
from __future__ import annotations

from .engine import KIND_ORDER, Reconciler, order_resources
from .resources import (
    AuthRuleResource,
    DatabaseResource,
    EnvFileResource,
    GrantResource,
    PackageResource,
    ProcessResource,
    Resource,
    RoleResource,
    VhostResource,
)

__all__ = [
    "KIND_ORDER",
    "AuthRuleResource",
    "DatabaseResource",
    "EnvFileResource",
    "GrantResource",
    "PackageResource",
    "ProcessResource",
    "Reconciler",
    "Resource",
    "RoleResource",
    "VhostResource",
    "order_resources",
]
