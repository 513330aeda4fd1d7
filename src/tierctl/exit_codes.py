"""Enumerations for CLI exit codes."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Well-known exit codes enforced across the CLI.

    Deployment runs only distinguish success from failure; precondition,
    reconciliation, execution, verification and operator aborts all map to
    ``FAILURE``.
    """

    OK = 0
    FAILURE = 1
