"""Subprocess helper shared by the external-tool providers."""
from __future__ import annotations

import os
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path


def run_command(
    args: Sequence[str],
    *,
    error_cls: type[RuntimeError],
    error_prefix: str | None = None,
    check: bool = True,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    input_text: str | None = None,
    timeout: float | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run *args* capturing text output; raise *error_cls* on failure when *check*."""
    command = [str(item) for item in args]
    prefix = error_prefix or " ".join(command[:2])
    merged_env: dict[str, str] | None = None
    if env:
        merged_env = os.environ.copy()
        merged_env.update(env)
    try:
        result = subprocess.run(  # noqa: S603, S607
            command,
            capture_output=True,
            text=True,
            check=False,
            cwd=str(cwd) if cwd is not None else None,
            env=merged_env,
            input=input_text,
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        raise error_cls(f"{command[0]} not found: {exc}") from exc
    except subprocess.TimeoutExpired as exc:
        raise error_cls(f"{prefix} timed out after {timeout}s") from exc
    if check and result.returncode != 0:
        raise error_cls(f"{prefix} failed (exit {result.returncode}): {command_output(result)}")
    return result


def command_output(result: subprocess.CompletedProcess[str]) -> str:
    """Return the most useful trimmed output of *result*."""
    stdout = (getattr(result, "stdout", "") or "").strip()
    stderr = (getattr(result, "stderr", "") or "").strip()
    return stderr or stdout or "no output"


__all__ = ["command_output", "run_command"]
