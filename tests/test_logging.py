"""Tests for the structured operation log."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from tierctl.logging import StructuredLogger


def _records(logger: StructuredLogger) -> list[dict[str, object]]:
    lines = logger.operations_log.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


def test_operation_record_includes_steps_and_result(tmp_path: Path) -> None:
    """Each operation appends one JSON line with its steps and terminal result."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("deploy", args={"fresh": True}, target={"site": "bmi"}) as op:
        op.add_step("precondition.ok", detail="All 5 required tools available.")
        op.add_step("backup.ok", detail=Path("/tmp/snap"))
        op.success("Deploy completed.", changed=3, backups=[Path("/tmp/snap")])

    (record,) = _records(logger)
    assert record["command"] == "deploy"
    assert record["args"] == {"fresh": True}
    assert record["target"] == {"site": "bmi"}
    assert [step["step"] for step in record["steps"]] == ["precondition.ok", "backup.ok"]  # type: ignore[index]
    assert record["steps"][1]["detail"] == "/tmp/snap"  # type: ignore[index]
    assert record["result"] == {
        "status": "success",
        "message": "Deploy completed.",
        "rc": 0,
        "changed": 3,
        "backups": ["/tmp/snap"],
    }


def test_secrets_are_redacted(tmp_path: Path) -> None:
    """Password-like keys never reach the log file."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("deploy", args={"password": "hunter2", "user": "bmi"}) as op:
        op.add_step("credentials", detail={"db_password": "hunter2", "PGPASSWORD": "hunter2"})
        op.success("done", context={"nested": {"token": "abc"}})

    raw = logger.operations_log.read_text(encoding="utf-8")
    assert "hunter2" not in raw
    (record,) = _records(logger)
    assert record["args"] == {"password": "***", "user": "bmi"}
    assert record["result"]["context"] == {"nested": {"token": "***"}}  # type: ignore[index]


def test_unhandled_exception_recorded_as_error(tmp_path: Path) -> None:
    """Exceptions escaping the scope are logged and re-raised."""
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(ValueError):
        with logger.operation("verify"):
            raise ValueError("boom")

    (record,) = _records(logger)
    assert record["result"]["status"] == "error"  # type: ignore[index]
    assert record["result"]["errors"] == ["Unhandled error: boom"]  # type: ignore[index]


def test_first_terminal_result_wins(tmp_path: Path) -> None:
    """Later calls do not overwrite an already recorded result."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("deploy") as op:
        op.error("failed", rc=1)
        op.success("ignored")

    (record,) = _records(logger)
    assert record["result"]["status"] == "error"  # type: ignore[index]


def test_structured_logger_disables_when_directory_unavailable(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Logger disables itself when the log directory cannot be created."""
    log_dir = tmp_path / "logs"
    original_mkdir = Path.mkdir

    def fail_mkdir(self: Path, *args: object, **kwargs: object) -> None:
        if self == log_dir:
            raise PermissionError("no access")
        original_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", fail_mkdir)

    logger = StructuredLogger(log_dir)
    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("deploy") as op:
        op.success("done")

    assert not logger.operations_log.exists()


def test_structured_logger_disables_after_write_failure(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A failed write disables logging without breaking the command."""
    logger = StructuredLogger(tmp_path / "logs")
    operations_path = logger.operations_log
    original_open = Path.open

    def fail_open(self: Path, *args: object, **kwargs: object) -> object:
        if self == operations_path:
            raise OSError("disk full")
        return original_open(self, *args, **kwargs)

    monkeypatch.setattr(Path, "open", fail_open)

    with logger.operation("deploy") as op:
        op.success("done")

    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("update") as op:
        op.success("done")
