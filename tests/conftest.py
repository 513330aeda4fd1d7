"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path

import pytest

from tierctl.config import AppConfig, load_config

ConfigFactory = Callable[..., AppConfig]


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


@pytest.fixture
def make_config(tmp_path: Path) -> ConfigFactory:
    """Return a factory building configs rooted in ``tmp_path``."""

    def factory(**sections: dict[str, object]) -> AppConfig:
        overrides: dict[str, object] = {
            "logs_dir": str(tmp_path / "logs"),
            "templates_dir": str(tmp_path / "templates"),
            "project": {"root": str(tmp_path / "app")},
            "frontend": {"web_root": str(tmp_path / "www"), "owner": "www-data", "group": "www-data"},
            "nginx": {
                "sites_available": str(tmp_path / "nginx" / "sites-available"),
                "sites_enabled": str(tmp_path / "nginx" / "sites-enabled"),
            },
            "pm2": {"startup_user": "ubuntu", "startup_home": str(tmp_path / "home")},
            "backups": {"root": str(tmp_path / "snapshots"), "retain": 3},
            "health": {"settle_seconds": 0},
        }
        for section, values in sections.items():
            existing = overrides.get(section)
            if isinstance(existing, dict) and isinstance(values, dict):
                overrides[section] = {**existing, **values}
            else:
                overrides[section] = values
        return load_config(tmp_path / "missing.yml", env={}, overrides=overrides)

    return factory


@pytest.fixture
def app_dirs(tmp_path: Path) -> tuple[Path, Path]:
    """Create backend and frontend checkouts under ``tmp_path/app``."""
    backend = tmp_path / "app" / "backend"
    frontend = tmp_path / "app" / "frontend"
    (backend / "src").mkdir(parents=True)
    (backend / "src" / "server.js").write_text("require('express')\n", encoding="utf-8")
    (backend / "package.json").write_text("{}", encoding="utf-8")
    frontend.mkdir(parents=True)
    (frontend / "package.json").write_text("{}", encoding="utf-8")
    return backend, frontend
