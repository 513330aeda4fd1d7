"""Timestamped deployment snapshots and their retention."""
from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from .errors import SnapshotError
from .models import Snapshot

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
Dumper = Callable[[Path], object]


def _now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(slots=True, frozen=True)
class CaptureTarget:
    """One item copied into a snapshot: a file tree or a database dump."""

    label: str
    path: Path | None = None
    dumper: Dumper | None = None
    description: str = ""

    @classmethod
    def for_path(cls, label: str, path: Path) -> CaptureTarget:
        """Capture *path* (file or directory) verbatim under *label*."""
        return cls(label=label, path=Path(path), description=str(path))

    @classmethod
    def for_dump(cls, label: str, dumper: Dumper, description: str) -> CaptureTarget:
        """Capture the output of *dumper* (called with the destination file)."""
        return cls(label=label, dumper=dumper, description=description)


@dataclass(slots=True)
class SnapshotManager:
    """Create, list and prune snapshot directories under :attr:`root`."""

    root: Path
    prefix: str = "deployment"
    clock: Callable[[], datetime] = field(default=_now)

    def __post_init__(self) -> None:
        """Normalise the root path after initialisation."""
        self.root = Path(self.root).expanduser()

    # Creation -------------------------------------------------------
    def snapshot(self, targets: Iterable[CaptureTarget]) -> Snapshot:
        """Copy every target into a fresh, uniquely named snapshot directory.

        Targets that do not exist yet (or whose dump cannot be produced) are
        skipped with a warning. Any other copy failure raises
        :class:`SnapshotError`.
        """
        created_at = self.clock()
        directory = self._allocate_directory(created_at)
        contents: list[str] = []
        skipped: list[str] = []
        sources: list[tuple[str, str]] = []
        for target in targets:
            destination = directory / target.label
            try:
                captured = self._capture(target, destination)
            except OSError as exc:
                raise SnapshotError(
                    f"Failed to capture {target.description or target.label} into {directory}: {exc}"
                ) from exc
            if captured is None:
                contents.append(target.label)
                sources.append((target.label, target.description))
            else:
                logger.warning("Snapshot skipped %s: %s", target.label, captured)
                skipped.append(f"{target.label}: {captured}")

        snapshot = Snapshot(
            id=directory.name,
            path=directory,
            created_at=created_at,
            contents=tuple(contents),
            skipped=tuple(skipped),
            sources=tuple(sources),
        )
        self._write_manifest(directory, snapshot.to_dict())
        return snapshot

    def _allocate_directory(self, created_at: datetime) -> Path:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise SnapshotError(f"Failed to prepare snapshot root {self.root}: {exc}") from exc
        base = f"{self.prefix}_{created_at.strftime('%Y%m%d_%H%M%S')}"
        candidate = self.root / base
        suffix = 1
        while True:
            try:
                candidate.mkdir(mode=0o700)
            except FileExistsError:
                candidate = self.root / f"{base}_{suffix}"
                suffix += 1
                continue
            except OSError as exc:
                raise SnapshotError(f"Failed to create snapshot directory {candidate}: {exc}") from exc
            return candidate

    @staticmethod
    def _capture(target: CaptureTarget, destination: Path) -> str | None:
        """Capture *target*; return a skip reason or ``None`` on success."""
        if target.dumper is not None:
            try:
                target.dumper(destination)
            except RuntimeError as exc:
                destination.unlink(missing_ok=True)
                return f"dump unavailable ({exc})"
            return None
        source = target.path
        if source is None or not (source.exists() or source.is_symlink()):
            return f"{source} does not exist yet"
        if source.is_dir():
            shutil.copytree(source, destination, symlinks=True)
        else:
            shutil.copy2(source, destination, follow_symlinks=False)
        return None

    def _write_manifest(self, directory: Path, payload: Mapping[str, object]) -> None:
        manifest = directory / MANIFEST_NAME
        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(directory), prefix=f".{MANIFEST_NAME}.")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
                handle.write("\n")
            os.replace(tmp_path, manifest)
        except OSError as exc:
            raise SnapshotError(f"Failed to write snapshot manifest {manifest}: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)

    # Inspection -----------------------------------------------------
    def list_snapshots(self) -> list[Snapshot]:
        """Return snapshots under :attr:`root`, newest first."""
        if not self.root.is_dir():
            return []
        snapshots = [
            self._load(entry)
            for entry in self.root.iterdir()
            if entry.is_dir() and entry.name.startswith(f"{self.prefix}_")
        ]
        snapshots.sort(key=lambda item: (item.created_at, item.id), reverse=True)
        return snapshots

    def _load(self, directory: Path) -> Snapshot:
        manifest = directory / MANIFEST_NAME
        try:
            data = json.loads(manifest.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            data = None
        if isinstance(data, Mapping):
            try:
                created_at = datetime.fromisoformat(str(data.get("created_at")))
            except ValueError:
                created_at = self._mtime(directory)
            sources = data.get("sources") or {}
            return Snapshot(
                id=directory.name,
                path=directory,
                created_at=created_at,
                contents=tuple(str(item) for item in data.get("contents") or []),
                skipped=tuple(str(item) for item in data.get("skipped") or []),
                sources=tuple(
                    (str(name), str(origin))
                    for name, origin in (sources.items() if isinstance(sources, Mapping) else [])
                ),
            )
        # Snapshot directories without a manifest (older layouts) are ordered by mtime.
        return Snapshot(
            id=directory.name,
            path=directory,
            created_at=self._mtime(directory),
            contents=tuple(sorted(child.name for child in directory.iterdir())),
        )

    @staticmethod
    def _mtime(directory: Path) -> datetime:
        return datetime.fromtimestamp(directory.stat().st_mtime, tz=UTC)

    # Retention ------------------------------------------------------
    def prune(self, retain: int) -> list[Snapshot]:
        """Delete all but the *retain* most recent snapshots; return those removed."""
        if retain < 1:
            raise SnapshotError("Snapshot retention must keep at least one snapshot.")
        removed: list[Snapshot] = []
        for snapshot in self.list_snapshots()[retain:]:
            try:
                shutil.rmtree(snapshot.path)
            except OSError as exc:
                raise SnapshotError(f"Failed to remove snapshot {snapshot.path}: {exc}") from exc
            removed.append(snapshot)
        return removed


__all__ = ["MANIFEST_NAME", "CaptureTarget", "SnapshotManager"]
