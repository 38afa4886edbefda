"""In-memory file snapshots for release rollback.

A Backup captures the exact bytes of every path a release may write, with an
explicit absent marker for paths that did not exist. Restoring rewrites the
captured bytes and deletes whatever was absent, so a failed release leaves
the working tree byte-identical to how it started.

Directories (generated docs) are expanded to the files they contain; on
restore, files that appeared inside a captured directory are removed.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal
from uuid import uuid4

from relkit.core.result import Err, Ok, Result
from relkit.platform.files import atomic_write_bytes, resolve_inside

__all__ = [
    "Backup",
    "BackupError",
    "BackupManager",
    "FileRestore",
    "FileSnapshot",
    "RestoreReport",
]


@dataclass(frozen=True, slots=True)
class BackupError:
    path: str
    message: str


@dataclass(frozen=True, slots=True)
class FileSnapshot:
    """Captured state of one path.

    Exactly one of: `content` set (file existed), `error` set (file could not
    be read), or neither (file was absent).
    """

    path: str
    content: bytes | None = None
    error: str | None = None

    @property
    def absent(self) -> bool:
        return self.content is None and self.error is None


@dataclass(frozen=True, slots=True)
class Backup:
    id: str
    created_at: datetime
    snapshots: tuple[FileSnapshot, ...]
    # Directories expanded at capture time; files added under them are pruned on restore.
    directories: tuple[str, ...] = ()

    @property
    def is_complete(self) -> bool:
        return all(s.error is None for s in self.snapshots)

    @property
    def errors(self) -> list[BackupError]:
        return [BackupError(s.path, s.error) for s in self.snapshots if s.error is not None]

    @property
    def paths(self) -> list[str]:
        return [s.path for s in self.snapshots]


@dataclass(frozen=True, slots=True)
class FileRestore:
    path: str
    action: Literal["restored", "deleted", "skipped"]
    success: bool
    error: str | None = None


@dataclass(frozen=True, slots=True)
class RestoreReport:
    backup_id: str
    success: bool
    files: tuple[FileRestore, ...]

    @property
    def failed(self) -> list[FileRestore]:
        return [f for f in self.files if not f.success]


class BackupManager:
    """Snapshots owned by one pipeline run."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self._backups: dict[str, Backup] = {}

    def _resolve(self, rel: str) -> Result[Path, BackupError]:
        path = resolve_inside(self.root, rel)
        if path is None:
            return Err(BackupError(rel, "path escapes repository root"))
        return Ok(path)

    def _rel(self, path: Path) -> str:
        return path.relative_to(self.root.resolve()).as_posix()

    def create_backup(self, paths: list[str]) -> Result[Backup, BackupError]:
        """Snapshot `paths`; unreadable files are recorded, not fatal.

        Returns Err only when a path escapes the repository root.
        """
        resolved: list[Path] = []
        for rel in paths:
            path = self._resolve(rel)
            if isinstance(path, Err):
                return path
            resolved.append(path.value)

        snapshots: dict[str, FileSnapshot] = {}
        directories: list[str] = []
        for path in resolved:
            if path.is_dir():
                directories.append(self._rel(path))
                for child in sorted(p for p in path.rglob("*") if p.is_file()):
                    rel = self._rel(child)
                    snapshots.setdefault(rel, _snapshot(rel, child))
                continue
            rel = self._rel(path)
            snapshots.setdefault(rel, _snapshot(rel, path))

        backup = Backup(
            id=f"backup-{uuid4().hex[:12]}",
            created_at=datetime.now(UTC),
            snapshots=tuple(snapshots.values()),
            directories=tuple(directories),
        )
        self._backups[backup.id] = backup
        return Ok(backup)

    def get(self, backup_id: str) -> Backup | None:
        return self._backups.get(backup_id)

    def restore_backup(self, backup_id: str) -> RestoreReport:
        """Restore every captured path; keeps going past individual failures."""
        backup = self._backups.get(backup_id)
        if backup is None:
            return RestoreReport(
                backup_id=backup_id,
                success=False,
                files=(FileRestore("", "skipped", False, f"unknown backup: {backup_id}"),),
            )

        results: list[FileRestore] = []
        for snap in backup.snapshots:
            results.append(self._restore_one(snap))

        captured = {s.path for s in backup.snapshots}
        for rel in backup.directories:
            results.extend(self._prune_directory(rel, captured))

        return RestoreReport(
            backup_id=backup_id,
            success=all(r.success for r in results),
            files=tuple(results),
        )

    def _restore_one(self, snap: FileSnapshot) -> FileRestore:
        path = self.root.resolve() / snap.path
        if snap.error is not None:
            return FileRestore(snap.path, "skipped", False, f"never captured: {snap.error}")
        try:
            if snap.content is not None:
                atomic_write_bytes(path, snap.content)
                return FileRestore(snap.path, "restored", True)
            if path.is_dir():
                shutil.rmtree(path)
            else:
                path.unlink(missing_ok=True)
            return FileRestore(snap.path, "deleted", True)
        except OSError as e:
            if snap.content is not None:
                return FileRestore(snap.path, "restored", False, str(e))
            return FileRestore(snap.path, "deleted", False, str(e))

    def _prune_directory(self, rel: str, captured: set[str]) -> list[FileRestore]:
        """Remove files created inside a captured directory after the snapshot."""
        directory = self.root.resolve() / rel
        if not directory.is_dir():
            return []
        results: list[FileRestore] = []
        for child in sorted(p for p in directory.rglob("*") if p.is_file()):
            child_rel = self._rel(child)
            if child_rel in captured:
                continue
            try:
                child.unlink()
                results.append(FileRestore(child_rel, "deleted", True))
            except OSError as e:
                results.append(FileRestore(child_rel, "deleted", False, str(e)))
        return results

    def cleanup_backup(self, backup_id: str) -> bool:
        """Discard a snapshot; returns False if it was not known."""
        return self._backups.pop(backup_id, None) is not None

    def active_backups(self) -> list[Backup]:
        return list(self._backups.values())


def _snapshot(rel: str, path: Path) -> FileSnapshot:
    try:
        return FileSnapshot(path=rel, content=path.read_bytes())
    except FileNotFoundError:
        return FileSnapshot(path=rel)
    except OSError as e:
        return FileSnapshot(path=rel, error=str(e))
