"""Snapshot creation, listing, rollback and retention for analysed trees."""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .errors import BackupError, RollbackError, SnapshotNotFoundError
from .models import DeletionRecord, Snapshot
from .safe_delete import locate_function

logger = logging.getLogger(__name__)

METADATA_FILE = "snapshot-metadata.json"
DELETION_LOG_FILE = "deletion-log.json"
TREE_DIR = "tree"

# Left in place on restore and never copied into snapshots.
PRESERVED_NAMES = (".git", "node_modules")

_BACKEND_SUFFIXES = {".gs", ".js"}


def rollback_command(snapshot_id: str, target: Path) -> str:
    return f'sweep backup rollback {snapshot_id} --target "{target}"'


@dataclass
class VerificationCheck:
    kind: str  # "file" or "symbol"
    name: str
    passed: bool
    detail: str = ""


@dataclass
class RollbackResult:
    snapshot_id: str
    target: str
    safety_snapshot: Snapshot
    files_restored: int
    checks: List[VerificationCheck] = field(default_factory=list)

    @property
    def verified(self) -> bool:
        return all(c.passed for c in self.checks)

    @property
    def failed_checks(self) -> List[VerificationCheck]:
        return [c for c in self.checks if not c.passed]


def _iter_tree_files(root: Path) -> Iterable[Path]:
    for path in root.rglob("*"):
        rel = path.relative_to(root)
        if rel.parts and rel.parts[0] in PRESERVED_NAMES:
            continue
        if path.is_file():
            yield path


def _ignore_preserved(source: Path):
    def _ignore(directory: str, names: List[str]) -> List[str]:
        if Path(directory) != source:
            return []
        return [n for n in names if n in PRESERVED_NAMES]
    return _ignore


def _git_revision(source: Path) -> Optional[str]:
    try:
        proc = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            cwd=source,
            capture_output=True,
            text=True,
            check=False,
        )
    except (FileNotFoundError, OSError):
        return None
    if proc.returncode != 0:
        return None
    return proc.stdout.strip() or None


class BackupManager:
    """Write-once snapshots of a source tree under ``backup_root``.

    Layout::

        <backup_root>/<snapshot_id>/
            tree/                    full copy of the analysed directory
            snapshot-metadata.json   timestamp, origin, purpose, git revision
            deletion-log.json        written after mutation; single-item
                                     commands append to it
    """

    def __init__(self, backup_root: Path):
        self.backup_root = backup_root.expanduser()

    def _snapshot_dir(self, snapshot_id: str) -> Path:
        return self.backup_root / snapshot_id

    def create_backup(self, source: Path, purpose: str = "manual") -> Snapshot:
        """Copy *source* into a new snapshot; raises BackupError on any failure."""
        source = source.resolve()
        if not source.is_dir():
            raise BackupError(f"Cannot back up {source}: not a directory")
        backup_root = self.backup_root.resolve()
        if backup_root == source or source in backup_root.parents:
            raise BackupError(
                f"Backup directory {backup_root} lies inside the tree being backed up"
            )

        snapshot_id = f"{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"
        snapshot_dir = self._snapshot_dir(snapshot_id)
        try:
            snapshot_dir.mkdir(parents=True, exist_ok=False)
            shutil.copytree(
                source,
                snapshot_dir / TREE_DIR,
                ignore=_ignore_preserved(source),
            )
            expected = sum(1 for _ in _iter_tree_files(source))
            copied = sum(1 for _ in _iter_tree_files(snapshot_dir / TREE_DIR))
            if copied != expected:
                raise BackupError(
                    f"Snapshot verification failed: copied {copied} of {expected} files"
                )
            snapshot = Snapshot(
                snapshot_id=snapshot_id,
                path=str(snapshot_dir),
                created_at=datetime.now().isoformat(),
                origin_path=str(source),
                purpose=purpose,
                git_revision=_git_revision(source),
                file_count=copied,
            )
            (snapshot_dir / METADATA_FILE).write_text(
                json.dumps(snapshot.to_metadata(), indent=2), encoding="utf-8"
            )
        except BackupError:
            shutil.rmtree(snapshot_dir, ignore_errors=True)
            raise
        except OSError as exc:
            shutil.rmtree(snapshot_dir, ignore_errors=True)
            raise BackupError(f"Could not create snapshot of {source}: {exc}") from exc

        logger.info("Created snapshot %s (%d files, purpose=%s)", snapshot_id, copied, purpose)
        return snapshot

    def _read_snapshot(self, snapshot_dir: Path) -> Snapshot:
        meta = json.loads((snapshot_dir / METADATA_FILE).read_text(encoding="utf-8"))
        return Snapshot(
            snapshot_id=snapshot_dir.name,
            path=str(snapshot_dir),
            created_at=meta["timestamp"],
            origin_path=meta.get("origin_path", ""),
            purpose=meta.get("purpose", ""),
            git_revision=meta.get("git_revision"),
            file_count=meta.get("file_count", 0),
        )

    def load_snapshot(self, snapshot_id: str) -> Snapshot:
        snapshot_dir = self._snapshot_dir(snapshot_id)
        if not (snapshot_dir / METADATA_FILE).is_file() or not (snapshot_dir / TREE_DIR).is_dir():
            raise SnapshotNotFoundError(f"Snapshot not found: {snapshot_id}")
        try:
            return self._read_snapshot(snapshot_dir)
        except (OSError, ValueError, KeyError) as exc:
            raise SnapshotNotFoundError(f"Snapshot {snapshot_id} has unreadable metadata: {exc}") from exc

    def list_snapshots(self) -> List[Snapshot]:
        """All readable snapshots, newest first."""
        if not self.backup_root.is_dir():
            return []
        snapshots = []
        for snapshot_dir in self.backup_root.iterdir():
            if not (snapshot_dir / METADATA_FILE).is_file():
                continue
            try:
                snapshots.append(self._read_snapshot(snapshot_dir))
            except (OSError, ValueError, KeyError) as exc:
                logger.warning("Skipping snapshot %s: %s", snapshot_dir.name, exc)
        return sorted(snapshots, key=lambda s: (s.created_at, s.snapshot_id), reverse=True)

    def write_deletion_log(
        self,
        snapshot: Snapshot,
        records: Sequence[DeletionRecord],
        summary: Optional[Dict[str, Any]] = None,
    ) -> Path:
        """Persist the deletions made under *snapshot*; the log is write-once."""
        log_path = Path(snapshot.path) / DELETION_LOG_FILE
        if log_path.exists():
            raise BackupError(f"Deletion log already written for snapshot {snapshot.snapshot_id}")
        payload = {
            "snapshot_id": snapshot.snapshot_id,
            "written_at": datetime.now().isoformat(),
            "rollback_command": rollback_command(snapshot.snapshot_id, Path(snapshot.origin_path)),
            "summary": summary or {},
            "deletions": [r.to_dict() for r in records],
        }
        try:
            log_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as exc:
            raise BackupError(f"Could not write deletion log: {exc}") from exc
        return log_path

    def append_deletion_log(self, snapshot: Snapshot, records: Sequence[DeletionRecord]) -> Path:
        """Add *records* to the snapshot's log, creating it if needed.

        Used by single-item commands run one at a time against a shared
        snapshot. Earlier entries are never rewritten.
        """
        log_path = Path(snapshot.path) / DELETION_LOG_FILE
        try:
            if log_path.exists():
                payload = json.loads(log_path.read_text(encoding="utf-8"))
            else:
                payload = {
                    "snapshot_id": snapshot.snapshot_id,
                    "rollback_command": rollback_command(snapshot.snapshot_id, Path(snapshot.origin_path)),
                    "summary": {},
                    "deletions": [],
                }
            payload["deletions"].extend(r.to_dict() for r in records)
            payload["written_at"] = datetime.now().isoformat()
            deletions = payload["deletions"]
            payload["summary"].update({
                "files_deleted": sum(1 for d in deletions if d["kind"] == "file"),
                "functions_deleted": sum(1 for d in deletions if d["kind"] == "function"),
                "bytes_freed": sum(d["size_before"] - d["size_after"] for d in deletions),
            })
            log_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except (OSError, ValueError, KeyError) as exc:
            raise BackupError(f"Could not append to deletion log: {exc}") from exc
        return log_path

    def load_deletion_log(self, snapshot_id: str) -> Optional[Dict[str, Any]]:
        log_path = self._snapshot_dir(snapshot_id) / DELETION_LOG_FILE
        if not log_path.is_file():
            return None
        return json.loads(log_path.read_text(encoding="utf-8"))

    def rollback(
        self,
        snapshot_id: str,
        target: Optional[Path] = None,
        required_files: Sequence[str] = (),
        required_symbols: Sequence[str] = (),
    ) -> RollbackResult:
        """Restore *snapshot_id* over *target* (default: its origin path).

        The current state is snapshotted first, so a rollback can itself be
        rolled back. Raises RollbackError if the restore cannot complete.
        """
        snapshot = self.load_snapshot(snapshot_id)
        target = (target or Path(snapshot.origin_path)).resolve()

        try:
            safety = self.create_backup(target, purpose=f"pre-rollback:{snapshot_id}")
        except BackupError as exc:
            raise RollbackError(f"Could not snapshot current state before rollback: {exc}") from exc

        try:
            for entry in target.iterdir():
                if entry.name in PRESERVED_NAMES:
                    continue
                if entry.is_dir() and not entry.is_symlink():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
            shutil.copytree(Path(snapshot.tree_path), target, dirs_exist_ok=True)
        except OSError as exc:
            raise RollbackError(
                f"Rollback to {snapshot_id} failed: {exc}",
                safety_snapshot_dir=safety.path,
            ) from exc

        restored = sum(1 for _ in _iter_tree_files(target))
        result = RollbackResult(
            snapshot_id=snapshot_id,
            target=str(target),
            safety_snapshot=safety,
            files_restored=restored,
            checks=self.verify(target, required_files, required_symbols),
        )
        for check in result.failed_checks:
            logger.warning("Post-rollback check failed: %s %s (%s)", check.kind, check.name, check.detail)
        logger.info("Rolled back %s to snapshot %s (%d files)", target, snapshot_id, restored)
        return result

    def verify(
        self,
        root: Path,
        required_files: Sequence[str],
        required_symbols: Sequence[str],
    ) -> List[VerificationCheck]:
        checks: List[VerificationCheck] = []
        files = list(_iter_tree_files(root))
        names = {p.name for p in files}
        for required in required_files:
            present = (root / required).is_file() or required in names
            checks.append(VerificationCheck("file", required, present, "" if present else "missing"))

        backend = [p for p in files if p.suffix.lower() in _BACKEND_SUFFIXES]
        for symbol in required_symbols:
            owner = None
            for path in backend:
                try:
                    text = path.read_text(encoding="utf-8", errors="replace")
                except OSError as exc:
                    logger.warning("Could not read %s during verification: %s", path, exc)
                    continue
                if locate_function(text, symbol) is not None:
                    owner = path.relative_to(root).as_posix()
                    break
            checks.append(VerificationCheck("symbol", symbol, owner is not None, owner or "no definition"))
        return checks

    def prune(self, retention_days: int, now: Optional[datetime] = None) -> List[str]:
        """Delete snapshots older than *retention_days*; returns the removed ids."""
        cutoff = (now or datetime.now()) - timedelta(days=retention_days)
        removed = []
        for snapshot in self.list_snapshots():
            try:
                created = datetime.fromisoformat(snapshot.created_at)
            except ValueError:
                logger.warning("Snapshot %s has an invalid timestamp; keeping it", snapshot.snapshot_id)
                continue
            if created < cutoff:
                shutil.rmtree(snapshot.path)
                removed.append(snapshot.snapshot_id)
                logger.info("Pruned snapshot %s (created %s)", snapshot.snapshot_id, snapshot.created_at)
        return sorted(removed)
