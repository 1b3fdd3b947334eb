"""Exception hierarchy for fatal and per-item failures."""

from __future__ import annotations


class SweepError(Exception):
    """Base class for every error raised by sweepgraph."""


class ConfigError(SweepError):
    """A configuration file could not be read or holds invalid values."""


class BackupError(SweepError):
    """A snapshot could not be written or verified."""


class SnapshotNotFoundError(SweepError):
    """The requested snapshot id does not exist in the backup directory."""


class SnapshotRequiredError(SweepError):
    """A destructive operation was attempted before a snapshot existed."""


class RollbackError(SweepError):
    """Restoring a snapshot failed; manual recovery is required."""

    def __init__(self, message: str, safety_snapshot_dir: str | None = None):
        super().__init__(message)
        self.safety_snapshot_dir = safety_snapshot_dir

    def recovery_hint(self) -> str:
        if not self.safety_snapshot_dir:
            return "Restore the tree manually from version control."
        return (
            "Restore manually by copying the 'tree' directory of "
            f"{self.safety_snapshot_dir} over the source directory."
        )
