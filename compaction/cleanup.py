"""
CleanupManager - best-effort deletes once a compaction outcome is final.

Success path:
- cleanup_log: drop log entries made redundant by a checkpoint
- cleanup_removed_files: delete data files the commit removed

Failure path:
- rollback: delete data files written by attempts that never committed

Every delete is recorded in a CleanupReport. Failures are logged and
counted there, never raised: the commit's atomicity, not cleanup, is
what keeps the table correct.
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from compaction.errors import CleanupError
from storage.base import StorageBackend
from txlog.actions import Action, adds, removes
from txlog.filenames import checksum_path
from txlog.log import CHECKPOINT, DELTA, DeltaLog

logger = logging.getLogger(__name__)


@dataclass
class CleanupEntry:
    operation: str
    path: str
    deleted: bool
    error: Optional[CleanupError] = None


@dataclass
class CleanupReport:
    """Per-path results of one cleanup pass."""
    operation: str
    entries: List[CleanupEntry] = field(default_factory=list)

    @property
    def num_deleted(self) -> int:
        return sum(1 for e in self.entries if e.deleted)

    @property
    def num_failed(self) -> int:
        return sum(1 for e in self.entries if e.error is not None)

    @property
    def failures(self) -> List[CleanupEntry]:
        return [e for e in self.entries if e.error is not None]

    def record(self, path: str, deleted: bool, error: Optional[CleanupError] = None) -> None:
        self.entries.append(CleanupEntry(self.operation, path, deleted, error))


class CleanupManager:
    """Delete obsolete log entries and data files for one table."""

    def __init__(self, log: DeltaLog, storage: Optional[StorageBackend] = None):
        self.log = log
        self.storage = storage or log.storage

    def _delete(self, report: CleanupReport, path: str) -> bool:
        try:
            deleted = self.storage.delete(path, recursive=False)
        except Exception as e:
            error = CleanupError(f"Failed to delete {path}: {e}")
            logger.warning(f"[CleanupManager] {error}")
            report.record(path, False, error)
            return False
        report.record(path, deleted)
        return deleted

    def cleanup_log(self, target_version: int) -> CleanupReport:
        """
        Delete checkpoint and delta entries older than both `target_version`
        and the newest checkpoint.

        Nothing is deleted while the table has no checkpoint: raw commits are
        only redundant once a checkpoint at or after them exists.
        """
        report = CleanupReport("log_cleanup")
        latest_checkpoint = self.log.last_checkpoint()
        if latest_checkpoint is None:
            logger.info("[CleanupManager] No checkpoint yet, keeping all log files")
            return report

        cutoff = min(target_version, latest_checkpoint)
        expired = [
            entry for entry in self.log.list_from(0)
            if entry.kind in (CHECKPOINT, DELTA) and entry.version < cutoff
        ]
        for entry in expired:
            self._delete(report, entry.path)

        logger.info(
            f"[CleanupManager] Deleted {report.num_deleted} log files earlier than {cutoff}"
            + (f" ({report.num_failed} failed)" if report.num_failed else "")
        )
        return report

    def _delete_data_files(self, report: CleanupReport, paths: Iterable[str]) -> CleanupReport:
        for path in paths:
            full = self.storage.join_path(self.log.data_path, path)
            self._delete(report, full)
            self._delete(report, self.storage.join_path(self.log.data_path, checksum_path(path)))

        data_deleted = sum(
            1 for e in report.entries
            if e.deleted and not e.path.endswith(".crc")
        )
        logger.info(
            f"[CleanupManager] {report.operation}: deleted {data_deleted} data files"
            + (f" ({report.num_failed} deletes failed)" if report.num_failed else "")
        )
        return report

    def cleanup_removed_files(self, actions: Iterable[Action]) -> CleanupReport:
        """Physically delete every file a committed RemoveFile refers to."""
        paths = [r.path for r in removes(actions)]
        return self._delete_data_files(CleanupReport("data_cleanup"), paths)

    def rollback(self, files: Iterable[Action]) -> CleanupReport:
        """
        Delete every AddFile's data file; used when the commit never happened.

        Files referenced by the current snapshot are kept: a commit whose
        outcome looked failed may still have landed. If the current snapshot
        cannot be read, nothing is deleted.
        """
        report = CleanupReport("rollback")
        paths = [a.path for a in adds(files)]
        try:
            snapshot = self.log.update()
        except Exception as e:
            logger.warning(f"[CleanupManager] Cannot read current snapshot, skipping rollback: {e}")
            for path in paths:
                report.record(
                    self.storage.join_path(self.log.data_path, path),
                    False,
                    CleanupError(f"Rollback skipped, snapshot unreadable: {e}"),
                )
            return report

        live = snapshot.files
        committed = [p for p in paths if p in live]
        if committed:
            logger.warning(
                f"[CleanupManager] Keeping {len(committed)} files referenced by "
                f"version {snapshot.version}"
            )
        return self._delete_data_files(report, [p for p in paths if p not in live])
