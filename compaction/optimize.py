"""
ActionSetBuilder - turn one transaction into the OPTIMIZE action set.

Each coordinator attempt calls optimize() in one of two modes:

- PLAN_ONLY: validate that compaction is possible (predicate parses,
  target version exists, log directory initialized) and return no
  actions. No data is read or written.
- EXECUTE: group the snapshot at the target version and rewrite every
  group that meets the file-count threshold.
"""
import logging
from enum import Enum
from typing import Any, Dict, List, Tuple

from compaction.grouper import group_files
from compaction.predicates import validate_predicate
from compaction.rewriter import Rewriter
from config import CompactionConfig
from txlog.actions import Action, AddFile
from txlog.log import DeltaLog, Operation, OptimisticTransaction

logger = logging.getLogger(__name__)


class AttemptMode(Enum):
    PLAN_ONLY = "plan_only"
    EXECUTE = "execute"


class ActionSetBuilder:
    """Build the add/remove actions of one compaction attempt."""

    def __init__(self, log: DeltaLog, config: CompactionConfig, rewriter: Rewriter):
        self.log = log
        self.config = config
        self.rewriter = rewriter
        self.stats: Dict[str, Any] = {}

    def reset(self) -> None:
        """Forget files and stats from a previous run."""
        self.rewriter.reset_ledger()
        self.stats = {}

    @property
    def written_files(self) -> List[AddFile]:
        """Files physically written by the latest execute attempt."""
        return list(self.rewriter.written_files)

    def operation(self) -> Operation:
        """Commit metadata for the OPTIMIZE operation."""
        return Operation(
            name="OPTIMIZE",
            parameters={
                "predicate": self.config.partition_predicate,
                "compactVersion": self.config.compact_version,
                "minFilesPerDir": self.config.compact_num_file_per_dir,
            },
        )

    def resolve_version(self, txn: OptimisticTransaction) -> int:
        """Configured compact_version, else the transaction's read version; must exist."""
        version = self.config.compact_version
        if version is None:
            version = txn.read_version
        self.log.check_version_exists(version)
        return version

    def optimize(self, txn: OptimisticTransaction, mode: AttemptMode) -> Tuple[List[Action], int]:
        """
        Build the action set for `txn`.

        Returns:
            (actions, resolved_version); actions are empty in PLAN_ONLY mode

        Raises:
            InvalidPredicateError, VersionNotFoundError, RewriteError
        """
        predicate = self.config.partition_predicate
        if predicate:
            partition_columns = txn.metadata.partition_columns if txn.metadata else []
            validate_predicate(partition_columns, predicate)

        if txn.read_version < 0:
            self.log.ensure_log_dir()

        version = self.resolve_version(txn)

        if mode is AttemptMode.PLAN_ONLY:
            logger.info(f"[ActionSetBuilder] Plan-only attempt at version {version}")
            return [], version

        self.rewriter.reset_ledger()
        snapshot = (
            txn.snapshot if version == txn.read_version else self.log.get_snapshot_at(version)
        )
        groups = group_files(snapshot, predicate)

        new_files: List[Action] = []
        deleted_files: List[Action] = []
        groups_compacted = 0
        for group in groups:
            adds, removes = self.rewriter.rewrite(group, self.config.compact_num_file_per_dir)
            if removes:
                groups_compacted += 1
            new_files.extend(adds)
            deleted_files.extend(removes)

        self.stats = {
            "target_version": version,
            "groups_scanned": len(groups),
            "groups_compacted": groups_compacted,
            "files_added": len(new_files),
            "files_removed": len(deleted_files),
        }
        logger.info(f"[ActionSetBuilder] Add {len(new_files)} files in optimization progress")
        logger.info(f"[ActionSetBuilder] Mark remove {len(deleted_files)} files in optimization progress")
        return new_files + deleted_files, version
