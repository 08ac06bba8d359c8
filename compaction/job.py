"""Compaction job - run the coordinator, then clean up or roll back."""
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from compaction.cleanup import CleanupManager, CleanupReport
from compaction.coordinator import CompactionResult, TransactionCoordinator
from compaction.optimize import ActionSetBuilder
from compaction.rewriter import ParquetSink, Rewriter
from config import CompactionConfig
from txlog.log import DeltaLog

logger = logging.getLogger(__name__)


class CompactTableJob:
    """
    Compact the small files of one table while it stays writable.

    Workflow:
    1. Coordinator attempts the OPTIMIZE transaction (plan-only attempts,
       then a single rewrite + compare-and-commit)
    2. On success: delete log entries made redundant by a checkpoint,
       then delete the data files the commit removed
    3. On failure: delete every file the run wrote but never committed

    Example:
        log = DeltaLog(LocalStorage("/data/lake"), "processed/coinbase/level2")
        job = CompactTableJob(log, CompactionConfig(compact_num_file_per_dir=5))
        stats = job.run()
    """

    def __init__(
        self,
        log: DeltaLog,
        config: Optional[CompactionConfig] = None,
        sink: Optional[ParquetSink] = None,
        sort_by: Optional[list] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            log: Log of the table to compact
            config: Compaction options (defaults if None)
            sink: Dataset reader/writer (Parquet under the table root if None)
            sort_by: Optional columns to sort rewritten data by
            sleep: Wait function for conflict backoff
        """
        self.log = log
        self.config = config or CompactionConfig()
        self.sink = sink or ParquetSink(
            log.storage,
            log.data_path,
            target_file_size_mb=self.config.target_file_size_mb,
            compression=self.config.compression,
        )
        self.builder = ActionSetBuilder(log, self.config, Rewriter(self.sink, sort_by=sort_by))
        self.coordinator = TransactionCoordinator(
            log,
            self.builder,
            retry_budget=self.config.compact_retry_times_for_lock,
            backoff_seconds=self.config.retry_backoff_seconds,
            sleep=sleep,
        )
        self.cleanup = CleanupManager(log)

        self.result: Optional[CompactionResult] = None
        self.reports: Dict[str, CleanupReport] = {}
        self.stats: Dict[str, Any] = {}

        logger.info(
            f"[CompactTableJob] Initialized:\n"
            f"  Table: {log.data_path}\n"
            f"  Storage: {log.storage.backend_type}\n"
            f"  Min files per dir: {self.config.compact_num_file_per_dir}\n"
            f"  Retry times for lock: {self.config.compact_retry_times_for_lock}\n"
            f"  Compact version: {self.config.compact_version}\n"
            f"  Predicate: {self.config.partition_predicate}"
        )

    def run(self) -> Dict[str, Any]:
        """
        Run compaction to a final outcome.

        Returns:
            Statistics dictionary; `success` is the only positive signal
        """
        start_time = datetime.now()

        logger.info("=" * 80)
        logger.info("TABLE COMPACTION OPERATION")
        logger.info("=" * 80)

        result = self.coordinator.run()
        self.result = result
        self.reports = {}

        if result.success:
            self.reports["log_cleanup"] = self.cleanup.cleanup_log(result.target_version)
            self.reports["data_cleanup"] = self.cleanup.cleanup_removed_files(result.actions)
        else:
            self.reports["rollback"] = self.cleanup.rollback(result.uncommitted_files)

        end_time = datetime.now()
        build_stats = self.builder.stats
        self.stats = {
            "success": result.success,
            "target_version": result.target_version,
            "committed_version": result.committed_version,
            "attempts": len(result.attempts),
            "groups_scanned": build_stats.get("groups_scanned", 0),
            "groups_compacted": build_stats.get("groups_compacted", 0),
            "files_added": len(result.added_files) if result.success else 0,
            "files_removed": len(result.removed_files) if result.success else 0,
            "log_files_deleted": self._deleted("log_cleanup"),
            "data_files_deleted": self._deleted("data_cleanup"),
            "rollback_files_deleted": self._deleted("rollback"),
            "cleanup_failures": sum(r.num_failed for r in self.reports.values()),
            "error": str(result.error) if result.error else None,
            "start_time": start_time,
            "end_time": end_time,
        }

        elapsed = (end_time - start_time).total_seconds()
        logger.info("\n" + "=" * 80)
        logger.info("COMPACTION SUMMARY")
        logger.info("=" * 80)
        logger.info(f"  Outcome: {'committed' if result.success else 'aborted'}")
        logger.info(f"  Attempts: {self.stats['attempts']}")
        logger.info(f"  Target version: {result.target_version}")
        logger.info(f"  Committed version: {result.committed_version}")
        logger.info(f"  Groups compacted: {self.stats['groups_compacted']}/{self.stats['groups_scanned']}")
        logger.info(f"  Files added: {self.stats['files_added']}")
        logger.info(f"  Files removed: {self.stats['files_removed']}")
        if result.success:
            logger.info(f"  Log files deleted: {self.stats['log_files_deleted']}")
            logger.info(f"  Data files deleted: {self.stats['data_files_deleted']}")
        else:
            logger.info(f"  Rolled back files: {self.stats['rollback_files_deleted']}")
            logger.info(f"  Error: {self.stats['error']}")
        if self.stats["cleanup_failures"]:
            logger.warning(f"  Cleanup failures: {self.stats['cleanup_failures']}")
        logger.info(f"  Elapsed time: {elapsed:.2f}s")
        logger.info("=" * 80)

        return self.stats

    def _deleted(self, name: str) -> int:
        report = self.reports.get(name)
        if report is None:
            return 0
        return sum(1 for e in report.entries if e.deleted and not e.path.endswith(".crc"))
