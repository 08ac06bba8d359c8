"""Optimistic compaction of small files in a log-structured table."""
from .cleanup import CleanupEntry, CleanupManager, CleanupReport
from .coordinator import (
    AttemptRecord,
    CompactionResult,
    TransactionCoordinator,
    attempt_mode,
)
from .errors import CleanupError, CompactionError, InvalidPredicateError, RewriteError
from .grouper import FileGroup, extract_path_prefix, group_files
from .job import CompactTableJob
from .optimize import ActionSetBuilder, AttemptMode
from .predicates import filter_files, validate_predicate
from .rewriter import ParquetSink, Rewriter

__all__ = [
    "CleanupEntry",
    "CleanupManager",
    "CleanupReport",
    "AttemptRecord",
    "CompactionResult",
    "TransactionCoordinator",
    "attempt_mode",
    "CleanupError",
    "CompactionError",
    "InvalidPredicateError",
    "RewriteError",
    "FileGroup",
    "extract_path_prefix",
    "group_files",
    "CompactTableJob",
    "ActionSetBuilder",
    "AttemptMode",
    "filter_files",
    "validate_predicate",
    "ParquetSink",
    "Rewriter",
]
