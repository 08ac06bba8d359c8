"""Versioned transaction log: actions, snapshots and compare-and-commit."""
from .actions import (
    Action,
    AddFile,
    CommitInfo,
    Metadata,
    RemoveFile,
    action_from_json,
    action_to_json,
)
from .errors import (
    ConflictError,
    DeltaLogError,
    InvalidActionsError,
    LogCorruptedError,
    VersionNotFoundError,
)
from .log import (
    CHECKPOINT,
    DELTA,
    CommitOutcome,
    Committed,
    Conflict,
    DeltaLog,
    Fatal,
    LogEntry,
    Operation,
    OptimisticTransaction,
)
from .snapshot import Snapshot

__all__ = [
    "Action",
    "AddFile",
    "CommitInfo",
    "Metadata",
    "RemoveFile",
    "action_from_json",
    "action_to_json",
    "ConflictError",
    "DeltaLogError",
    "InvalidActionsError",
    "LogCorruptedError",
    "VersionNotFoundError",
    "CHECKPOINT",
    "DELTA",
    "CommitOutcome",
    "Committed",
    "Conflict",
    "DeltaLog",
    "Fatal",
    "LogEntry",
    "Operation",
    "OptimisticTransaction",
    "Snapshot",
]
