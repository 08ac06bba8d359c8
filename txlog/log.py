"""
DeltaLog - versioned transaction log of a table on any StorageBackend.

Layout (relative to the storage root):
    {table_path}/
      _delta_log/
        00000000000000000000.json                 <- commit 0 (NDJSON actions)
        00000000000000000001.json
        ...
        00000000000000000010.checkpoint.parquet   <- full state at version 10
        _last_checkpoint                          <- {"version": 10, "size": N}
      date=2025-11-20/
        part_20251120T14_abc12345_1.parquet       <- data files (AddFile.path is relative to table_path)

Commits are compare-and-commit: a writer that read version N may only
create commit N+1, and the file is created with an atomic
create-if-absent write, so at most one writer wins each version. The
outcome is returned as a typed value (Committed / Conflict / Fatal)
instead of being raised.
"""
import io
import json
import logging
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

import pyarrow as pa
import pyarrow.parquet as pq

from storage.base import StorageBackend
from txlog.actions import (
    Action,
    AddFile,
    CommitInfo,
    Metadata,
    RemoveFile,
    action_from_json,
    action_to_json,
)
from txlog.errors import (
    ConflictError,
    InvalidActionsError,
    LogCorruptedError,
    VersionNotFoundError,
)
from txlog.filenames import (
    LAST_CHECKPOINT_NAME,
    LOG_DIR_NAME,
    checkpoint_file_name,
    delta_file_name,
    get_file_version,
    is_checkpoint_file,
    is_delta_file,
)
from txlog.snapshot import Snapshot

logger = logging.getLogger(__name__)

CHECKPOINT = "checkpoint"
DELTA = "delta"


@dataclass(frozen=True)
class LogEntry:
    """One file of the log directory."""
    version: int
    kind: str  # CHECKPOINT or DELTA
    path: str  # Relative to the storage root


@dataclass(frozen=True)
class Operation:
    """Operation metadata recorded in a commit's commitInfo."""
    name: str
    parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Committed:
    """The log accepted the commit (or, with no actions, confirmed the read version)."""
    version: int
    wrote: bool = True


@dataclass(frozen=True)
class Conflict:
    """Another writer advanced the log past the read version."""
    read_version: int
    current_version: int

    def to_error(self) -> ConflictError:
        return ConflictError(self.read_version, self.current_version)


@dataclass(frozen=True)
class Fatal:
    """The commit failed for a reason retrying will not fix."""
    error: Exception


CommitOutcome = Union[Committed, Conflict, Fatal]


class OptimisticTransaction:
    """
    Single-use transaction pinned to the log version it was opened at.

    Example:
        txn = log.begin_transaction()
        outcome = txn.commit(actions, Operation("WRITE"))
        if isinstance(outcome, Conflict):
            ...  # re-read and retry
    """

    def __init__(self, log: "DeltaLog", snapshot: Snapshot):
        self.log = log
        self.snapshot = snapshot
        self.read_version = snapshot.version
        self.txn_id = str(uuid.uuid4())
        self._new_metadata: Optional[Metadata] = None
        self._committed = False

    @property
    def metadata(self) -> Optional[Metadata]:
        return self._new_metadata or self.snapshot.metadata

    def update_metadata(self, metadata: Metadata) -> None:
        """Stage table metadata; required for the first commit of a table."""
        self._new_metadata = metadata

    def commit(self, actions: Sequence[Action], operation: Operation) -> CommitOutcome:
        if self._committed:
            raise RuntimeError("Transaction already committed")

        actions = list(actions)
        if self._new_metadata is not None:
            actions.insert(0, self._new_metadata)

        outcome = self.log.commit(
            self.read_version,
            actions,
            operation,
            read_snapshot=self.snapshot,
            txn_id=self.txn_id,
        )
        if isinstance(outcome, Committed):
            self._committed = True
        return outcome


class DeltaLog:
    """Transaction log of one table."""

    def __init__(
        self,
        storage: StorageBackend,
        table_path: str,
        checkpoint_interval: int = 10,
    ):
        """
        Args:
            storage: Backend holding the table
            table_path: Table root relative to the storage root
            checkpoint_interval: Write a checkpoint every N commits (0 disables)
        """
        self.storage = storage
        self.data_path = table_path.strip("/")
        self.log_path = storage.join_path(self.data_path, LOG_DIR_NAME)
        self.checkpoint_interval = checkpoint_interval

    # ------------------------------------------------------------------
    # Listing and version history
    # ------------------------------------------------------------------

    def _entries(self) -> List[LogEntry]:
        entries = []
        for info in self.storage.list_files(self.log_path):
            name = info["path"].rsplit("/", 1)[-1]
            if is_checkpoint_file(name):
                kind = CHECKPOINT
            elif is_delta_file(name):
                kind = DELTA
            else:
                continue
            entries.append(LogEntry(
                version=get_file_version(name),
                kind=kind,
                path=self.storage.join_path(self.log_path, name),
            ))
        # Checkpoint sorts before the delta of the same version
        entries.sort(key=lambda e: (e.version, e.kind != CHECKPOINT))
        return entries

    def list_from(self, version: int) -> Iterator[LogEntry]:
        """Checkpoint and delta entries with version >= `version`, in version order."""
        return iter([e for e in self._entries() if e.version >= version])

    @staticmethod
    def _version_range(entries: List[LogEntry]) -> Tuple[int, int]:
        if not entries:
            return 0, -1
        latest = max(e.version for e in entries)
        candidates = [e.version for e in entries if e.kind == CHECKPOINT]
        if any(e.kind == DELTA and e.version == 0 for e in entries):
            candidates.append(0)
        earliest = min(candidates) if candidates else latest + 1
        return earliest, latest

    def current_version(self) -> int:
        """Highest committed version, or -1 for a table with no commits."""
        return self._version_range(self._entries())[1]

    def version_exists(self, version: int) -> bool:
        earliest, latest = self._version_range(self._entries())
        return earliest <= version <= latest

    def check_version_exists(self, version: int) -> None:
        """Raise VersionNotFoundError unless `version` can be reconstructed."""
        earliest, latest = self._version_range(self._entries())
        if not earliest <= version <= latest:
            raise VersionNotFoundError(version, earliest, latest)

    def last_checkpoint(self) -> Optional[int]:
        """Version of the newest checkpoint, or None if the table has none."""
        pointer = self.storage.join_path(self.log_path, LAST_CHECKPOINT_NAME)
        if self.storage.exists(pointer):
            version = json.loads(self.storage.read_bytes(pointer))["version"]
            checkpoint = self.storage.join_path(self.log_path, checkpoint_file_name(version))
            if self.storage.exists(checkpoint):
                return version
            logger.warning(f"[DeltaLog] _last_checkpoint points at missing checkpoint {version}")

        # Fall back to listing
        versions = [e.version for e in self._entries() if e.kind == CHECKPOINT]
        return max(versions) if versions else None

    def ensure_log_dir(self) -> None:
        """Create the log directory if missing (idempotent)."""
        self.storage.mkdir(self.log_path)

    # ------------------------------------------------------------------
    # Reading state
    # ------------------------------------------------------------------

    def read_commit(self, version: int) -> List[Action]:
        path = self.storage.join_path(self.log_path, delta_file_name(version))
        text = self.storage.read_bytes(path).decode("utf-8")
        return [action_from_json(line) for line in text.splitlines() if line.strip()]

    def _read_checkpoint(self, version: int) -> List[Action]:
        path = self.storage.join_path(self.log_path, checkpoint_file_name(version))
        table = pq.read_table(io.BytesIO(self.storage.read_bytes(path)))
        return [action_from_json(line) for line in table.column("action").to_pylist()]

    def get_snapshot_at(self, version: int) -> Snapshot:
        """Replay the newest checkpoint at or before `version` plus the commits after it."""
        entries = self._entries()
        earliest, latest = self._version_range(entries)
        if not earliest <= version <= latest:
            raise VersionNotFoundError(version, earliest, latest)

        checkpoints = [e.version for e in entries if e.kind == CHECKPOINT and e.version <= version]
        deltas = {e.version for e in entries if e.kind == DELTA}

        snapshot = Snapshot(version=-1)
        start = -1
        if checkpoints:
            start = max(checkpoints)
            snapshot.apply(self._read_checkpoint(start), start)

        for v in range(start + 1, version + 1):
            if v not in deltas:
                raise LogCorruptedError(
                    f"Commit file for version {v} is missing from {self.log_path}"
                )
            snapshot.apply(self.read_commit(v), v)

        return snapshot

    def update(self) -> Snapshot:
        """Snapshot at the current version."""
        current = self.current_version()
        if current < 0:
            return Snapshot(version=-1)
        return self.get_snapshot_at(current)

    def begin_transaction(self) -> OptimisticTransaction:
        return OptimisticTransaction(self, self.update())

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def _validate(self, actions: List[Action], read_snapshot: Snapshot) -> None:
        if read_snapshot.version < 0 and read_snapshot.metadata is None:
            if not any(isinstance(a, Metadata) for a in actions):
                raise InvalidActionsError("The first commit of a table must include Metadata")

        removed = set()
        for action in actions:
            if isinstance(action, RemoveFile):
                if action.path not in read_snapshot.files:
                    raise InvalidActionsError(
                        f"Cannot remove {action.path}: not live at version {read_snapshot.version}"
                    )
                removed.add(action.path)

        added = set()
        for action in actions:
            if isinstance(action, AddFile):
                if action.path in added:
                    raise InvalidActionsError(f"Duplicate add of {action.path}")
                if action.path in read_snapshot.files and action.path not in removed:
                    raise InvalidActionsError(
                        f"Cannot add {action.path}: already live at version {read_snapshot.version}"
                    )
                added.add(action.path)

    def commit(
        self,
        expected_read_version: int,
        actions: Sequence[Action],
        operation: Operation,
        read_snapshot: Optional[Snapshot] = None,
        txn_id: Optional[str] = None,
    ) -> CommitOutcome:
        """
        Compare-and-commit `actions` as version `expected_read_version + 1`.

        With no actions nothing is written: the log only confirms that it is
        still at `expected_read_version`.

        The commit carries `txn_id` in its commitInfo. When the write of the
        version file is rejected or fails, the file at that version is read
        back: if it carries our id, the write landed (e.g. an S3 put retried
        after a lost response) and the outcome is Committed.

        Returns:
            Committed(new_version) on success,
            Conflict if the log is no longer at expected_read_version,
            Fatal for invalid action sets or storage failures
        """
        try:
            current = self.current_version()
            if current != expected_read_version:
                logger.info(
                    f"[DeltaLog] Conflict: read version {expected_read_version}, "
                    f"log at {current}"
                )
                return Conflict(expected_read_version, current)

            actions = [a for a in actions if not isinstance(a, CommitInfo)]
            if not actions:
                return Committed(expected_read_version, wrote=False)

            if read_snapshot is None or read_snapshot.version != expected_read_version:
                read_snapshot = (
                    self.get_snapshot_at(expected_read_version)
                    if expected_read_version >= 0 else Snapshot(version=-1)
                )
            self._validate(actions, read_snapshot)

            new_version = expected_read_version + 1
            stamped = [
                replace(a, deletion_version=new_version) if isinstance(a, RemoveFile) else a
                for a in actions
            ]
            txn_id = txn_id or str(uuid.uuid4())
            commit_info = CommitInfo(
                operation=operation.name,
                operation_parameters=operation.parameters,
                read_version=expected_read_version if expected_read_version >= 0 else None,
                txn_id=txn_id,
            )
            lines = [action_to_json(a) for a in stamped] + [action_to_json(commit_info)]
            payload = ("\n".join(lines) + "\n").encode("utf-8")

            path = self.storage.join_path(self.log_path, delta_file_name(new_version))
            try:
                created = self.storage.write_bytes_if_absent(payload, path)
            except Exception:
                if not self._is_own_commit(new_version, txn_id):
                    raise
                logger.warning(
                    f"[DeltaLog] Write of version {new_version} raised, "
                    f"but the version file carries this transaction's id"
                )
                created = True

            if not created:
                if not self._is_own_commit(new_version, txn_id):
                    logger.info(f"[DeltaLog] Conflict: version {new_version} already committed")
                    return Conflict(expected_read_version, new_version)
                logger.warning(
                    f"[DeltaLog] Version {new_version} already exists and carries this "
                    f"transaction's id; treating the retried write as committed"
                )
        except Exception as e:
            logger.error(f"[DeltaLog] Commit failed: {e}", exc_info=True)
            return Fatal(e)

        logger.info(
            f"[DeltaLog] Committed version {new_version} "
            f"({operation.name}, {len(actions)} actions)"
        )
        self._maybe_checkpoint(new_version)
        return Committed(new_version)

    def _is_own_commit(self, version: int, txn_id: str) -> bool:
        """True if commit `version` exists and its commitInfo carries `txn_id`."""
        path = self.storage.join_path(self.log_path, delta_file_name(version))
        if not self.storage.exists(path):
            return False
        return any(
            isinstance(a, CommitInfo) and a.txn_id == txn_id
            for a in self.read_commit(version)
        )

    def _maybe_checkpoint(self, version: int) -> None:
        if not self.checkpoint_interval or version == 0:
            return
        if version % self.checkpoint_interval != 0:
            return
        try:
            self.checkpoint(version)
        except Exception as e:
            # The commit already succeeded; a later checkpoint covers this one
            logger.warning(f"[DeltaLog] Checkpoint at version {version} failed: {e}", exc_info=True)

    def checkpoint(self, version: Optional[int] = None) -> int:
        """
        Write the full state at `version` (default: current) as a Parquet checkpoint.

        Returns:
            The checkpointed version
        """
        if version is None:
            version = self.current_version()
        snapshot = self.get_snapshot_at(version)

        actions: List[Action] = [snapshot.metadata] if snapshot.metadata else []
        actions.extend(snapshot.all_files)
        table = pa.table({
            "action": pa.array([action_to_json(a) for a in actions], type=pa.string()),
        })
        buffer = io.BytesIO()
        pq.write_table(table, buffer)
        self.storage.write_bytes(
            buffer.getvalue(),
            self.storage.join_path(self.log_path, checkpoint_file_name(version)),
        )

        previous = self.last_checkpoint()
        if previous is None or version >= previous:
            pointer = json.dumps({"version": version, "size": len(actions)})
            self.storage.write_bytes(
                pointer.encode("utf-8"),
                self.storage.join_path(self.log_path, LAST_CHECKPOINT_NAME),
            )

        logger.info(f"[DeltaLog] Wrote checkpoint at version {version} ({len(actions)} actions)")
        return version
