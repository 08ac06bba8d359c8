"""
Log actions - the atomic state changes recorded in each commit.

A commit file holds one JSON object per line, keyed by action type:

    {"metaData": {"id": "...", "partitionColumns": ["date"], ...}}
    {"add": {"path": "date=2025-11-20/part-0.parquet", "size": 1024, ...}}
    {"remove": {"path": "date=2025-11-20/part-1.parquet", "deletionVersion": 4, ...}}
    {"commitInfo": {"operation": "OPTIMIZE", "readVersion": 3, ...}}

Table state at a version is the union of adds minus removes up to it.
"""
import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class RemoveFile:
    """A file stops being part of the table as of the commit that records it."""
    path: str
    deletion_version: Optional[int] = None  # Stamped by the log at commit time
    deletion_timestamp: Optional[int] = None
    data_change: bool = True
    size: Optional[int] = None
    partition_values: Dict[str, Optional[str]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "deletionVersion": self.deletion_version,
            "deletionTimestamp": self.deletion_timestamp,
            "dataChange": self.data_change,
            "size": self.size,
            "partitionValues": dict(self.partition_values),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RemoveFile":
        return cls(
            path=data["path"],
            deletion_version=data.get("deletionVersion"),
            deletion_timestamp=data.get("deletionTimestamp"),
            data_change=data.get("dataChange", True),
            size=data.get("size"),
            partition_values=data.get("partitionValues") or {},
        )


@dataclass(frozen=True)
class AddFile:
    """A data file that becomes part of the table as of its commit."""
    path: str
    size: int
    partition_values: Dict[str, Optional[str]] = field(default_factory=dict)
    modification_time: int = field(default_factory=_now_ms)
    data_change: bool = True
    stats: Optional[str] = None  # JSON, e.g. '{"numRecords": 100}'

    def remove(self, data_change: bool = True) -> RemoveFile:
        """RemoveFile for this file; the deletion version is assigned on commit."""
        return RemoveFile(
            path=self.path,
            deletion_timestamp=_now_ms(),
            data_change=data_change,
            size=self.size,
            partition_values=dict(self.partition_values),
        )

    @property
    def num_records(self) -> Optional[int]:
        if not self.stats:
            return None
        return json.loads(self.stats).get("numRecords")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "size": self.size,
            "partitionValues": dict(self.partition_values),
            "modificationTime": self.modification_time,
            "dataChange": self.data_change,
            "stats": self.stats,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AddFile":
        return cls(
            path=data["path"],
            size=data["size"],
            partition_values=data.get("partitionValues") or {},
            modification_time=data.get("modificationTime", 0),
            data_change=data.get("dataChange", True),
            stats=data.get("stats"),
        )


@dataclass(frozen=True)
class Metadata:
    """Table-level metadata; the first commit of a table must carry one."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    partition_columns: List[str] = field(default_factory=list)
    configuration: Dict[str, str] = field(default_factory=dict)
    created_time: int = field(default_factory=_now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "partitionColumns": list(self.partition_columns),
            "configuration": dict(self.configuration),
            "createdTime": self.created_time,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Metadata":
        return cls(
            id=data["id"],
            partition_columns=list(data.get("partitionColumns") or []),
            configuration=data.get("configuration") or {},
            created_time=data.get("createdTime", 0),
        )


@dataclass(frozen=True)
class CommitInfo:
    """Provenance of a commit: which operation wrote it, from which read version."""
    operation: str
    operation_parameters: Dict[str, Any] = field(default_factory=dict)
    read_version: Optional[int] = None
    timestamp: int = field(default_factory=_now_ms)
    txn_id: Optional[str] = None  # Identifies the writer; used to recognize its own commit

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "operation": self.operation,
            "operationParameters": dict(self.operation_parameters),
            "readVersion": self.read_version,
            "txnId": self.txn_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CommitInfo":
        return cls(
            operation=data["operation"],
            operation_parameters=data.get("operationParameters") or {},
            read_version=data.get("readVersion"),
            timestamp=data.get("timestamp", 0),
            txn_id=data.get("txnId"),
        )


Action = Union[AddFile, RemoveFile, Metadata, CommitInfo]

_ACTION_KEYS = {
    AddFile: "add",
    RemoveFile: "remove",
    Metadata: "metaData",
    CommitInfo: "commitInfo",
}
_ACTION_TYPES = {key: cls for cls, key in _ACTION_KEYS.items()}


def action_to_json(action: Action) -> str:
    """Serialize one action as a single-line JSON object."""
    key = _ACTION_KEYS[type(action)]
    return json.dumps({key: action.to_dict()}, separators=(",", ":"))


def action_from_json(line: str) -> Action:
    data = json.loads(line)
    if len(data) != 1:
        raise ValueError(f"Expected exactly one action per line, got keys {list(data)}")
    key, payload = next(iter(data.items()))
    if key not in _ACTION_TYPES:
        raise ValueError(f"Unknown action type: {key}")
    return _ACTION_TYPES[key].from_dict(payload)


def adds(actions: Iterable[Action]) -> List[AddFile]:
    return [a for a in actions if isinstance(a, AddFile)]


def removes(actions: Iterable[Action]) -> List[RemoveFile]:
    return [a for a in actions if isinstance(a, RemoveFile)]
