"""Bucket a snapshot's live files by the directory they live in."""
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from compaction.predicates import filter_files
from txlog.actions import AddFile
from txlog.snapshot import Snapshot


@dataclass(frozen=True)
class FileGroup:
    """Files sharing one directory prefix; the unit of rewriting."""
    prefix: str
    files: Tuple[AddFile, ...]

    @property
    def size_in_bytes(self) -> int:
        return sum(f.size for f in self.files)

    def __len__(self) -> int:
        return len(self.files)


def extract_path_prefix(path: str) -> str:
    """'a/b/c.parquet' -> 'a/b'; a path with no separator maps to ''."""
    if "/" not in path:
        return ""
    return path.rsplit("/", 1)[0]


def group_files(snapshot: Snapshot, partition_filter: Optional[str] = None) -> List[FileGroup]:
    """
    Group the live files of `snapshot` by directory prefix.

    Pure function of its inputs: groups come back sorted by prefix and
    files within a group sorted by path, so repeated calls on the same
    snapshot return equal results.

    Args:
        snapshot: Table state to group
        partition_filter: Optional SQL predicate over partition columns;
            only matching files are grouped

    Returns:
        One FileGroup per distinct prefix
    """
    files = snapshot.all_files
    if partition_filter:
        files = filter_files(snapshot.partition_columns, files, partition_filter)

    buckets: Dict[str, List[AddFile]] = defaultdict(list)
    for add in files:
        buckets[extract_path_prefix(add.path)].append(add)

    return [
        FileGroup(prefix=prefix, files=tuple(sorted(buckets[prefix], key=lambda f: f.path)))
        for prefix in sorted(buckets)
    ]
