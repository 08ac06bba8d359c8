"""Materialized table state at one version of the log."""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from txlog.actions import Action, AddFile, Metadata, RemoveFile


@dataclass
class Snapshot:
    """
    Live files of a table at a version.

    Files are keyed by path, so a path can never be represented by two
    live adds. A version of -1 is the empty state of a table with no commits.
    """
    version: int
    metadata: Optional[Metadata] = None
    files: Dict[str, AddFile] = field(default_factory=dict)

    @property
    def partition_columns(self) -> List[str]:
        return list(self.metadata.partition_columns) if self.metadata else []

    @property
    def all_files(self) -> List[AddFile]:
        """Live files ordered by path."""
        return [self.files[path] for path in sorted(self.files)]

    @property
    def num_files(self) -> int:
        return len(self.files)

    @property
    def size_in_bytes(self) -> int:
        return sum(f.size for f in self.files.values())

    def apply(self, actions: List[Action], version: int) -> None:
        """Replay one commit's actions on top of this state."""
        for action in actions:
            if isinstance(action, AddFile):
                self.files[action.path] = action
            elif isinstance(action, RemoveFile):
                self.files.pop(action.path, None)
            elif isinstance(action, Metadata):
                self.metadata = action
        self.version = version
