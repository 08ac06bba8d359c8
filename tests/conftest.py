"""Test configuration fixtures."""
import io
import shutil
import tempfile
import uuid
import zlib
from pathlib import Path
import sys

import polars as pl
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from storage.base import LocalStorage
from txlog.actions import AddFile, Metadata
from txlog.filenames import checksum_path
from txlog.log import Committed, DeltaLog, Operation


class TableBuilder:
    """Writes small Parquet files and commits them as appends, like a streaming writer."""

    def __init__(self, storage, table_path="tables/events", partition_columns=("date",),
                 checkpoint_interval=0):
        self.storage = storage
        self.table_path = table_path
        self.partition_columns = list(partition_columns)
        self.log = DeltaLog(storage, table_path, checkpoint_interval=checkpoint_interval)
        self._next_id = 0

    def write_data_file(self, partition_values=None, rows=10):
        """Write one Parquet file under the table root without committing it."""
        partition_values = partition_values or {}
        prefix = "/".join(f"{c}={partition_values[c]}" for c in self.partition_columns)
        name = f"part-{uuid.uuid4().hex[:8]}.parquet"
        path = f"{prefix}/{name}" if prefix else name

        ids = list(range(self._next_id, self._next_id + rows))
        self._next_id += rows
        columns = {"id": ids}
        for col in self.partition_columns:
            columns[col] = [partition_values[col]] * rows
        buffer = io.BytesIO()
        pl.DataFrame(columns).write_parquet(buffer)
        data = buffer.getvalue()

        self.storage.write_bytes(data, self.storage.join_path(self.table_path, path))
        self.storage.write_bytes(
            f"{zlib.crc32(data):08x}".encode("ascii"),
            self.storage.join_path(self.table_path, checksum_path(path)),
        )
        return AddFile(path=path, size=len(data), partition_values=dict(partition_values))

    def append(self, partition_values=None, rows=10):
        """Write one file and commit it; returns the AddFile."""
        add = self.write_data_file(partition_values, rows)
        txn = self.log.begin_transaction()
        if txn.read_version < 0:
            txn.update_metadata(Metadata(partition_columns=self.partition_columns))
        outcome = txn.commit([add], Operation("WRITE"))
        assert isinstance(outcome, Committed)
        return add

    def read_rows(self, version=None):
        """All rows visible in the snapshot, sorted by id."""
        snapshot = self.log.update() if version is None else self.log.get_snapshot_at(version)
        paths = [
            self.storage.get_full_path(self.storage.join_path(self.table_path, f.path))
            for f in snapshot.all_files
        ]
        if not paths:
            return []
        return sorted(pl.read_parquet(paths)["id"].to_list())

    def physical_data_files(self):
        """Table-relative paths of Parquet files actually present in storage."""
        root = self.table_path + "/"
        return {
            info["path"][len(root):]
            for info in self.storage.list_files(self.table_path, pattern="*.parquet", recursive=True)
            if "_delta_log" not in info["path"] and not info["path"].rsplit("/", 1)[-1].startswith(".")
        }


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path)


@pytest.fixture
def storage(temp_dir):
    """Local storage rooted at the temp directory."""
    return LocalStorage(str(temp_dir))


@pytest.fixture
def table(storage):
    """Empty table partitioned by date."""
    return TableBuilder(storage)


@pytest.fixture
def table_factory(storage):
    """Build tables with custom paths, partitioning or checkpoint interval."""
    def _make(**kwargs):
        return TableBuilder(storage, **kwargs)
    return _make
