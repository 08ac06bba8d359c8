"""
Rewriter - merge the small files of one directory into fewer, larger files.

ParquetSink handles the dataset I/O against a StorageBackend:
- read a group's files as one Polars DataFrame
- write it back as ceil(input_size / target_file_size) files (at least 1),
  splitting rows evenly, each with a CRC32 sidecar (.name.crc)

Rewriter applies the file-count threshold and pairs the new files with
RemoveFile actions for the originals. New files are not part of the
table until the enclosing transaction commits; every file written is
recorded in `written_files` the moment it exists, so a failed attempt
can be rolled back even if the group never finished.
"""
import io
import json
import logging
import math
import uuid
import zlib
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

import polars as pl

from compaction.errors import RewriteError
from compaction.grouper import FileGroup
from storage.base import StorageBackend
from txlog.actions import AddFile, RemoveFile
from txlog.filenames import checksum_path

logger = logging.getLogger(__name__)


class ParquetSink:
    """
    Read and write Parquet datasets under a table's data root.

    Example:
        sink = ParquetSink(storage, data_path="processed/coinbase/level2",
                           target_file_size_mb=128)
        df = sink.read_files(["product_id=BTC-USD/part_a.parquet", ...])
        adds = sink.write_dataset(df, prefix="product_id=BTC-USD",
                                  partition_values={"product_id": "BTC-USD"},
                                  input_bytes=sum_of_input_sizes)
    """

    def __init__(
        self,
        storage: StorageBackend,
        data_path: str,
        target_file_size_mb: int = 128,
        compression: str = "zstd",
    ):
        """
        Args:
            storage: Backend holding the table
            data_path: Table root relative to the storage root
            target_file_size_mb: Target size for rewritten files
            compression: Parquet compression codec
        """
        self.storage = storage
        self.data_path = data_path.strip("/")
        self.target_file_size_mb = target_file_size_mb
        self.compression = compression

        self.stats = {
            "files_read": 0,
            "files_written": 0,
            "bytes_written": 0,
            "records_written": 0,
        }

    def _table_path(self, path: str) -> str:
        return self.storage.join_path(self.data_path, path)

    def read_files(self, paths: Sequence[str]) -> pl.DataFrame:
        """
        Read table-relative Parquet files as one DataFrame.

        Files are read one by one and concatenated with relaxed schemas, so
        columns whose width widened between writers (Int32 -> Int64) still
        merge. The policy is the same for every backend.
        """
        frames = [self._read_file(p) for p in paths]
        df = pl.concat(frames, how="vertical_relaxed")
        self.stats["files_read"] += len(paths)
        return df

    def _read_file(self, path: str) -> pl.DataFrame:
        if self.storage.backend_type == "local":
            return pl.read_parquet(self.storage.get_full_path(self._table_path(path)))
        return pl.read_parquet(io.BytesIO(self.storage.read_bytes(self._table_path(path))))

    def output_file_count(self, input_bytes: int) -> int:
        # Example: 510MB / 128MB = 3.98 -> 4 files
        total_size_mb = input_bytes / (1024 * 1024)
        return max(1, math.ceil(total_size_mb / self.target_file_size_mb))

    def write_dataset(
        self,
        df: pl.DataFrame,
        prefix: str,
        partition_values: Dict[str, Optional[str]],
        input_bytes: int,
        on_written=None,
    ) -> List[AddFile]:
        """
        Write `df` under `prefix` as one or more Parquet files.

        Args:
            df: Data to write
            prefix: Directory relative to the table root
            partition_values: Partition values recorded on each AddFile
            input_bytes: Size of the files being replaced, drives the output count
            on_written: Optional callback invoked with each AddFile right after
                its file exists in storage

        Returns:
            AddFile per written file (not yet committed)
        """
        num_output_files = self.output_file_count(input_bytes)
        total_rows = len(df)
        rows_per_file = max(1, math.ceil(total_rows / num_output_files))

        timestamp = datetime.now().strftime("%Y%m%dT%H")
        batch_id = str(uuid.uuid4())[:8]

        adds = []
        for i, chunk_df in enumerate(df.iter_slices(rows_per_file)):
            name = f"part_{timestamp}_{batch_id}_{i + 1}.parquet"
            path = f"{prefix}/{name}" if prefix else name
            add = self._write_file(chunk_df, path, partition_values)
            adds.append(add)
            if on_written is not None:
                on_written(add)

        if not adds:
            # Empty input still yields one (empty) file so the schema survives
            name = f"part_{timestamp}_{batch_id}_1.parquet"
            path = f"{prefix}/{name}" if prefix else name
            add = self._write_file(df, path, partition_values)
            adds.append(add)
            if on_written is not None:
                on_written(add)

        return adds

    def _write_file(
        self,
        df: pl.DataFrame,
        path: str,
        partition_values: Dict[str, Optional[str]],
    ) -> AddFile:
        buffer = io.BytesIO()
        df.write_parquet(buffer, compression=self.compression)
        data = buffer.getvalue()

        self.storage.write_bytes(data, self._table_path(path))
        self.storage.write_bytes(
            f"{zlib.crc32(data):08x}".encode("ascii"),
            self._table_path(checksum_path(path)),
        )

        self.stats["files_written"] += 1
        self.stats["bytes_written"] += len(data)
        self.stats["records_written"] += len(df)

        return AddFile(
            path=path,
            size=len(data),
            partition_values=dict(partition_values),
            data_change=False,
            stats=json.dumps({"numRecords": len(df)}),
        )


class Rewriter:
    """
    Rewrite one FileGroup at a time through a ParquetSink.

    Example:
        rewriter = Rewriter(sink, sort_by=["timestamp"])
        new_adds, removed = rewriter.rewrite(group, min_files_per_group=5)
    """

    def __init__(self, sink: ParquetSink, sort_by: Optional[List[str]] = None):
        self.sink = sink
        self.sort_by = sort_by
        self.written_files: List[AddFile] = []

    def reset_ledger(self) -> None:
        self.written_files = []

    def rewrite(
        self,
        group: FileGroup,
        min_files_per_group: int,
    ) -> Tuple[List[AddFile], List[RemoveFile]]:
        """
        Rewrite `group` if it holds at least `min_files_per_group` files.

        Returns:
            (new_adds, removed_olds); both empty when the group is skipped

        Raises:
            ValueError: min_files_per_group < 1
            RewriteError: any read or write failure; nothing is returned for the group
        """
        if min_files_per_group < 1:
            raise ValueError(f"min_files_per_group must be >= 1, got {min_files_per_group}")

        if len(group.files) < min_files_per_group:
            logger.debug(
                f"[Rewriter] Skipping '{group.prefix}': "
                f"{len(group.files)} < {min_files_per_group} files"
            )
            return [], []

        total_size_mb = group.size_in_bytes / (1024 * 1024)
        logger.info(
            f"[Rewriter] Compacting '{group.prefix}': "
            f"{len(group.files)} files, {total_size_mb:.1f} MB"
        )

        try:
            df = self.sink.read_files([f.path for f in group.files])

            if self.sort_by:
                missing_cols = set(self.sort_by) - set(df.columns)
                if missing_cols:
                    logger.warning(
                        f"[Rewriter] Cannot sort by {self.sort_by}: "
                        f"columns {missing_cols} missing. Skipping sort."
                    )
                else:
                    df = df.sort(self.sort_by)

            new_adds = self.sink.write_dataset(
                df,
                prefix=group.prefix,
                partition_values=group.files[0].partition_values,
                input_bytes=group.size_in_bytes,
                on_written=self.written_files.append,
            )
        except Exception as e:
            logger.error(f"[Rewriter] ✗ Error compacting '{group.prefix}': {e}")
            raise RewriteError(group.prefix, e) from e

        removed_olds = [f.remove(data_change=False) for f in group.files]
        logger.info(f"[Rewriter] ✓ '{group.prefix}': {len(group.files)} -> {len(new_adds)} files")
        return new_adds, removed_olds
