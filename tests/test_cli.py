"""Tests for the run_compaction command line."""
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from scripts.run_compaction import build_parser, main, resolve_config


def _populate(table, count=3):
    for _ in range(count):
        table.append({"date": "2025-11-20"})


def test_overrides_merge_into_config(temp_dir):
    """Test flags override compaction options by name."""
    args = build_parser().parse_args([
        "tables/events",
        "--base-dir", str(temp_dir),
        "--min-file-count", "4",
        "--retry-times", "2",
        "--where", "date = '2025-11-20'",
    ])
    config = resolve_config(args)

    assert config.table_path == "tables/events"
    assert config.storage.backend == "local"
    assert config.compaction.compact_num_file_per_dir == 4
    assert config.compaction.compact_retry_times_for_lock == 2
    assert config.compaction.partition_predicate == "date = '2025-11-20'"
    assert config.compaction.target_file_size_mb == 128


def test_compacts_table(table, temp_dir):
    """Test a successful run exits 0 and commits one new version."""
    _populate(table)

    code = main([table.table_path, "--base-dir", str(temp_dir), "--min-file-count", "2"])

    assert code == 0
    assert table.log.current_version() == 3
    assert table.log.update().num_files == 1


def test_checkpoint_flag(table, temp_dir):
    """Test --checkpoint writes a checkpoint before compacting."""
    _populate(table)

    assert main([table.table_path, "--base-dir", str(temp_dir), "--checkpoint"]) == 0
    assert table.log.last_checkpoint() == 2


def test_missing_table_path_is_config_error(temp_dir):
    """Test exit code 2 without a table path."""
    assert main(["--base-dir", str(temp_dir)]) == 2


def test_invalid_min_file_count_is_config_error(temp_dir):
    """Test option validation errors exit with 2."""
    assert main(["tables/events", "--base-dir", str(temp_dir), "--min-file-count", "0"]) == 2


def test_aborted_run_exits_1(table, temp_dir):
    """Test a run that cannot commit exits 1 and changes nothing."""
    _populate(table)

    code = main([table.table_path, "--base-dir", str(temp_dir), "--compact-version", "99"])

    assert code == 1
    assert table.log.current_version() == 2
