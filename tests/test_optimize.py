"""Tests for building OPTIMIZE action sets."""
import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from compaction.errors import InvalidPredicateError
from compaction.optimize import ActionSetBuilder, AttemptMode
from compaction.rewriter import ParquetSink, Rewriter
from config import CompactionConfig
from txlog.actions import adds, removes
from txlog.errors import VersionNotFoundError


def _builder(table, **options):
    sink = ParquetSink(table.storage, table.table_path)
    return ActionSetBuilder(table.log, CompactionConfig(**options), Rewriter(sink))


def test_plan_only_returns_no_actions(table):
    """Test a plan attempt touches no data."""
    for _ in range(3):
        table.append({"date": "d1"})
    before = table.physical_data_files()
    builder = _builder(table)

    actions, version = builder.optimize(table.log.begin_transaction(), AttemptMode.PLAN_ONLY)

    assert actions == []
    assert version == 2
    assert builder.written_files == []
    assert table.physical_data_files() == before


def test_execute_rewrites_eligible_groups(table):
    """Test execute mode pairs new files with removes of the originals."""
    for _ in range(3):
        table.append({"date": "d1"})
    table.append({"date": "d2"})
    builder = _builder(table, compact_num_file_per_dir=2)

    actions, version = builder.optimize(table.log.begin_transaction(), AttemptMode.EXECUTE)

    assert version == 3
    new, removed = adds(actions), removes(actions)
    assert len(new) == 1
    assert new[0].partition_values == {"date": "d1"}
    assert len(removed) == 3
    assert builder.stats["groups_scanned"] == 2
    assert builder.stats["groups_compacted"] == 1
    assert builder.written_files == new


def test_compact_version_selects_older_snapshot(table):
    """Test compaction of the files live at an earlier version."""
    first = [table.append({"date": "d1"}) for _ in range(2)]
    table.append({"date": "d1"})
    builder = _builder(table, compact_version=1, compact_num_file_per_dir=1)

    actions, version = builder.optimize(table.log.begin_transaction(), AttemptMode.EXECUTE)

    assert version == 1
    assert {r.path for r in removes(actions)} == {f.path for f in first}


def test_missing_version_fails_before_any_io(table):
    """Test a compact version beyond the log aborts without writing files."""
    table.append({"date": "d1"})
    before = table.physical_data_files()
    builder = _builder(table, compact_version=9)

    for mode in AttemptMode:
        with pytest.raises(VersionNotFoundError):
            builder.optimize(table.log.begin_transaction(), mode)

    assert builder.written_files == []
    assert table.physical_data_files() == before


def test_empty_table_has_no_version(table):
    """Test an uninitialized table cannot be compacted but gets a log dir."""
    builder = _builder(table)
    with pytest.raises(VersionNotFoundError):
        builder.optimize(table.log.begin_transaction(), AttemptMode.PLAN_ONLY)
    assert table.storage.exists(table.log.log_path)


def test_invalid_predicate_rejected(table):
    """Test the predicate is validated on every attempt."""
    table.append({"date": "d1"})
    builder = _builder(table, partition_predicate="price > 1")
    with pytest.raises(InvalidPredicateError):
        builder.optimize(table.log.begin_transaction(), AttemptMode.PLAN_ONLY)


def test_predicate_limits_rewrite(table):
    """Test only matching partitions are rewritten."""
    for date in ("d1", "d1", "d2", "d2"):
        table.append({"date": date})
    builder = _builder(table, partition_predicate="date = 'd2'")

    actions, _ = builder.optimize(table.log.begin_transaction(), AttemptMode.EXECUTE)

    assert {r.partition_values["date"] for r in removes(actions)} == {"d2"}
    assert len(removes(actions)) == 2


def test_operation_parameters():
    """Test the commitInfo operation."""
    builder = ActionSetBuilder(None, CompactionConfig(compact_num_file_per_dir=4), rewriter=None)
    operation = builder.operation()
    assert operation.name == "OPTIMIZE"
    assert operation.parameters["minFilesPerDir"] == 4
