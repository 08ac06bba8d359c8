"""Tests for the optimistic retry loop."""
import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from compaction.coordinator import CompactionResult, TransactionCoordinator, attempt_mode
from compaction.optimize import ActionSetBuilder, AttemptMode
from compaction.rewriter import ParquetSink, Rewriter
from config import CompactionConfig
from txlog.actions import AddFile, CommitInfo
from txlog.errors import ConflictError, VersionNotFoundError
from txlog.log import Committed, Conflict, Fatal


class ConcurrentWriter:
    """Appends through a second log handle right after selected transactions open."""

    def __init__(self, table, other, on_attempts):
        self.other = other
        self.on_attempts = set(on_attempts)
        self.opened = 0
        self._begin = table.log.begin_transaction
        table.log.begin_transaction = self.begin_transaction

    def begin_transaction(self):
        txn = self._begin()
        if self.opened in self.on_attempts:
            self.other.append({"date": "d1"})
        self.opened += 1
        return txn


def _coordinator(table, retry_budget=0, sleeps=None, **options):
    config = CompactionConfig(compact_retry_times_for_lock=retry_budget, **options)
    builder = ActionSetBuilder(
        table.log, config, Rewriter(ParquetSink(table.storage, table.table_path))
    )
    sleeps = sleeps if sleeps is not None else []
    return TransactionCoordinator(
        table.log,
        builder,
        retry_budget=retry_budget,
        backoff_seconds=config.retry_backoff_seconds,
        sleep=sleeps.append,
    )


@pytest.fixture
def small_files(table_factory):
    table = table_factory()
    for _ in range(3):
        table.append({"date": "d1"})
    return table


def test_attempt_mode():
    """Test only the attempt at the budget index executes."""
    assert [attempt_mode(i, 3) for i in range(4)] == [
        AttemptMode.PLAN_ONLY, AttemptMode.PLAN_ONLY, AttemptMode.PLAN_ONLY, AttemptMode.EXECUTE,
    ]
    assert attempt_mode(0, 0) is AttemptMode.EXECUTE


def test_no_contention_commits_next_version(small_files):
    """Test an uncontended run commits read_version + 1."""
    result = _coordinator(small_files).run()

    assert result.success
    assert result.committed_version == 3
    assert result.target_version == 2
    assert len(result.added_files) == 1
    assert len(result.removed_files) == 3
    assert result.uncommitted_files == []
    assert [a.mode for a in result.attempts] == [AttemptMode.EXECUTE]


def test_quiet_plan_jumps_to_execute(small_files):
    """Test a quiet plan attempt skips the remaining plan attempts."""
    sleeps = []
    result = _coordinator(small_files, retry_budget=3, sleeps=sleeps).run()

    assert result.success
    assert [(a.index, a.mode) for a in result.attempts] == [
        (0, AttemptMode.PLAN_ONLY), (3, AttemptMode.EXECUTE),
    ]
    assert result.attempts[0].outcome == Committed(2, wrote=False)
    assert sleeps == []


def test_plan_conflict_backs_off_and_retries(small_files, table_factory):
    """Test a concurrent append during planning is absorbed by a retry."""
    other = table_factory()
    other._next_id = 1000
    ConcurrentWriter(small_files, other, on_attempts=[0])
    sleeps = []

    result = _coordinator(small_files, retry_budget=2, sleeps=sleeps).run()

    assert result.success
    assert [a.mode for a in result.attempts] == [
        AttemptMode.PLAN_ONLY, AttemptMode.PLAN_ONLY, AttemptMode.EXECUTE,
    ]
    assert isinstance(result.attempts[0].outcome, Conflict)
    assert sleeps == [1.0]
    assert result.committed_version == 4
    # The concurrent file is live in the same directory and gets compacted too
    assert len(result.removed_files) == 4


def test_execute_runs_at_most_once(small_files, table_factory):
    """Test exhausting plan retries still executes exactly once."""
    other = table_factory()
    other._next_id = 1000
    ConcurrentWriter(small_files, other, on_attempts=[0, 1])

    result = _coordinator(small_files, retry_budget=2).run()

    modes = [a.mode for a in result.attempts]
    assert modes.count(AttemptMode.EXECUTE) == 1
    assert modes[-1] is AttemptMode.EXECUTE
    assert result.attempts[-1].index == 2
    assert result.success


def test_execute_conflict_aborts(small_files, table_factory):
    """Test a conflict on the execute attempt is a failure, not a success."""
    other = table_factory()
    other._next_id = 1000
    ConcurrentWriter(small_files, other, on_attempts=[0])

    result = _coordinator(small_files, retry_budget=0).run()

    assert not result.success
    assert result.committed_version is None
    assert isinstance(result.error, ConflictError)
    assert len(result.uncommitted_files) == 1
    assert small_files.log.current_version() == 3


def test_fatal_aborts_immediately(small_files):
    """Test a non-retryable failure ends the run on the attempt it occurs."""
    sleeps = []
    result = _coordinator(small_files, retry_budget=3, sleeps=sleeps, compact_version=42).run()

    assert not result.success
    assert len(result.attempts) == 1
    assert isinstance(result.attempts[0].outcome, Fatal)
    assert isinstance(result.error, VersionNotFoundError)
    assert result.uncommitted_files == []
    assert sleeps == []


def test_nothing_to_compact_is_success(table):
    """Test a run with no eligible groups succeeds without a new version."""
    table.append({"date": "d1"})
    result = _coordinator(table, compact_num_file_per_dir=2).run()

    assert result.success
    assert result.actions == []
    assert result.committed_version == 0
    assert table.log.current_version() == 0


def test_negative_budget_rejected(table):
    """Test retry_budget >= 0."""
    with pytest.raises(ValueError):
        TransactionCoordinator(table.log, builder=None, retry_budget=-1)


def test_five_files_threshold_three(table):
    """Test one directory of 5 files under a threshold of 3 commits at read version + 1."""
    for _ in range(5):
        table.append({"date": "d1"})

    result = _coordinator(table, compact_num_file_per_dir=3).run()

    assert result.success
    assert len(result.removed_files) == 5
    assert 0 < len(result.added_files) < 5
    assert result.committed_version == result.attempts[-1].read_version + 1 == 5


def test_racing_coordinators(table, table_factory):
    """Test the loser of a race retries and sees the winner's commit."""
    for date in ("a", "a", "a", "b", "b", "b"):
        table.append({"date": date})
    other = table_factory()
    winner = _coordinator(other, partition_predicate="date = 'a'")
    winner_results = []

    begin = table.log.begin_transaction
    def begin_while_other_commits():
        txn = begin()
        if not winner_results:
            winner_results.append(winner.run())
        return txn
    table.log.begin_transaction = begin_while_other_commits

    loser = _coordinator(table, retry_budget=1, compact_num_file_per_dir=2)
    result = loser.run()

    assert winner_results[0].committed_version == 6
    assert isinstance(result.attempts[0].outcome, Conflict)
    assert isinstance(result.attempts[0].outcome.to_error(), ConflictError)
    assert result.attempts[-1].read_version == 6
    assert result.success
    assert result.committed_version == 7
    # The winner's rewritten file is visible and below the threshold, so only 'b' is compacted
    live = table.log.update().files
    winner_add = winner_results[0].added_files[0]
    assert winner_add.path in live
    assert {r.partition_values["date"] for r in result.removed_files} == {"b"}
    assert len(live) == 2


def test_compact_version_beyond_history(table):
    """Test compactVersion 7 on a log with versions 0-5 touches no files."""
    for _ in range(6):
        table.append({"date": "d1"})
    before = table.physical_data_files()

    result = _coordinator(table, compact_version=7).run()

    assert not result.success
    assert isinstance(result.error, VersionNotFoundError)
    assert table.physical_data_files() == before
    assert table.log.current_version() == 5


def test_result_file_views():
    """Test added and removed files are split out of the action list."""
    kept = AddFile(path="date=d/new.parquet", size=10)
    old = AddFile(path="date=d/old.parquet", size=5)
    stray = AddFile(path="date=d/stray.parquet", size=3)
    removal = old.remove()
    actions = [removal, kept, CommitInfo(operation="OPTIMIZE")]

    committed = CompactionResult(actions, target_version=1, success=True, committed_version=1)
    assert committed.added_files == [kept]
    assert committed.removed_files == [removal]
    assert committed.uncommitted_files == []

    failed = CompactionResult(actions, target_version=1, success=False, written_files=[kept, stray])
    assert failed.uncommitted_files == [kept, stray]
