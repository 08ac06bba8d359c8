"""
TransactionCoordinator - bounded optimistic retry loop for compaction.

With a retry budget of N, attempts are numbered 0..N:

    attempt i < N   PLAN_ONLY   open txn, validate, compare-only commit
    attempt N       EXECUTE     open txn, rewrite, compare-and-commit

A plan attempt that finds the log quiet jumps straight to the execute
attempt; one that sees a concurrent commit backs off and tries again
with the next index. The execute attempt runs at most once, so data is
rewritten at most once per run. Its outcome is final: Committed is a
success, Conflict or Fatal is a failure and the caller rolls back the
files it wrote.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from compaction.optimize import ActionSetBuilder, AttemptMode
from txlog.actions import Action, AddFile, RemoveFile, adds, removes
from txlog.log import CommitOutcome, Committed, Conflict, DeltaLog, Fatal

logger = logging.getLogger(__name__)


def attempt_mode(index: int, retry_budget: int) -> AttemptMode:
    """Only the attempt whose index equals the budget does real work."""
    return AttemptMode.EXECUTE if index >= retry_budget else AttemptMode.PLAN_ONLY


@dataclass
class AttemptRecord:
    """What happened in one attempt."""
    index: int
    mode: AttemptMode
    read_version: int
    target_version: int
    outcome: CommitOutcome


@dataclass
class CompactionResult:
    """Terminal outcome of a coordinator run."""
    actions: List[Action]
    target_version: int
    success: bool
    committed_version: Optional[int] = None
    written_files: List[AddFile] = field(default_factory=list)
    attempts: List[AttemptRecord] = field(default_factory=list)
    error: Optional[Exception] = None

    @property
    def added_files(self) -> List[AddFile]:
        return adds(self.actions)

    @property
    def removed_files(self) -> List[RemoveFile]:
        return removes(self.actions)

    @property
    def uncommitted_files(self) -> List[AddFile]:
        """Files written during the run that no committed version references."""
        if self.success:
            return []
        by_path: Dict[str, AddFile] = {}
        for add in self.added_files + self.written_files:
            by_path.setdefault(add.path, add)
        return list(by_path.values())


class TransactionCoordinator:
    """
    Drive compaction attempts against the log until a terminal outcome.

    Example:
        coordinator = TransactionCoordinator(log, builder, retry_budget=3)
        result = coordinator.run()
        if result.success:
            ...  # cleanup
        else:
            ...  # rollback result.uncommitted_files
    """

    def __init__(
        self,
        log: DeltaLog,
        builder: ActionSetBuilder,
        retry_budget: int = 0,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            log: Table log
            builder: Produces each attempt's actions
            retry_budget: Plan-only attempts allowed before the execute attempt
            backoff_seconds: Fixed wait after a conflict
            sleep: Blocking wait function
        """
        if retry_budget < 0:
            raise ValueError(f"retry_budget must be >= 0, got {retry_budget}")
        self.log = log
        self.builder = builder
        self.retry_budget = retry_budget
        self.backoff_seconds = backoff_seconds
        self.sleep = sleep

    def run(self) -> CompactionResult:
        attempts: List[AttemptRecord] = []
        in_flight: List[Action] = []
        target_version = -1
        index = 0
        self.builder.reset()

        while True:
            mode = attempt_mode(index, self.retry_budget)
            read_version = -1
            actions: List[Action] = []

            try:
                txn = self.log.begin_transaction()
                read_version = txn.read_version
                actions, target_version = self.builder.optimize(txn, mode)
                if mode is AttemptMode.EXECUTE:
                    in_flight = actions
                outcome = txn.commit(actions, self.builder.operation())
            except Exception as e:
                logger.error(f"[TransactionCoordinator] Attempt {index} failed: {e}", exc_info=True)
                outcome = Fatal(e)

            attempts.append(AttemptRecord(index, mode, read_version, target_version, outcome))

            if isinstance(outcome, Committed):
                if mode is AttemptMode.EXECUTE:
                    logger.info(
                        f"[TransactionCoordinator] ✓ Committed version {outcome.version} "
                        f"on attempt {index}"
                    )
                    return CompactionResult(
                        actions=in_flight,
                        target_version=target_version,
                        success=True,
                        committed_version=outcome.version,
                        attempts=attempts,
                    )
                logger.info(
                    f"[TransactionCoordinator] Log quiet at version {outcome.version}, "
                    f"executing"
                )
                index = self.retry_budget
                continue

            if isinstance(outcome, Conflict) and mode is AttemptMode.PLAN_ONLY:
                logger.info(
                    f"[TransactionCoordinator] Concurrent modification on attempt {index}, "
                    f"{self.retry_budget - index} tries left"
                )
                self.sleep(self.backoff_seconds)
                index += 1
                continue

            error = outcome.to_error() if isinstance(outcome, Conflict) else outcome.error
            logger.error(f"[TransactionCoordinator] ✗ Aborting after attempt {index}: {error}")
            return CompactionResult(
                actions=in_flight,
                target_version=target_version,
                success=False,
                written_files=self.builder.written_files,
                attempts=attempts,
                error=error,
            )
