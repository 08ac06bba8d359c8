"""
Partition predicate evaluation.

Predicates are SQL boolean expressions over partition columns, e.g.

    date = '2025-11-20' AND product_id IN ('BTC-USD', 'ETH-USD')

Partition values are stored as strings in the log, so comparisons are
string comparisons. Evaluation is delegated to the Polars SQL engine
over a frame holding only the partition columns, one row per distinct
combination of values; any other column name fails to resolve.
"""
import logging
from typing import List, Optional, Sequence, Set, Tuple

import polars as pl

from compaction.errors import InvalidPredicateError
from txlog.actions import AddFile

logger = logging.getLogger(__name__)

_TABLE = "files"


def _partition_key(partition_columns: Sequence[str], f: AddFile) -> Tuple[Optional[str], ...]:
    return tuple(f.partition_values.get(col) for col in partition_columns)


def _partition_frame(partition_columns: Sequence[str], files: Sequence[AddFile]) -> pl.DataFrame:
    keys = sorted({_partition_key(partition_columns, f) for f in files}, key=repr)
    return pl.DataFrame(
        {
            col: pl.Series(col, [key[i] for key in keys], dtype=pl.Utf8)
            for i, col in enumerate(partition_columns)
        }
    )


def _matching_keys(frame: pl.DataFrame, predicate: str) -> Set[Tuple[Optional[str], ...]]:
    query = f"SELECT * FROM {_TABLE} WHERE {predicate}"
    try:
        matched = pl.SQLContext(frames={_TABLE: frame}).execute(query, eager=True)
    except pl.exceptions.PolarsError as e:
        raise InvalidPredicateError(f"Invalid partition predicate '{predicate}': {e}") from e
    return set(matched.select(frame.columns).iter_rows())


def validate_predicate(partition_columns: Sequence[str], predicate: str) -> None:
    """
    Check that `predicate` parses and only references partition columns.

    Raises:
        InvalidPredicateError
    """
    if not partition_columns:
        raise InvalidPredicateError(
            f"Partition predicate '{predicate}' given but the table is not partitioned"
        )
    _matching_keys(_partition_frame(partition_columns, []), predicate)


def filter_files(
    partition_columns: Sequence[str],
    files: Sequence[AddFile],
    predicate: str,
) -> List[AddFile]:
    """
    Files whose partition values satisfy `predicate`, in input order.

    Args:
        partition_columns: The table's partition columns
        files: Candidate files
        predicate: SQL boolean expression over partition columns

    Returns:
        Matching files
    """
    validate_predicate(partition_columns, predicate)
    if not files:
        return []

    keys = _matching_keys(_partition_frame(partition_columns, files), predicate)
    matched = [f for f in files if _partition_key(partition_columns, f) in keys]
    logger.debug(f"[predicates] '{predicate}' matched {len(matched)}/{len(files)} files")
    return matched
