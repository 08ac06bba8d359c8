"""Errors raised by the compaction pipeline."""


class CompactionError(Exception):
    """Base class for compaction failures."""


class RewriteError(CompactionError):
    """Reading or writing the files of a group failed."""

    def __init__(self, prefix: str, cause: Exception):
        self.prefix = prefix
        self.cause = cause
        super().__init__(f"Failed to rewrite group '{prefix}': {cause}")


class InvalidPredicateError(CompactionError):
    """A partition predicate is malformed or references non-partition columns."""


class CleanupError(CompactionError):
    """A best-effort delete failed. Recorded in a CleanupReport, never raised."""
