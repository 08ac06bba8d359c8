"""Errors raised by the transaction log."""


class DeltaLogError(Exception):
    """Base class for transaction log failures."""


class VersionNotFoundError(DeltaLogError):
    """A requested version cannot be reconstructed from the log."""

    def __init__(self, version: int, earliest: int, latest: int):
        self.version = version
        self.earliest = earliest
        self.latest = latest
        super().__init__(
            f"Cannot time travel to version {version}. "
            f"Available versions: [{earliest}, {latest}]"
        )


class ConflictError(DeltaLogError):
    """The log advanced past the transaction's read version."""

    def __init__(self, read_version: int, current_version: int):
        self.read_version = read_version
        self.current_version = current_version
        super().__init__(
            f"Concurrent modification: transaction read version {read_version} "
            f"but log is at version {current_version}"
        )


class InvalidActionsError(DeltaLogError):
    """A proposed action set is inconsistent with the read snapshot."""


class LogCorruptedError(DeltaLogError):
    """A log file is missing or unreadable where one is required."""
