"""Naming helpers for files under a table's _delta_log/ directory."""
import re

LOG_DIR_NAME = "_delta_log"
LAST_CHECKPOINT_NAME = "_last_checkpoint"

_DELTA_FILE_RE = re.compile(r"^(\d{20})\.json$")
_CHECKPOINT_FILE_RE = re.compile(r"^(\d{20})\.checkpoint\.parquet$")


def delta_file_name(version: int) -> str:
    return f"{version:020d}.json"


def checkpoint_file_name(version: int) -> str:
    return f"{version:020d}.checkpoint.parquet"


def is_delta_file(name: str) -> bool:
    return _DELTA_FILE_RE.match(name) is not None


def is_checkpoint_file(name: str) -> bool:
    return _CHECKPOINT_FILE_RE.match(name) is not None


def get_file_version(name: str) -> int:
    """Version encoded in a delta or checkpoint file name."""
    match = _DELTA_FILE_RE.match(name) or _CHECKPOINT_FILE_RE.match(name)
    if match is None:
        raise ValueError(f"Not a log file name: {name}")
    return int(match.group(1))


def checksum_path(path: str) -> str:
    """Companion checksum sidecar for a data file: dir/name -> dir/.name.crc"""
    directory, sep, name = path.rpartition("/")
    return f"{directory}{sep}.{name}.crc"
