"""Config package."""
from .config import (
    CompactionConfig,
    CompactorConfig,
    LogConfig,
    S3Config,
    StorageLayerConfig,
    load_config,
    save_example_config,
)

__all__ = [
    "CompactionConfig",
    "CompactorConfig",
    "LogConfig",
    "S3Config",
    "StorageLayerConfig",
    "load_config",
    "save_example_config",
]
