"""delta-compactor - optimistic small-file compaction for log-structured tables."""

__version__ = "0.1.0"
__license__ = "MIT"

from config import CompactorConfig, load_config

__all__ = ["CompactorConfig", "load_config", "__version__"]
