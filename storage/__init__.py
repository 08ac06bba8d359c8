"""Storage backends for delta-compactor."""
from .base import StorageBackend, LocalStorage, S3Storage
from .factory import create_backend, create_table_storage

__all__ = [
    "StorageBackend",
    "LocalStorage",
    "S3Storage",
    "create_backend",
    "create_table_storage",
]
