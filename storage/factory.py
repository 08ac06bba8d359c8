"""
Storage factory for creating storage backends from configuration.
"""
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from config import CompactorConfig, StorageLayerConfig

from storage.base import StorageBackend, LocalStorage, S3Storage

logger = logging.getLogger(__name__)


def create_backend(layer_config: "StorageLayerConfig") -> StorageBackend:
    """
    Create storage backend from a storage layer config.

    Args:
        layer_config: StorageLayerConfig

    Returns:
        StorageBackend instance
    """
    backend = layer_config.backend
    base_dir = layer_config.base_dir

    if backend == "local":
        logger.info(f"[storage] Initializing local storage: {base_dir}")
        return LocalStorage(base_path=base_dir)

    elif backend == "s3":
        if not layer_config.s3:
            raise ValueError("S3 backend selected but no S3 configuration provided")

        # Use s3.bucket if specified, otherwise base_dir
        bucket = layer_config.s3.bucket or base_dir

        logger.info(f"[storage] Initializing S3 storage: {bucket}")
        return S3Storage(
            bucket=bucket,
            region=layer_config.s3.region,
            aws_access_key_id=layer_config.s3.aws_access_key_id,
            aws_secret_access_key=layer_config.s3.aws_secret_access_key,
            aws_session_token=layer_config.s3.aws_session_token,
            endpoint_url=layer_config.s3.endpoint_url,
        )

    else:
        raise ValueError(f"Unknown storage backend: {backend}")


def create_table_storage(config: "CompactorConfig") -> StorageBackend:
    """
    Create the storage backend holding the table and its log.

    Args:
        config: delta-compactor configuration

    Returns:
        StorageBackend instance
    """
    return create_backend(config.storage)
