"""Configuration management for delta-compactor."""
import os
import yaml
from pathlib import Path
from typing import Optional, Dict, Any, Literal
from pydantic import BaseModel, ConfigDict, Field


class S3Config(BaseModel):
    """S3-specific configuration."""
    bucket: str = ""
    region: Optional[str] = None  # Auto-detected if None
    aws_access_key_id: Optional[str] = None  # Uses environment/IAM role if None
    aws_secret_access_key: Optional[str] = None
    aws_session_token: Optional[str] = None
    endpoint_url: Optional[str] = None  # For S3-compatible services (MinIO, etc.)


class StorageLayerConfig(BaseModel):
    """Storage configuration for the table's filesystem."""
    backend: Literal["local", "s3"] = "local"
    base_dir: str = "./data"
    s3: Optional[S3Config] = Field(default_factory=S3Config)


class LogConfig(BaseModel):
    """Transaction log settings."""
    checkpoint_interval: int = Field(10, ge=0)  # 0 disables automatic checkpoints


class CompactionConfig(BaseModel):
    """
    Options recognized by the compaction command.

    Accepts both the snake_case field names and the option names used by
    table writers (compactVersion, compactNumFilePerDir,
    compactRetryTimesForLock, replaceWhere), so a raw option map can be
    validated directly:

        CompactionConfig.model_validate({"compactNumFilePerDir": "3"})
    """
    model_config = ConfigDict(populate_by_name=True)

    # Snapshot version to compact; None means the transaction's read version
    compact_version: Optional[int] = Field(None, alias="compactVersion", ge=0)

    # Minimum files in a directory before it is rewritten
    compact_num_file_per_dir: int = Field(1, alias="compactNumFilePerDir", ge=1)

    # Plan-only attempts allowed before the single execute attempt
    compact_retry_times_for_lock: int = Field(0, alias="compactRetryTimesForLock", ge=0)

    # SQL predicate over partition columns, e.g. "date = '2025-11-20'"
    partition_predicate: Optional[str] = Field(None, alias="replaceWhere")

    retry_backoff_seconds: float = Field(1.0, ge=0)
    target_file_size_mb: int = Field(128, ge=1)
    compression: str = "zstd"


class CompactorConfig(BaseModel):
    """Root configuration for delta-compactor."""
    # Storage backend holding the table
    storage: StorageLayerConfig = Field(default_factory=StorageLayerConfig)

    # Table location relative to the storage root
    table_path: str = ""

    log: LogConfig = Field(default_factory=LogConfig)
    compaction: CompactionConfig = Field(default_factory=CompactionConfig)

    # Logging
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def load_config(config_path: Optional[str] = None) -> CompactorConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to config file. If None, looks for:
            1. DELTA_COMPACTOR_CONFIG environment variable
            2. ./config/config.yaml
            3. ~/.delta-compactor/config.yaml

    Returns:
        CompactorConfig instance
    """
    if config_path is None:
        config_path = os.environ.get("DELTA_COMPACTOR_CONFIG")

        if config_path is None:
            candidates = [
                Path("./config/config.yaml"),
                Path.home() / ".delta-compactor" / "config.yaml",
            ]
            for candidate in candidates:
                if candidate.exists():
                    config_path = str(candidate)
                    break

    if config_path is None:
        raise FileNotFoundError(
            "No config file found. Set DELTA_COMPACTOR_CONFIG or create config/config.yaml"
        )

    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        yaml_data = yaml.safe_load(f) or {}

    return CompactorConfig(**yaml_data)


def save_example_config(output_path: str = "./config/config.example.yaml") -> Path:
    """
    Save an example configuration file.

    Args:
        output_path: Where to save the example config

    Returns:
        Path of the written file
    """
    example: Dict[str, Any] = {
        "storage": {
            "backend": "local",
            "base_dir": "./data",
        },
        "table_path": "processed/coinbase/ticker",
        "log": {
            "checkpoint_interval": 10,
        },
        "compaction": {
            "compactNumFilePerDir": 5,
            "compactRetryTimesForLock": 3,
            "replaceWhere": "date = '2025-11-20'",
            "retry_backoff_seconds": 1.0,
            "target_file_size_mb": 128,
            "compression": "zstd",
        },
        "log_level": "INFO",
    }

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w') as f:
        yaml.dump(example, f, default_flow_style=False, sort_keys=False)

    return output_path
