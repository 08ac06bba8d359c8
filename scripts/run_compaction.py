#!/usr/bin/env python
"""
Script to compact the small files of a table.

Usage:
    python scripts/run_compaction.py processed/coinbase/level2 --base-dir F:/
    python scripts/run_compaction.py processed/coinbase/level2 --min-file-count 5 --retry-times 3
    python scripts/run_compaction.py processed/coinbase/level2 --where "date = '2025-11-20'"
    python scripts/run_compaction.py --config config/config.yaml
"""
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Add project root to path so we can import the packages
project_root = Path(__file__).resolve().parent.parent
sys.path.append(str(project_root))

from config import CompactorConfig, load_config
from compaction import CompactTableJob
from storage import create_table_storage
from txlog import DeltaLog


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Compact small files of a log-structured table into fewer larger files."
    )

    parser.add_argument(
        "table_path",
        type=str,
        nargs="?",
        default=None,
        help="Table path relative to the storage root (overrides table_path in config)"
    )

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML config (default: DELTA_COMPACTOR_CONFIG or ./config/config.yaml)"
    )

    parser.add_argument(
        "--base-dir",
        type=str,
        default=None,
        help="Local storage root; skips config file lookup when given"
    )

    parser.add_argument(
        "--compact-version",
        type=int,
        default=None,
        help="Snapshot version to compact (default: latest)"
    )

    parser.add_argument(
        "--min-file-count",
        type=int,
        default=None,
        help="Minimum number of files in a directory to trigger compaction (default: 1)"
    )

    parser.add_argument(
        "--retry-times",
        type=int,
        default=None,
        help="Plan-only attempts allowed under contention before the rewrite (default: 0)"
    )

    parser.add_argument(
        "--where",
        type=str,
        default=None,
        help="Partition predicate, e.g. \"date = '2025-11-20'\""
    )

    parser.add_argument(
        "--target-size-mb",
        type=int,
        default=None,
        help="Target size of rewritten files in MB (default: 128)"
    )

    parser.add_argument(
        "--backoff-seconds",
        type=float,
        default=None,
        help="Wait after a conflicting commit before retrying (default: 1.0)"
    )

    parser.add_argument(
        "--sort-by",
        nargs="+",
        help="Columns to sort rewritten data by (e.g. --sort-by timestamp product_id)"
    )

    parser.add_argument(
        "--checkpoint",
        action="store_true",
        help="Write a log checkpoint before compacting so old log files can be cleaned up"
    )

    return parser


def resolve_config(args: argparse.Namespace) -> CompactorConfig:
    if args.base_dir and not args.config:
        config = CompactorConfig(storage={"backend": "local", "base_dir": args.base_dir})
    else:
        config = load_config(args.config)

    if args.table_path:
        config.table_path = args.table_path
    if args.base_dir:
        config.storage.base_dir = args.base_dir

    overrides = {
        "compact_version": args.compact_version,
        "compact_num_file_per_dir": args.min_file_count,
        "compact_retry_times_for_lock": args.retry_times,
        "partition_predicate": args.where,
        "target_file_size_mb": args.target_size_mb,
        "retry_backoff_seconds": args.backoff_seconds,
    }
    compaction = config.compaction.model_dump()
    compaction.update({k: v for k, v in overrides.items() if v is not None})
    config.compaction = type(config.compaction).model_validate(compaction)

    if not config.table_path:
        raise ValueError("No table path given (argument or table_path in config)")
    return config


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = resolve_config(args)
    except (FileNotFoundError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=config.log_level,
        format=config.log_format,
    )
    logger = logging.getLogger("run_compaction")

    logger.info(f"Starting compaction for: {config.table_path}")

    try:
        storage = create_table_storage(config)
        log = DeltaLog(storage, config.table_path, config.log.checkpoint_interval)

        if args.checkpoint and log.current_version() >= 0:
            log.checkpoint()

        job = CompactTableJob(log, config.compaction, sort_by=args.sort_by)
        stats = job.run()

        if not stats["success"]:
            logger.error(f"Compaction aborted: {stats['error']}")
            return 1

        if stats["groups_compacted"] > 0:
            logger.info("Compaction completed successfully.")
        else:
            logger.info("No directories required compaction.")
        return 0

    except Exception as e:
        logger.error(f"Compaction failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
