#!/usr/bin/env python3
"""exportpacker CLI: export pending records into batched archives.

Usage:
    python scripts/run_export.py --records-file records.json --output-root out/
    python scripts/run_export.py --store-url https://records.internal/api --batch-size 200
    python scripts/run_export.py --config export.yaml --max-workers 8 --stop-on-first-failure

Exit codes:
    0  every batch published and every record Processed
    1  configuration or store error; nothing was exported
    2  the run finished with failed batches, Errored records or store update failures
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Ensure project root is on sys.path for consistent import resolution
_ROOT = Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from config.settings import ExportConfig, load_config  # noqa: E402
from exportpacker.errors import ExternalStoreError  # noqa: E402
from exportpacker.utils.logging_utils import configure_logging  # noqa: E402

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_PARTIAL_FAILURE = 2


def build_arg_parser() -> argparse.ArgumentParser:
    """Build the argparse argument parser with ExportConfig fields as flags.

    Flags default to None so values from --config or the environment are
    only overridden when a flag is given.
    """
    parser = argparse.ArgumentParser(
        prog="run_export",
        description="exportpacker: batched, crash-safe archive export",
    )

    parser.add_argument(
        "--config", type=str, default=None, help="YAML file with ExportConfig fields"
    )

    # ── Record store ────────────────────────────────────────────────────────────
    store = parser.add_mutually_exclusive_group()
    store.add_argument(
        "--records-file", type=str, default=None, help="JSON records document (json backend)"
    )
    store.add_argument(
        "--store-url", type=str, default=None, help="Record service base URL (http backend)"
    )

    # ── Batching ────────────────────────────────────────────────────────────────
    parser.add_argument("--batch-size", type=int, default=None, help="Artifacts per archive")
    parser.add_argument(
        "--max-workers", type=int, default=None, help="Archives built concurrently"
    )
    parser.add_argument(
        "--stop-on-first-failure",
        action="store_true",
        default=None,
        help="Stop dispatching new batches after the first batch failure",
    )
    parser.add_argument(
        "--batch-timeout",
        type=float,
        default=None,
        dest="batch_timeout_seconds",
        help="Per-batch deadline in seconds (0 disables)",
    )

    # ── Archive format ──────────────────────────────────────────────────────────
    parser.add_argument(
        "--compression-level", type=int, default=None, help="Deflate level 0-9"
    )
    parser.add_argument(
        "--no-manifest",
        action="store_false",
        default=None,
        dest="write_manifest",
        help="Do not write <prefix>_manifest.json",
    )

    # ── Artifact resolution ─────────────────────────────────────────────────────
    parser.add_argument(
        "--path-field",
        type=str,
        action="append",
        default=None,
        dest="path_fields",
        metavar="FIELD",
        help="Sub-entry field holding an artifact path (repeatable)",
    )
    parser.add_argument(
        "--default-source-dir",
        type=str,
        default=None,
        help="Directory assumed for bare artifact file names",
    )

    # ── Output and logging ──────────────────────────────────────────────────────
    parser.add_argument(
        "--output-root", type=str, default=None, help="Directory archives are written to"
    )
    parser.add_argument(
        "--prefix",
        type=str,
        default=None,
        dest="export_name_prefix",
        help="Archive name prefix (default: export_<UTC timestamp>)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity level",
    )
    parser.add_argument("--log-file", type=str, default=None, help="Log file path")

    return parser


def args_to_config(args: argparse.Namespace) -> ExportConfig:
    """Convert parsed CLI arguments to an ExportConfig.

    Raises:
        ValueError: Invalid values or unknown keys in the YAML file.
        FileNotFoundError: --config names a missing file.
    """
    backend = None
    if args.store_url:
        backend = "http"
    elif args.records_file:
        backend = "json"

    return load_config(
        args.config,
        output_root=args.output_root,
        export_name_prefix=args.export_name_prefix,
        batch_size=args.batch_size,
        max_workers=args.max_workers,
        stop_on_first_failure=args.stop_on_first_failure,
        batch_timeout_seconds=args.batch_timeout_seconds,
        compression_level=args.compression_level,
        write_manifest=args.write_manifest,
        path_fields=args.path_fields,
        default_source_dir=args.default_source_dir,
        store_backend=backend,
        records_file=args.records_file,
        store_url=args.store_url,
        log_level=args.log_level,
    )


def setup_logging(log_level: str, log_file: Optional[str] = None) -> None:
    """Configure logging from config/logging.yaml with CLI overrides."""
    configure_logging(log_level=log_level, log_file=log_file)


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entrypoint: parse arguments, build config, run the export."""
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    logger = logging.getLogger("exportpacker.cli")
    try:
        config = args_to_config(args)
    except (ValueError, FileNotFoundError) as exc:
        setup_logging(args.log_level or "INFO", args.log_file)
        logger.error("Invalid configuration: %s", exc)
        return EXIT_CONFIG_ERROR

    setup_logging(config.log_level, args.log_file)
    logger.info(
        "exportpacker starting: backend=%s output=%s batch_size=%d workers=%d",
        config.store_backend,
        config.output_root,
        config.batch_size,
        config.max_workers,
    )

    import exportpacker.pipeline as pipeline

    try:
        result = pipeline.run(config)
    except ValueError as exc:
        logger.error("Export refused: %s", exc)
        return EXIT_CONFIG_ERROR
    except ExternalStoreError as exc:
        logger.error("Record store unavailable: %s", exc)
        return EXIT_CONFIG_ERROR
    except KeyboardInterrupt:
        logger.info("Export interrupted by user")
        return EXIT_PARTIAL_FAILURE

    summary = result.summary()
    logger.info(
        "Run %s: %d/%d batches published, %d records processed, %d errored",
        result.run_id,
        summary["succeeded"],
        summary["total_batches"],
        summary["records_processed"],
        summary["records_errored"],
    )
    return EXIT_OK if result.success else EXIT_PARTIAL_FAILURE


if __name__ == "__main__":
    sys.exit(main())
