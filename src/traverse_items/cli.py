"""Command-line entry point: ``traverse-items --config config.json``."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from traverse_items.config import DEFAULT_CONFIG_PATH, ConfigError, load_config
from traverse_items.logging_config import setup_logging
from traverse_items.orchestration.runner import runner_from_config

logger = logging.getLogger(__name__)

__version__ = "0.1.0"

EXIT_OK = 0
EXIT_RUN_FAILED = 1
EXIT_CONFIG_ERROR = 9


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="traverse-items",
        description="Traverse every item owned by tenant users and apply a per-item action.",
    )
    parser.add_argument(
        "--config",
        "-c",
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to the JSON configuration file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Load configuration, run the traversal and report the outcome.

    Returns:
        Process exit status: 0 on success, 9 on configuration errors, 1 when
        the run itself fails.
    """
    args = build_parser().parse_args(argv)
    setup_logging()

    try:
        config = load_config(args.config)
        setup_logging(config.log_level, config.log_directory)
        runner = runner_from_config(config)
    except (ConfigError, ValueError) as exc:
        logger.error("[main] invalid configuration; detail:%s", exc)
        return EXIT_CONFIG_ERROR

    try:
        summary = asyncio.run(runner.run())
    except ConfigError as exc:
        # Input files named by the configuration are only read once the run starts
        logger.error("[main] invalid configuration; detail:%s", exc)
        return EXIT_CONFIG_ERROR
    except Exception:
        logger.exception("[main] traversal run failed")
        return EXIT_RUN_FAILED

    logger.info(
        "[main] traversal finished; users_processed:%d;audit_rows:%d;report:%s",
        summary.users_processed,
        summary.audit_rows,
        summary.report_path,
    )
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
