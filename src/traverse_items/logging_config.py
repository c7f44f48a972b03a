"""Runtime logging configuration and execution-id generation.

Log records follow the ``[function] message; key:value;key:value`` convention
used across the package. Every traversal step carries an ``execution_id``
field so a causal chain can be reconstructed across asynchronous task
boundaries.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path

PACKAGE_LOGGER = "traverse_items"
LOG_FORMAT = "%(asctime)s\t%(levelname)s\t%(name)s\t%(message)s"
COMBINED_LOG_FILENAME = "scriptLog-combined.log"
ERROR_LOG_FILENAME = "scriptLog-error.log"
# Correlation placeholder for log lines outside any traversal task
NO_EXECUTION_ID = "N/A"


def new_execution_id() -> str:
    """Generate an opaque id for one traversal step."""
    return uuid.uuid4().hex[:12]


def setup_logging(level: str = "INFO", log_dir: str | Path | None = None) -> logging.Logger:
    """Configure the package logger.

    Installs a console handler at DEBUG and, when ``log_dir`` is given, a
    combined log file at ``level`` and an error-only log file.

    Args:
        level: Level name for the combined log file (e.g. ``"info"``).
        log_dir: Directory for log files; created if missing. ``None`` logs to
            the console only.

    Returns:
        The configured package logger.
    """
    file_level = logging.getLevelName(level.upper())
    if not isinstance(file_level, int):
        raise ValueError(f"Unknown log level: {level}")

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(logging.DEBUG)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setLevel(logging.DEBUG)
    console.setFormatter(formatter)
    package_logger.addHandler(console)

    if log_dir is not None:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)

        combined = logging.FileHandler(directory / COMBINED_LOG_FILENAME, encoding="utf-8")
        combined.setLevel(file_level)
        combined.setFormatter(formatter)
        package_logger.addHandler(combined)

        errors = logging.FileHandler(directory / ERROR_LOG_FILENAME, encoding="utf-8")
        errors.setLevel(logging.ERROR)
        errors.setFormatter(formatter)
        package_logger.addHandler(errors)

    # Keep msal and urllib chatter out of the run log.
    logging.getLogger("msal").setLevel(logging.WARNING)
    return package_logger
