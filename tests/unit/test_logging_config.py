"""Unit tests for logging_config.py: package logger setup and execution ids."""

import logging
from pathlib import Path

import pytest

from traverse_items.logging_config import (
    COMBINED_LOG_FILENAME,
    ERROR_LOG_FILENAME,
    new_execution_id,
    setup_logging,
)


class TestNewExecutionId:
    def test_ids_are_short_and_unique(self) -> None:
        ids = {new_execution_id() for _ in range(100)}
        assert len(ids) == 100
        assert all(len(i) == 12 for i in ids)


class TestSetupLogging:
    def test_console_only_by_default(self) -> None:
        logger = setup_logging()

        assert logger.name == "traverse_items"
        assert logger.level == logging.DEBUG
        assert [type(h) for h in logger.handlers] == [logging.StreamHandler]

    def test_file_handlers_split_by_level(self, tmp_path: Path) -> None:
        logger = setup_logging("warning", tmp_path / "logs")
        child = logging.getLogger("traverse_items.traversal.engine")

        child.info("[test] info line")
        child.warning("[test] warning line")
        child.error("[test] error line")
        for handler in logger.handlers:
            handler.flush()

        combined = (tmp_path / "logs" / COMBINED_LOG_FILENAME).read_text(encoding="utf-8")
        errors = (tmp_path / "logs" / ERROR_LOG_FILENAME).read_text(encoding="utf-8")
        assert "info line" not in combined
        assert "warning line" in combined
        assert "error line" in combined
        assert "warning line" not in errors
        assert "error line" in errors

    def test_repeated_setup_replaces_handlers(self, tmp_path: Path) -> None:
        setup_logging("info", tmp_path)
        logger = setup_logging("info", tmp_path)

        assert len(logger.handlers) == 3

    def test_unknown_level_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown log level"):
            setup_logging("verbose")
