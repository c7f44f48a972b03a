"""Pytest configuration: adds src/ and the shared fakes to sys.path."""

import logging
import os
import sys

import pytest

# Add src/ to Python path so tests can import from traverse_items
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))
# Make tests/fakes.py importable from every test directory
sys.path.insert(0, os.path.dirname(__file__))


@pytest.fixture(autouse=True)
def _reset_package_logger():
    """Drop handlers installed by setup_logging() so tests stay isolated."""
    yield
    package_logger = logging.getLogger("traverse_items")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.setLevel(logging.NOTSET)
