"""Tests for logging setup."""

import io
import logging

import pytest
from rich.console import Console
from rich.logging import RichHandler

from rpc_resilience.logger import setup_logging


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def test_installs_single_rich_handler(root_logger):
    """Test that repeated setup does not stack handlers."""
    console = Console(file=io.StringIO())

    setup_logging("debug", console=console)
    setup_logging(logging.INFO, console=console)

    rich_handlers = [h for h in root_logger.handlers if isinstance(h, RichHandler)]
    assert len(rich_handlers) == 1
    assert root_logger.level == logging.INFO
    assert logging.getLogger("httpx").level == logging.WARNING


def test_level_from_environment(monkeypatch, root_logger):
    """Test the LOG_LEVEL fallback."""
    monkeypatch.setenv("LOG_LEVEL", "error")

    setup_logging(console=Console(file=io.StringIO()))

    assert root_logger.level == logging.ERROR
