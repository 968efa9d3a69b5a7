"""Logging helpers for rpc_resilience."""

import logging
import os

from rich.console import Console
from rich.logging import RichHandler

LOG_LEVEL_ENV = "LOG_LEVEL"


def setup_logging(level: int | str | None = None, console: Console | None = None) -> None:
    """
    Install a rich log handler on the root logger.

    Parameters
    ----------
    level : int | str | None
        Log level. Read from ``LOG_LEVEL`` (default INFO) if None.
    console : Console | None
        Console to log to. Logs go to stderr if None.

    """
    if level is None:
        level = os.environ.get(LOG_LEVEL_ENV, "INFO")
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    root = logging.getLogger()
    if not any(isinstance(handler, RichHandler) for handler in root.handlers):
        handler = RichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s", datefmt="[%X]"))
        root.addHandler(handler)
    root.setLevel(level)

    # Suppress per-request logs from the HTTP client
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


__all__ = ["setup_logging"]
