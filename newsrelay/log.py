"""
Logging setup.

Modules obtain loggers through get_logger(__name__); the process entry
point calls setup_logging() once.
"""

from __future__ import annotations
import logging
import os
import sys
from typing import Optional, Union


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
ROOT_LOGGER = "newsrelay"

_configured = False


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)


def setup_logging(level: Optional[Union[str, int]] = None) -> None:
    """
    Configure the package logger with a console handler.

    Level comes from the argument, then NEWSRELAY_LOG_LEVEL, then INFO.
    Calling it again only changes the level.
    """
    global _configured

    if level is None:
        level = os.environ.get("NEWSRELAY_LOG_LEVEL", "INFO")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)

    if not _configured:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
        _configured = True
