"""Logging setup for the command line entry point."""

from __future__ import annotations

import logging
import sys
from typing import List, Optional

LOGGER_NAME = "hls_offline"
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def setup_logging(verbose: bool = False, log_file: Optional[str] = None) -> logging.Logger:
    """
    Route ``hls_offline`` records to stderr, and to ``log_file`` when given.

    Handlers from an earlier call are closed and replaced, so running several
    CLI invocations in one process never prints a record twice. ``verbose``
    lowers the level to DEBUG, which adds per-task progress lines.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    formatter = logging.Formatter(LOG_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger
