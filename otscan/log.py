"""Centralised logging configuration for otscan."""
from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: int = logging.INFO) -> None:
    """Configure the root ``otscan`` logger.

    Call once during application startup (CLI or web).  Subsequent calls
    only adjust the level; the handler is added once.
    """
    logger = logging.getLogger("otscan")
    logger.setLevel(level)
    if logger.handlers:
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False


def get_logger(name: str) -> logging.Logger:
    """Return a child logger under the ``otscan`` namespace."""
    return logging.getLogger(f"otscan.{name}")
