"""
Logging bootstrap shared by the indexer and API processes.
"""

import logging
import os
import sys

LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "panic": logging.CRITICAL,
}


def resolve_level(name: str) -> int:
    """Map a LOG_LEVEL value to a logging level (unknown values -> INFO)."""
    return _LEVELS.get((name or "").strip().lower(), logging.INFO)


def init_logging(message: str) -> logging.Logger:
    """Configure root logging from LOG_LEVEL and log the startup message."""
    logging.basicConfig(
        level=resolve_level(os.getenv("LOG_LEVEL", "info")),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        stream=sys.stdout,
    )
    logger = logging.getLogger("jindexer")
    logger.info(message)
    return logger
