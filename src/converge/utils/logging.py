"""Logging setup for converge: one stderr handler on the `converge` logger."""

import logging
import os
import sys
from typing import Optional, Union

ROOT_LOGGER = "converge"
LEVEL_ENV_VAR = "CONVERGE_LOG_LEVEL"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s] %(message)s"


def _parse_level(value: Optional[str], default: int) -> int:
    if not value:
        return default
    level = logging.getLevelName(value.strip().upper())
    return level if isinstance(level, int) else default


def setup_logging(level: Optional[Union[int, str]] = None, format_string: Optional[str] = None) -> logging.Logger:
    """
    Attach a stderr handler to the converge logger.

    Calling it again only adjusts the level. Log records do not propagate to
    the root logger, so embedding applications keep their own handlers.

    Args:
        level: Level name or number; defaults to CONVERGE_LOG_LEVEL, then INFO
        format_string: Custom format string (optional)
    """
    if level is None:
        level = _parse_level(os.getenv(LEVEL_ENV_VAR), logging.INFO)
    elif isinstance(level, str):
        level = _parse_level(level, logging.INFO)

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    logger.propagate = False

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(format_string or DEFAULT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)
    return logger


def set_level(level: int) -> None:
    """Adjust the converge logger level (used by --quiet)."""
    logging.getLogger(ROOT_LOGGER).setLevel(level)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for a specific module."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
