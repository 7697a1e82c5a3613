"""
Logging setup for the ``starorm`` logger hierarchy.

Every module logs through ``logging.getLogger(__name__)``; this only
attaches handlers and a level to the package logger. Calling it again
replaces the handlers it installed rather than adding duplicates.
"""

import logging
from typing import Optional

from .config import LoggingConfig

LOGGER_NAME = "starorm"

_installed: list = []


def setup_logging(config: Optional[LoggingConfig] = None) -> logging.Logger:
    """Configure the ``starorm`` logger from ``config`` and return it."""
    config = config or LoggingConfig()
    logger = logging.getLogger(LOGGER_NAME)

    for handler in _installed:
        logger.removeHandler(handler)
        handler.close()
    _installed.clear()

    formatter = logging.Formatter(config.format)
    handlers = [logging.StreamHandler()]
    if config.file_path:
        handlers.append(logging.FileHandler(config.file_path))

    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        _installed.append(handler)

    logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))
    return logger
