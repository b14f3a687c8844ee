"""
Logging configuration.

Provides consistent log formatting across all services.
"""

from __future__ import annotations

import logging
import sys

from app.core.config import LOG_LEVEL

_loggers: dict[str, logging.Logger] = {}


def get_logger(name: str, level: str | int | None = None) -> logging.Logger:
    """Return a configured logger for a module.

    Args:
        name: Logger name (e.g. 'services.ledger')
        level: Logging level, defaults to LOG_LEVEL from the environment
    """
    if name in _loggers:
        return _loggers[name]

    logger = logging.getLogger(name)
    logger.setLevel(level or LOG_LEVEL)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter(
            "%(asctime)s [%(name)s] %(levelname)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    _loggers[name] = logger
    return logger
