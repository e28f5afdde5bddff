"""Unified logging configuration for the uigen package."""
from __future__ import annotations

import logging
import os
from pathlib import Path

# Log directory; configurable via UIGEN_LOG_DIR
LOG_DIR = Path(os.getenv("UIGEN_LOG_DIR", "logs"))

# Prevent duplicate handlers
_configured_loggers: set[str] = set()


def setup_logger(name: str = "uigen", filename: str = "uigen.log", level: int = logging.INFO) -> logging.Logger:
    """Setup a logger with file and console handlers.

    Args:
        name: Logger name; module loggers under ``uigen.*`` inherit its handlers.
        filename: Log file name inside ``LOG_DIR``.
        level: Minimum level for both handlers.

    Returns:
        Configured logger instance
    """
    if name in _configured_loggers:
        return logging.getLogger(name)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False

    LOG_DIR.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(LOG_DIR / filename, encoding="utf-8")
    fh.setLevel(level)
    fh.setFormatter(logging.Formatter("%(asctime)s [%(name)s] [%(levelname)s] %(message)s"))

    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(message)s"))

    logger.addHandler(fh)
    logger.addHandler(sh)

    _configured_loggers.add(name)
    return logger
