"""Central logging configuration utilities for logviewer.

Logging stays on the standard library. The CLI calls `configure_logging` once;
library callers may configure logging themselves.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

_LEVEL_MAP = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "NOTSET": logging.NOTSET,
}


def configure_logging(level: str | int | None = None, *, force: bool = False) -> logging.Logger:
    """Configure root logger and return the package logger.

    Order of precedence for level:
    1. Explicit `level` argument if given
    2. Environment variable `LOGVIEWER_LOG_LEVEL`
    3. Fallback to `INFO`
    """
    if level is None:
        level = os.environ.get("LOGVIEWER_LOG_LEVEL", "INFO")

    invalid_level = None
    if isinstance(level, str):
        name = level.strip().upper()
        if name not in _LEVEL_MAP:
            invalid_level = level
        level = _LEVEL_MAP.get(name, logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=force,
    )
    logger = logging.getLogger("logviewer")
    if invalid_level:
        logger.warning(
            "Invalid LOGVIEWER_LOG_LEVEL %r; falling back to INFO. Valid values: %s.",
            invalid_level,
            ", ".join(sorted(_LEVEL_MAP)),
        )
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get a project logger, configuring logging lazily on first access."""
    logger = logging.getLogger(name or "logviewer")
    if not logging.getLogger().handlers:  # pragma: no cover - defensive
        configure_logging()
    return logger


__all__ = ["configure_logging", "get_logger"]
