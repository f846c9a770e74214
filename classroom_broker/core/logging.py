"""Logging setup for the broker process."""
from __future__ import annotations

import logging

LOGGER_NAME = "classroom_broker"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | int = "INFO") -> logging.Logger:
    """Attach a single stream handler to the package logger.

    Safe to call repeatedly; the handler is only installed once.
    """

    logger = logging.getLogger(LOGGER_NAME)
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logger.setLevel(level)

    if not any(getattr(handler, "_classroom_broker", False) for handler in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._classroom_broker = True  # type: ignore[attr-defined]
        logger.addHandler(handler)

    return logger
