"""Logging setup for the command line entry points.

Library modules only create loggers with ``logging.getLogger(__name__)``;
handlers are installed here, once, by whoever owns the process.
"""

from __future__ import annotations

import logging
import sys

_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(
    level: int | str = logging.INFO,
    log_file: str | None = None,
) -> None:
    """Configure the ``meshstore`` logger namespace.

    Args:
        level: Logging level (e.g. logging.DEBUG or "INFO").
        log_file: Optional path to also write logs to.
    """
    logger = logging.getLogger("meshstore")
    logger.setLevel(level)

    # Avoid duplicate output when called twice in one process.
    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = logging.Formatter(_FORMAT, datefmt="%H:%M:%S")

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
