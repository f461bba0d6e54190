"""Configures the loguru logger for the engine and its API."""

import sys

from loguru import logger


def setup_logging(level: str = "INFO") -> None:
    """Replace the default sink with a stderr sink at ``level``."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function} - {message}",
    )
