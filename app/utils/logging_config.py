"""
Logging configuration.

Configures loguru sinks for indexer processes (scheduler, workers, scripts).
"""

import sys

from loguru import logger


def setup_logging(component: str, level: str = "INFO") -> None:
    """
    Configure logger with stderr output and file rotation.

    Args:
        component: Process name, used for the log file name
        level: Minimum log level
    """
    logger.remove()
    logger.add(sys.stderr, level=level)
    logger.add(
        f"logs/{component}.log",
        rotation="1 day",
        retention="7 days",
        level=level,
        encoding="utf-8",
    )

    logger.info(f"Starting transfer indexer {component}...")
