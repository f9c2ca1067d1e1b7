"""Utility functions for the trade bot."""

import logging
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def setup_logging(
    level: str = "INFO",
    format_str: Optional[str] = None,
) -> logging.Logger:
    """
    Set the level of the tradebot loggers.

    A root handler is installed only when the host application has not
    configured one, so embedding applications keep their own formatting.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_str: Format of the installed root handler

    Returns:
        The package logger
    """
    if not logging.getLogger().handlers:
        logging.basicConfig(
            format=format_str or LOG_FORMAT,
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    logger = logging.getLogger(__package__)
    logger.setLevel(level.upper())
    return logger


def account_label(account_id: str) -> str:
    """Prefix used for every log line of an account."""
    return f"[{account_id}]"
