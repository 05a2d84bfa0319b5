"""
Package logger.

All modules log through ``from deteval.utils.logger import logger``. Output is
rendered by Rich on the console shared with the progress indicators so log
lines and spinners do not tear each other.
"""

import logging

from rich.logging import RichHandler

from deteval.utils.progress import console

logger = logging.getLogger("deteval")


def setup_logger(level: int = logging.INFO) -> logging.Logger:
    """
    Attach the Rich handler to the package logger (idempotent).

    Args:
        level: Logging level for the package logger

    Returns:
        The configured logger
    """
    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(console=console, show_path=False, markup=True, rich_tracebacks=True)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
    logger.setLevel(level)
    return logger


setup_logger()
