"""
Logging configuration for the Event Socket client and replay tools.
"""

import logging
import sys

from rich.logging import RichHandler


PACKAGE_LOGGERS = ['src.esl']

PLAIN_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DEBUG_FORMAT = '%(asctime)s - %(name)s:%(lineno)d - %(levelname)s - %(message)s'

EXTERNAL_LOGGERS = ['concurrent.futures', 'rich']


def setup_logger(name: str, level: int = logging.INFO, use_rich: bool = False) -> logging.Logger:
    """
    Attach a single console handler to a logger.

    Args:
        name: Logger name
        level: Level for both the logger and its handler
        use_rich: Render records with rich instead of a plain stdout stream

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Calling twice only updates the level
    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    if use_rich:
        handler = RichHandler(show_time=True, show_path=level == logging.DEBUG)
        handler.setFormatter(logging.Formatter('%(name)s - %(message)s'))
    else:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(DEBUG_FORMAT if level == logging.DEBUG else PLAIN_FORMAT))

    handler.setLevel(level)
    logger.addHandler(handler)
    return logger


def configure_cli_logging(verbose: bool = False, use_rich: bool = False) -> None:
    """
    Configure logging for a command line run.

    The package logger gets a console handler. ``verbose`` switches them to
    DEBUG, which traces each frame written and read, and adds line numbers.
    Library loggers stay at WARNING either way.
    """
    level = logging.DEBUG if verbose else logging.INFO
    for name in PACKAGE_LOGGERS:
        setup_logger(name, level=level, use_rich=use_rich)

    for name in EXTERNAL_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
