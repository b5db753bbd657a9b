"""Logging configuration for the cosyctl package."""
import logging
import sys

from cosyctl.config import Config


def setup_logging(debug_mode: bool = False) -> logging.Logger:
    """
    Configure the root logger for a cosyctl run.

    Args:
        debug_mode: Force DEBUG level regardless of LOG_LEVEL

    Returns:
        The package logger
    """
    level = logging.DEBUG if debug_mode else getattr(logging, Config.LOG_LEVEL, logging.INFO)

    handlers = [logging.StreamHandler(sys.stderr)]
    if Config.LOG_FILE:
        handlers.append(logging.FileHandler(Config.LOG_FILE))

    logging.basicConfig(
        level=level,
        format=Config.LOG_FORMAT,
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=handlers,
        force=True,
    )

    # Disable debug logging for noisy libraries
    if not debug_mode:
        logging.getLogger('urllib3').setLevel(logging.WARNING)
        logging.getLogger('kubernetes').setLevel(logging.WARNING)

    return logging.getLogger("cosyctl")
