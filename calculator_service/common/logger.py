"""Shared logger for the calculator service."""
import logging
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

logger: logging.Logger = logging.getLogger("calculator_service")


def configure_logging(level: str = "INFO") -> None:
    """
    Attach a single stderr handler to the service logger.

    Calling it again only updates the level, so the entry point and tests can
    both call it safely.

    :param str level: Logging level name (e.g. "DEBUG", "INFO")
    """
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(level.upper())
