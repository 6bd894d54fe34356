"""Logging configuration for procwait."""

import logging
import sys
from pathlib import Path


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(log_path: Path | None = None, level: int = logging.INFO) -> logging.Logger:
    """
    Configure the procwait logger: stderr always, plus a log file if given.

    Args:
        log_path: Optional file to append log records to
        level: Minimum level written to stderr

    Returns:
        logging.Logger: Configured logger instance
    """
    logger = logging.getLogger("procwait")
    logger.setLevel(logging.DEBUG)

    # Remove existing handlers to avoid duplicates
    logger.handlers = []

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_path is not None:
        try:
            handler = logging.FileHandler(log_path)
            handler.setLevel(logging.DEBUG)
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        except OSError as e:
            logger.warning(f"Could not create log file at {log_path}: {e}")

    return logger
