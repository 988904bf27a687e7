"""Logging setup: console output plus an append-only timestamped file."""

import logging
import sys
from pathlib import Path
from typing import Optional

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

ROOT_LOGGER = "guestbox"


def configure_logging(log_path: Optional[str], level: int = logging.INFO) -> logging.Logger:
    """Attach console and file handlers to the ``guestbox`` logger.

    The parent directory of ``log_path`` is created when missing. If the file
    cannot be opened, logging continues on the console only. Calling this
    again replaces the previously installed handlers.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_path:
        path = Path(log_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        except OSError as e:
            logger.warning(f"Log file {path} unavailable, logging to console only: {e}")
        else:
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    return logger


def flush_logging() -> None:
    """Flush every handler on the ``guestbox`` logger."""
    for handler in logging.getLogger(ROOT_LOGGER).handlers:
        handler.flush()
