"""Logging configuration for the face identity service.

All loggers in the package hang off a single ``faceid`` root logger, which
owns the handlers. Module loggers obtained through :func:`get_logger`
propagate to it, so the HTTP server, scripts and tests share one format.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

ROOT_LOGGER_NAME = "faceid"

# Format: 2025-11-04 15:30:45 | INFO | faceid.store | Message
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ColoredFormatter(logging.Formatter):
    """Formatter with colors for different log levels (terminal only)."""

    # ANSI color codes
    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"
    BOLD = "\033[1m"

    def __init__(self, fmt: str, datefmt: str, stream=None):
        super().__init__(fmt, datefmt=datefmt)
        self.stream = stream if stream is not None else sys.stdout

    def format(self, record: logging.LogRecord) -> str:
        """Format log record, colorizing level and name on a TTY."""
        if not (hasattr(self.stream, "isatty") and self.stream.isatty()):
            return super().format(record)

        # Work on a copy so file handlers sharing the record stay plain
        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname)
        if color:
            record.levelname = f"{color}{self.BOLD}{record.levelname}{self.RESET}"
        record.name = f"{self.BOLD}{record.name}{self.RESET}"
        return super().format(record)


def _resolve_level(level: Optional[str]) -> int:
    if level is None:
        try:
            from faceid.config import get_config

            level = get_config().log_level
        except ValueError:
            # Invalid .env values are reported by whoever loads the config
            level = "INFO"
    return getattr(logging, level.upper(), logging.INFO)


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    force: bool = False,
) -> logging.Logger:
    """Configure the package root logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               If None, reads from environment via Config.
        log_file: Optional file path to also log to a file.
        force: Replace existing handlers instead of keeping them.

    Returns:
        The configured ``faceid`` root logger.

    Example:
        >>> setup_logging("DEBUG", log_file="faceid.log")
        >>> get_logger("faceid.store").info("Store opened")
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)

    if root.handlers and not force:
        return root

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    root.setLevel(_resolve_level(level))

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(
        ColoredFormatter(LOG_FORMAT, datefmt=DATE_FORMAT, stream=sys.stdout)
    )
    root.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        root.addHandler(file_handler)

    # Keep uvicorn / root handlers from printing our records twice
    root.propagate = False

    return root


def get_logger(name: str) -> logging.Logger:
    """Get logger for a specific module.

    Names outside the ``faceid`` namespace (e.g. ``__main__`` in scripts) are
    nested under it so they share its handlers.

    Args:
        name: Module name (typically __name__)

    Returns:
        Logger that propagates to the configured package root.

    Example:
        >>> from faceid.logging_config import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("Module initialized")
    """
    setup_logging()
    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)
