"""Centralized logging configuration for Terminaut.

This module provides:
- Configurable log levels and output destinations
- Log file rotation under ~/.terminaut/logs
- Debug mode for troubleshooting watcher timing
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TextIO

from .models import TERMINAUT_DIR

# Default configuration
DEFAULT_LOG_LEVEL = logging.INFO
DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
DEFAULT_BACKUP_COUNT = 3

PACKAGE_LOGGER = "terminaut"

# Log directory
LOG_DIR = TERMINAUT_DIR / "logs"


def get_log_file_path() -> Path:
    """Get the path to the log file, creating directory if needed."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    return LOG_DIR / "terminaut.log"


def setup_logging(
    *,
    level: int | str = DEFAULT_LOG_LEVEL,
    log_to_file: bool = True,
    log_to_console: bool = False,
    console_stream: TextIO = sys.stderr,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    debug_modules: list[str] | None = None,
) -> None:
    """Configure logging for the whole package.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_to_file: Whether to log to the rotating file.
        log_to_console: Whether to log to console.
        console_stream: Stream for console output.
        max_bytes: Maximum log file size before rotation.
        backup_count: Number of backup log files to keep.
        debug_modules: Module names (e.g. ``state_watcher``) to set to DEBUG.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), DEFAULT_LOG_LEVEL)

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(level)

    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(DEFAULT_LOG_FORMAT, DEFAULT_DATE_FORMAT)

    if log_to_file:
        file_handler = RotatingFileHandler(
            get_log_file_path(),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

    if log_to_console:
        console_handler = logging.StreamHandler(console_stream)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        package_logger.addHandler(console_handler)

    if debug_modules:
        for module_name in debug_modules:
            logging.getLogger(_qualified(module_name)).setLevel(logging.DEBUG)


def enable_debug_mode(log_to_file: bool = True) -> None:
    """Enable debug logging for all modules, echoed to the console."""
    setup_logging(level=logging.DEBUG, log_to_console=True, log_to_file=log_to_file)


def _qualified(name: str) -> str:
    if name == PACKAGE_LOGGER or name.startswith(f"{PACKAGE_LOGGER}."):
        return name
    return f"{PACKAGE_LOGGER}.{name}"


def get_logger(name: str) -> logging.Logger:
    """Get a logger in the terminaut namespace.

    Args:
        name: Logger name (prefixed with ``terminaut.`` if needed).
    """
    return logging.getLogger(_qualified(name))


def log_exception(
    logger: logging.Logger,
    exc: Exception,
    message: str = "An error occurred",
    *,
    level: int = logging.ERROR,
    include_traceback: bool = True,
) -> None:
    """Log an exception with consistent formatting.

    Args:
        logger: Logger to use.
        exc: Exception to log.
        message: Human-readable message prefix.
        level: Log level (default ERROR).
        include_traceback: Whether to include full traceback.
    """
    if include_traceback:
        logger.log(level, "%s: %s", message, exc, exc_info=exc)
    else:
        logger.log(level, "%s: %s (%s)", message, exc, type(exc).__name__)


def get_recent_logs(lines: int = 100) -> list[str]:
    """Get the last ``lines`` log entries."""
    log_file = get_log_file_path()
    if not log_file.exists():
        return []

    with open(log_file, encoding="utf-8") as f:
        return f.readlines()[-lines:]
