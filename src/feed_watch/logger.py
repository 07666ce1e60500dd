"""
Logging configuration for feed-watch.

Uses loguru for console output and a rotating log file. Poll jobs run on
APScheduler worker threads, so records carry the thread name and the
module name bound by get_logger().
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from loguru import logger as _logger

from feed_watch.config import get_config

# stdlib loggers of the HTTP and scheduling libraries; they log every request and job run
NOISY_LOGGERS = ("httpx", "httpcore", "apscheduler")

_logger.configure(extra={"name": "feed_watch"})


def setup_logger(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    rotation: Optional[str] = None,
    retention: Optional[str] = None,
    format: Optional[str] = None,
) -> None:
    """Install console and file sinks.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, etc.)
        log_file: Path to log file
        rotation: Log rotation setting (e.g., "50 MB", "1 day")
        retention: Log retention setting (e.g., "14 days", "1 week")
        format: Log format string
    """
    log_config = get_config().logging

    level = level or log_config.level
    log_file = log_file or log_config.file_path
    format = format or log_config.format

    _logger.remove()

    if log_config.console_enabled:
        _logger.add(sys.stderr, format=format, level=level, colorize=True, backtrace=True, diagnose=False)

    if log_config.file_enabled:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        _logger.add(
            log_file,
            format=format,
            level=level,
            rotation=rotation or log_config.rotation,
            retention=retention or log_config.retention,
            compression="zip",
            encoding="utf-8",
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )

    third_party_level = logging.DEBUG if level in ("TRACE", "DEBUG") else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)


def get_logger(name: Optional[str] = None):
    """Logger with `name` bound as `extra["name"]` (module name by convention)."""
    if name:
        return _logger.bind(name=name)
    return _logger


logger = _logger

__all__ = [
    "NOISY_LOGGERS",
    "setup_logger",
    "get_logger",
    "logger",
]
