"""Logging infrastructure for OpsFlow.

Engine modules only ever call ``logging.getLogger(__name__)``; handlers
are attached once, on the ``opsflow`` package logger, by the API process
or the seeding tool. Timestamps are ISO 8601.
"""

import logging
import logging.handlers
import os
from typing import Optional

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Marks handlers installed here so reconfiguring replaces only those
_HANDLER_TAG = "_opsflow_handler"


def setup_logger(
    name: str,
    log_dir: str = "/var/log/opsflow",
    level: str = "INFO",
    log_format: Optional[str] = None,
    date_format: Optional[str] = None,
    file_logging: bool = True,
    console_logging: bool = True,
    max_bytes: int = 10485760,  # 10MB
    backup_count: int = 5,
) -> logging.Logger:
    """Set up a logger with file and console handlers.

    Calling it again for the same name replaces the handlers it installed
    earlier, so a level or directory change takes effect without
    duplicating output.

    Args:
        name: Logger name, usually ``opsflow``
        log_dir: Directory for the rotating ``<name>.log`` file
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Custom log format string
        date_format: Custom date format string (ISO 8601 by default)
        file_logging: Enable file logging
        console_logging: Enable console logging
        max_bytes: Maximum log file size before rotation
        backup_count: Number of backup log files to keep

    Returns:
        Configured logger instance

    Raises:
        ValueError: If the level is not a standard level name
    """
    level_upper = level.upper()
    if level_upper not in LEVELS:
        raise ValueError(
            f"Invalid log level: {level}. Must be one of: {', '.join(LEVELS)}"
        )

    logger = logging.getLogger(name)
    logger.setLevel(LEVELS[level_upper])

    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_TAG, False):
            logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(log_format or DEFAULT_FORMAT, datefmt=date_format or DEFAULT_DATE_FORMAT)

    if file_logging:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, f"{name}.log"), maxBytes=max_bytes, backupCount=backup_count
        )
        _install(logger, file_handler, formatter)

    if console_logging:
        _install(logger, logging.StreamHandler(), formatter)

    return logger


def configure_logging(settings, *, file_logging: bool = True) -> logging.Logger:
    """Configure the ``opsflow`` package logger from runtime settings."""
    return setup_logger(
        "opsflow",
        log_dir=settings.log_dir,
        level=settings.log_level,
        file_logging=file_logging,
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger below the ``opsflow`` namespace."""
    if name != "opsflow" and not name.startswith("opsflow."):
        name = f"opsflow.{name}"
    return logging.getLogger(name)


def _install(logger: logging.Logger, handler: logging.Handler, formatter: logging.Formatter) -> None:
    handler.setFormatter(formatter)
    setattr(handler, _HANDLER_TAG, True)
    logger.addHandler(handler)
