"""Logging setup for Scope Sentinel.

Every module logs through ``logging.getLogger(__name__)``; this module wires
handlers onto the ``sentinel`` package logger once, from Settings, so all
of them share one console stream and an optional rotating file.
"""

import logging
import logging.handlers
import os
from typing import Optional

from sentinel.core.config import Settings, get_settings

ROOT_LOGGER = "sentinel"
LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"  # ISO 8601

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "celery.worker.strategy")


def _parse_level(level: str) -> int:
    value = logging.getLevelName(level.upper())
    if not isinstance(value, int):
        raise ValueError(
            f"Invalid log level: {level}. "
            f"Must be one of: DEBUG, INFO, WARNING, ERROR, CRITICAL"
        )
    return value


def setup_logger(
    settings: Optional[Settings] = None,
    *,
    console_logging: bool = True,
    max_bytes: int = 10485760,  # 10MB
    backup_count: int = 5,
) -> logging.Logger:
    """Attach handlers to the package logger.

    Args:
        settings: Source of log_level, log_dir and file_logging
        console_logging: Enable the stderr handler
        max_bytes: Maximum log file size before rotation
        backup_count: Number of rotated files to keep

    Returns:
        The ``sentinel`` logger
    """
    settings = settings or get_settings()
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(_parse_level(settings.log_level))

    # Called again on app reload; handlers are already in place
    if logger.handlers:
        return logger

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    if settings.file_logging:
        os.makedirs(settings.log_dir, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            os.path.join(settings.log_dir, f"{ROOT_LOGGER}.log"),
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if console_logging:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, logger.level))

    logger.debug("Logging configured at %s (file logging: %s)", settings.log_level, settings.file_logging)
    return logger
