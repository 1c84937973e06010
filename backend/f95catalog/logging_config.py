"""Logging setup with a rotating log file."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from f95catalog.config import config

PACKAGE_LOGGER = "f95catalog"
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"

_NOISY_LOGGERS = ("httpx", "httpcore", "asyncio")


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    max_bytes: Optional[int] = None,
    backup_count: Optional[int] = None,
) -> logging.Logger:
    """Configure the package logger with console and rotating file handlers.

    Calling this more than once leaves the existing handlers in place.

    Args:
        level: Log level name, defaults to ``config.LOG_LEVEL``.
        log_file: Path of the rotating log file, defaults to ``config.LOG_FILE_PATH``.
        max_bytes: Rotation threshold in bytes.
        backup_count: Number of rotated files to keep.

    Returns:
        logging.Logger: The configured package logger.
    """
    level_name = (level or config.LOG_LEVEL).upper()
    log_path = log_file or config.LOG_FILE_PATH

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(getattr(logging, level_name, logging.INFO))

    if not logger.handlers:
        formatter = logging.Formatter(LOG_FORMAT)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

        if log_path:
            log_dir = os.path.dirname(os.path.abspath(log_path))
            try:
                os.makedirs(log_dir, exist_ok=True)
                file_handler = RotatingFileHandler(
                    log_path,
                    maxBytes=max_bytes or config.LOG_MAX_BYTES,
                    backupCount=backup_count if backup_count is not None else config.LOG_BACKUP_COUNT,
                    encoding="utf-8",
                )
                file_handler.setFormatter(formatter)
                logger.addHandler(file_handler)
            except OSError:
                logger.warning("File logging disabled; could not open %s", log_path, exc_info=True)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logger
