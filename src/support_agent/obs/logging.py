"""Process-wide logging setup."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from support_agent.config import StorageConfig

LOGGER_NAME = "support_agent"
_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"


def configure_logging(config: StorageConfig | None = None) -> logging.Logger:
    """Attach console (and optional rotating file) handlers to the package logger.

    Safe to call repeatedly: existing handlers on the package logger are
    replaced rather than duplicated.
    """

    config = config or StorageConfig()
    logger = logging.getLogger(LOGGER_NAME)
    if logger.hasHandlers():
        logger.handlers.clear()
    logger.setLevel(config.log_level.upper())

    formatter = logging.Formatter(_FORMAT)

    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=5 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    logger.debug("Logging configured (level=%s, file=%s)", config.log_level, config.log_file)
    return logger
