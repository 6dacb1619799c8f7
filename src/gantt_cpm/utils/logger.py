"""Logging configuration for the scheduling engine."""
import logging
import logging.handlers
from pathlib import Path
from typing import Optional

from gantt_cpm.config.settings import settings

PACKAGE_LOGGER = 'gantt_cpm'


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """
    Configure the package logger.

    Modules log through ``logging.getLogger(__name__)``; this attaches
    handlers once to the ``gantt_cpm`` parent logger.

    Args:
        level: Log level name; defaults to settings.LOG_LEVEL

    Returns:
        Configured package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level or settings.LOG_LEVEL)

    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # File handler
    if settings.LOG_DIR:
        log_dir = Path(settings.LOG_DIR)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_dir / f'{PACKAGE_LOGGER}.log',
            maxBytes=10485760,  # 10MB
            backupCount=5,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
