"""Named log channels for the sync service.

Every channel logs to stdout; outside production each one also writes a
rotating file configured under ``logging.files``.
"""

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from .config import get_config

ROOT = "catalog_sync"

# channel -> (logger name, attribute of logging.files or None, forced level)
CHANNELS = {
    "sync": (f"{ROOT}.sync", "sync", None),
    "webhook": (f"{ROOT}.webhook", "webhook", None),
    "api": (f"{ROOT}.api", "api", None),
    "error": (f"{ROOT}.error", "error", "ERROR"),
    # APScheduler logs exceptions from its worker threads here
    "scheduler": ("apscheduler", None, None),
}


class ContextFormatter(logging.Formatter):
    """Appends the ``details`` extra of a record as compact JSON."""

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        details = getattr(record, "details", None)
        if details:
            text = f"{text} | {json.dumps(details, default=str, sort_keys=True)}"
        return text


def setup_logger(
    name: str,
    log_file: Optional[str] = None,
    level: Optional[str] = None
) -> logging.Logger:
    """
    Attach handlers to ``name`` once and return it.

    Args:
        name: Logger name
        log_file: Rotating file, skipped in production
        level: Overrides the configured level
    """
    config = get_config()

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, (level or config.logging.level).upper()))
    if logger.handlers:
        return logger

    # Channels own their handlers; keep records out of the root logger.
    logger.propagate = False
    formatter = ContextFormatter(config.logging.format)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file and not config.is_production:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=config.logging.max_bytes,
            backupCount=config.logging.backup_count
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(channel: str) -> logging.Logger:
    """Logger for one of the ``CHANNELS``."""
    name, file_key, level = CHANNELS[channel]
    log_file = getattr(get_config().logging.files, file_key) if file_key else None
    return setup_logger(name, log_file, level)


def get_sync_logger() -> logging.Logger:
    """Reconciliation, merge and stock changes."""
    return get_logger("sync")


def get_webhook_logger() -> logging.Logger:
    return get_logger("webhook")


def get_error_logger() -> logging.Logger:
    """Failed units of work with their reconciliation context."""
    return get_logger("error")


def get_api_logger() -> logging.Logger:
    return get_logger("api")


def get_scheduler_logger() -> logging.Logger:
    return get_logger("scheduler")
