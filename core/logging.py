import logging
import sys
import json
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

# --- Constants ---
LOGGER_NAME = 'shrink'
MAX_BYTES = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT = 5
PLAIN_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

class JsonFormatter(logging.Formatter):
    """
    Formats log records as a JSON string.
    """
    def format(self, record):
        log_object = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_object['exc_info'] = self.formatException(record.exc_info)

        return json.dumps(log_object)

def setup_logging(log_level=logging.INFO, log_file: Optional[Union[str, Path]] = None):
    """
    Configures logging for the service.
    - Console: Human-readable plain text.
    - File (optional): Machine-readable JSON, with rotation.

    Call this once from the composition root; importing this module does not
    configure any handlers.
    """
    if isinstance(log_level, str):
        log_level = logging.getLevelName(log_level.upper())

    # --- Root Logger Configuration ---
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # --- Console Handler ---
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(PLAIN_FORMAT))

    # Clear existing handlers to avoid duplicates
    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    root_logger.addHandler(console_handler)

    # --- Rotating File Handler (JSON) ---
    if log_file is not None:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=MAX_BYTES,
            backupCount=BACKUP_COUNT,
            encoding='utf-8'
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(JsonFormatter())
        root_logger.addHandler(file_handler)

    return logging.getLogger(LOGGER_NAME)

# Shared package logger; handlers come from setup_logging()
logger = logging.getLogger(LOGGER_NAME)


def configure_logging(settings):
    """Apply ``LOG_LEVEL`` and ``LOG_FILE`` from an :class:`~core.config.AppSettings`."""
    return setup_logging(settings.LOG_LEVEL, log_file=settings.LOG_FILE)
