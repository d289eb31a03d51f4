"""
Logging Configuration Module
Console and rotating-file logging for the sync service.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from jira_sync.config_manager import ConfigManager

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DEFAULT_LOG_FILE = './logs/jira_sync.log'
PACKAGE_LOGGER = 'jira_sync'

# HTTP, SQL and scheduler internals only log at WARNING and above
QUIET_LOGGERS = ('urllib3', 'requests', 'sqlalchemy.engine', 'apscheduler', 'werkzeug')


def setup_logging() -> None:
    """
    Configure the root handlers and the ``jira_sync`` package logger.
    Call this once at startup; calling again replaces the handlers.

    ``logging.file`` may be set to an empty value to log to the console only.
    """
    log_config = ConfigManager().get_logging_config()

    log_level = getattr(logging, str(log_config.get('level') or 'INFO').upper(), logging.INFO)
    formatter = logging.Formatter(log_config.get('format') or DEFAULT_FORMAT)
    log_file = log_config.get('file', DEFAULT_LOG_FILE)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=log_config.get('max_bytes', 10485760),  # 10MB
            backupCount=log_config.get('backup_count', 5)
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    logging.getLogger(PACKAGE_LOGGER).setLevel(log_level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for the specified module.

    Args:
        name: Module name (usually __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
