"""Logging configuration for Dubline."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Iterable

from .utils import ensure_dir_exists

DEFAULT_LOG_FORMAT = '%(asctime)s - %(levelname)s - [%(threadName)s %(name)s:%(lineno)d] - %(message)s'
DEFAULT_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# HTTP and decoder libraries log every request or subprocess at INFO/DEBUG
NOISY_LOGGERS = ("urllib3", "pydub.converter", "filelock")


def _file_handler(log_dir: str, log_file: str, max_bytes: int, backup_count: int) -> RotatingFileHandler:
    ensure_dir_exists(log_dir)
    return RotatingFileHandler(
        os.path.join(log_dir, log_file),
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8',
    )


def setup_logging(
    log_level: int = logging.INFO,
    log_dir: str = "logs",
    log_file: str = "dubline.log",
    log_format: str = DEFAULT_LOG_FORMAT,
    date_format: str = DEFAULT_DATE_FORMAT,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """
    Configures the root logger to write to stdout and a rotating file.

    Calling it again replaces the handlers of the previous call, so the CLI
    can log before the config file is read and switch files afterwards.
    Watcher threads log under their own thread name.

    Args:
        log_level: Minimum level for both handlers.
        log_dir: Directory of the log file; created when missing.
        log_file: Name of the log file.
        log_format: Format string for log records.
        date_format: Format string for timestamps.
        max_bytes: Size at which the file is rotated.
        backup_count: Number of rotated files to keep.
        quiet: Loggers lowered to WARNING.
    """
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    root.setLevel(log_level)
    formatter = logging.Formatter(log_format, datefmt=date_format)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    console.setLevel(log_level)
    root.addHandler(console)

    try:
        file_handler = _file_handler(log_dir, log_file, max_bytes, backup_count)
    except Exception as e:
        # Console logging still works without the file handler
        root.error(f"Failed to set up file logging at {log_dir}/{log_file}: {e}", exc_info=True)
    else:
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
        root.info(f"Logging initialized. Log file: {file_handler.baseFilename}")

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_logging_from_config(config: dict, log_level: int) -> None:
    """Re-runs setup_logging with the log location chosen in config."""
    setup_logging(
        log_level=log_level,
        log_dir=config.get('log_dir', 'logs'),
        log_file=config.get('log_file', 'dubline.log'),
        max_bytes=config.get('log_max_bytes', 10 * 1024 * 1024),
        backup_count=config.get('log_backup_count', 5),
    )
