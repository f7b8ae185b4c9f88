"""Root logger configuration for command line runs."""

import logging
from pathlib import Path
from typing import Optional, Union

from .structured_logger import get_logger, experiment_context
from .handlers import ConsoleHandler, FileHandler


def setup_logging(log_level: str = 'INFO',
                  log_file: Optional[Union[str, Path]] = None,
                  console: bool = True,
                  max_file_size: int = 100 * 1024 * 1024,
                  backup_count: int = 5,
                  experiment_id: Optional[str] = None):
    """Configure the root logger.

    Args:
        log_level: Minimum console log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional JSON log file receiving every DEBUG and above record
        console: Whether to log to stderr
        max_file_size: Rotation size for the log file
        backup_count: Number of rotated log files to keep
        experiment_id: Run ID attached to every record
    """
    root_logger = logging.getLogger()

    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger.setLevel(logging.DEBUG if log_file else level)

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if console:
        console_handler = ConsoleHandler()
        console_handler.setLevel(level)
        root_logger.addHandler(console_handler)

    if log_file is not None:
        root_logger.addHandler(FileHandler(
            filename=str(log_file),
            max_bytes=max_file_size,
            backup_count=backup_count
        ))

    if experiment_id:
        experiment_context.set(experiment_id)

    get_logger(__name__).debug(
        "Logging initialized",
        extra={'context': {'log_level': log_level, 'log_file': str(log_file) if log_file else None}}
    )
