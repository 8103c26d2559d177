"""
logging_config.py — Centralized Logging Configuration for the Order Service

This module configures unified logging behavior for the entire application.
It ensures that all modules log messages consistently to the console and,
when configured, to a file.

Features:
    • Combined console and file logging output
    • Process ID tagging for multi-process visibility
    • Standardized log format for all modules
    • Reduced verbosity for external dependencies (httpx, SQLAlchemy)
"""

import logging
import sys

from . import config


def setup_logging(level=None, log_file=None):
    """
    Configures the global logging system for the application.

    The configuration includes:
        - Log level: taken from LOG_LEVEL (default INFO)
        - Log format: timestamp, log level, process ID, and message
        - Output destinations:
            1. File: LOG_FILE (persistent log, skipped when empty)
            2. Console (stdout): real-time logs, Docker/Kubernetes compatible
        - Reduced verbosity for third-party libraries

    Args:
        level (str | int, optional): Overrides the configured log level.
        log_file (str, optional): Overrides the configured log file path.
    """
    log_format = '%(asctime)s - %(levelname)s - [PID:%(process)d] - %(name)s - %(message)s'
    level = level or config.LOG_LEVEL
    log_file = config.LOG_FILE if log_file is None else log_file

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.insert(0, logging.FileHandler(log_file))

    logging.basicConfig(level=level, format=log_format, handlers=handlers)

    # Reduce verbosity from external libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name):
    """
    Returns a logger instance for a given module or component name.

    Args:
        name (str): The logger name, typically the module's __name__.

    Returns:
        logging.Logger: A logger that follows the global format and handlers.
    """
    return logging.getLogger(name)
