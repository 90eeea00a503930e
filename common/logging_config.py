"""Logging setup shared by the CLI, the sync engine and the repository server."""

import logging
import os
import re
import sys
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

PROJECT_LOGGERS = ('common', 'streams', 'store', 'repository', 'engine', 'cli')


class CredentialMaskingFilter(logging.Filter):
    """
    Mask credentials that can end up in log lines: user:password pairs in
    repository URLs and Authorization header values.
    """

    PATTERNS = [
        (re.compile(r'(://[^:/\s@]+:)([^@\s]+)(@)'), r'\1***MASKED***\3'),
        (re.compile(r'(authorization["\']?\s*[:=]\s*["\']?(?:(?:bearer|basic)\s+)?)([^"\'}\s,]+)', re.IGNORECASE), r'\1***MASKED***'),
        (re.compile(r'(bearer\s+)([^\s,}\'"]+)', re.IGNORECASE), r'\1***MASKED***'),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = self._mask(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(self._mask(arg) for arg in record.args)
        elif isinstance(record.args, dict):
            record.args = {key: self._mask(value) for key, value in record.args.items()}
        return True

    def _mask(self, value):
        if not isinstance(value, str):
            return value
        for pattern, replacement in self.PATTERNS:
            value = pattern.sub(replacement, value)
        return value


def setup_logging(component_name: str, log_level: Optional[str] = None) -> logging.Logger:
    """
    Set up logging configuration for a component.

    The component logger and every project package logger share one stderr
    handler, so stdout stays free for command output.

    Args:
        component_name: Name of the component (e.g., 'cli', 'repository')
        log_level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to LOG_LEVEL env var or INFO

    Returns:
        Configured logger instance
    """
    if log_level is None:
        log_level = os.getenv('LOG_LEVEL', 'INFO')
    level = getattr(logging, log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    handler.addFilter(CredentialMaskingFilter())

    for name in (component_name,) + PROJECT_LOGGERS:
        logger = logging.getLogger(name)
        logger.setLevel(level)
        if not logger.handlers:
            logger.addHandler(handler)
        logger.propagate = False

    return logging.getLogger(component_name)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the given name.

    Args:
        name: Logger name (typically __name__)
    """
    return logging.getLogger(name)
