"""Logging configuration for ftptree.

Provides centralized logging with PII redaction so that passwords and
credentials sent over the control connection never reach log output.
"""

import logging
import re
import sys
from pathlib import Path
from typing import Optional, Union


# PII patterns to redact from logs
PII_PATTERNS = [
    # Password in various formats
    (re.compile(r'(password["\s:=]+)[^\s,}\]]+', re.IGNORECASE), r'\1[REDACTED]'),
    (re.compile(r'(passwd["\s:=]+)[^\s,}\]]+', re.IGNORECASE), r'\1[REDACTED]'),
    # PASS command argument on the control connection
    (re.compile(r'(\bPASS\s+)(?!\*{4})\S+'), r'\1[REDACTED]'),
    # FTP URLs with credentials
    (re.compile(r'(ftps?://)[^:/@\s]+:[^@\s]+@'), r'\1[REDACTED]@'),
]

# IP addresses (partial redaction for privacy)
ADDRESS_PATTERN = (re.compile(r'\b(\d+\.\d+\.)\d+\.\d+\b'), r'\1*.*')


class PIIRedactingFormatter(logging.Formatter):
    """Custom formatter that redacts PII from log messages."""

    def __init__(self, *args, redact_addresses: bool = False, **kwargs):
        super().__init__(*args, **kwargs)
        self._patterns = list(PII_PATTERNS)
        if redact_addresses:
            self._patterns.append(ADDRESS_PATTERN)

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record, redacting any PII."""
        message = super().format(record)
        for pattern, replacement in self._patterns:
            message = pattern.sub(replacement, message)
        return message


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[Path] = None,
    console: bool = True,
    redact_addresses: bool = False,
) -> logging.Logger:
    """
    Configure library logging with PII redaction.

    Args:
        level: Logging level or its name, e.g. "DEBUG" (default INFO)
        log_file: Optional file path for log output
        console: Whether to output to console (default True)
        redact_addresses: Also mask the last two octets of IPv4 addresses

    Returns:
        Configured "ftptree" logger
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {level}")

    logger = logging.getLogger("ftptree")
    logger.setLevel(level)

    # Clear any existing handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    # Create formatter with PII redaction
    formatter = PIIRedactingFormatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        redact_addresses=redact_addresses,
    )

    # Console handler
    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    # File handler
    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str = "ftptree") -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name (default is the library root logger)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
