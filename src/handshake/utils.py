"""
Handshake - Utility functions.

Provides logging setup, encoding helpers, clock access and validation.
"""

import base64
import binascii
import logging
import os
import re
import time
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Optional

from .constants import LOG_BACKUP_COUNT, LOG_DATE_FORMAT, LOG_FORMAT, LOG_MAX_BYTES
from .errors import ErrorCode, HandshakeError

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Configure the package logger.

    Args:
        level: Logging level name (DEBUG, INFO, ...)
        log_file: Optional path for a rotating log file
    """
    package_logger = logging.getLogger("handshake")
    package_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    formatter = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)
    if not package_logger.handlers:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        package_logger.addHandler(console)

    if log_file:
        log_path = os.path.abspath(os.path.expanduser(log_file))
        for handler in package_logger.handlers:
            if getattr(handler, "baseFilename", None) == log_path:
                return
        file_handler = RotatingFileHandler(
            log_path, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT
        )
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)


def b64encode(data: bytes) -> str:
    """Encode bytes as standard base64 text."""
    return base64.b64encode(data).decode("utf-8")


def b64decode(text: str) -> bytes:
    """
    Decode standard base64 text.

    Raises:
        HandshakeError: If the input is not valid base64
    """
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise HandshakeError(
            ErrorCode.E002_INVALID_ARGUMENT, f"Invalid base64 data: {e}"
        ) from e


def now_ns() -> int:
    """Current wall-clock time in nanoseconds since the epoch."""
    return time.time_ns()


def format_timestamp_ns(timestamp: int, format_str: str = "%Y-%m-%d %H:%M:%S") -> str:
    """
    Format a nanosecond timestamp to a human-readable UTC string.

    Args:
        timestamp: Nanoseconds since the epoch
        format_str: strftime format string

    Returns:
        Formatted timestamp string, or the raw number if out of range
    """
    try:
        dt = datetime.fromtimestamp(timestamp / 1e9, tz=timezone.utc)
        return dt.strftime(format_str)
    except (OverflowError, OSError, ValueError) as e:
        logger.debug(f"Failed to format timestamp {timestamp}: {e}")
        return str(timestamp)


def validate_hex_id(value: str, size: int) -> bool:
    """
    Validate a lowercase hex identifier of ``size`` raw bytes.

    Args:
        value: Identifier string
        size: Expected length in raw bytes

    Returns:
        True if valid, False otherwise
    """
    if not isinstance(value, str):
        return False
    return bool(re.fullmatch(f"[a-f0-9]{{{size * 2}}}", value))
