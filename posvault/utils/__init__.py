"""Utility modules for posvault"""

from .clock import Clock, SystemClock
from .logger import (
    get_logger,
    sanitize_log_content,
    setup_logging,
)

__all__ = [
    "Clock",
    "SystemClock",
    "get_logger",
    "setup_logging",
    "sanitize_log_content",
]
