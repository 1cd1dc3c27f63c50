"""Core module initialization."""

from .clock import Clock, FixedClock, SystemClock
from .logging_config import setup_logging, get_logger

__all__ = [
    "Clock",
    "FixedClock",
    "SystemClock",
    "setup_logging",
    "get_logger",
]
