"""
Core Module Package.

This package contains the core infrastructure components
that all other modules depend on.

Components:
- clock: Unified time abstraction
- exceptions: Custom exception hierarchy
- log_config: Root logger setup
"""

from .clock import ClockProtocol, SystemClock, MockClock, ClockFactory, utc_naive
from .exceptions import EngineException
from .log_config import setup_logging

__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "ClockFactory",
    "utc_naive",
    "EngineException",
    "setup_logging",
]
