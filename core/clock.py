"""
Core Module - System Clock.

============================================================
RESPONSIBILITY
============================================================
Provides a unified, testable clock abstraction for the engine.

- Every "now" used by subscription windows, reviews and the
  allocation sweep MUST come from this clock
- Enables deterministic testing of time-driven transitions
- Ensures consistent timestamps across all modules

============================================================
DESIGN PRINCIPLES
============================================================
- Single source of truth for system time
- UTC only - no timezone conversions in business logic
- Persisted timestamps are naive UTC (see utc_naive)
- Mockable for testing
- Thread-safe

============================================================
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Generator, Optional
import threading
import time


# ============================================================
# CLOCK PROTOCOL
# ============================================================

class ClockProtocol(ABC):
    """Abstract interface for system clock."""

    @abstractmethod
    def now(self) -> datetime:
        """Get current UTC datetime."""
        pass

    @abstractmethod
    def timestamp(self) -> float:
        """Get current Unix timestamp."""
        pass

    def now_naive(self) -> datetime:
        """Current UTC time without tzinfo, as stored in the database."""
        return utc_naive(self.now())

    def format_iso(self, dt: Optional[datetime] = None) -> str:
        """Format datetime as ISO 8601."""
        dt = dt or self.now()
        return dt.isoformat()


# ============================================================
# SYSTEM CLOCK (PRODUCTION)
# ============================================================

class SystemClock(ClockProtocol):
    """
    Production clock using actual system time.

    All times are in UTC.
    """

    def now(self) -> datetime:
        """Get current UTC datetime."""
        return datetime.now(timezone.utc)

    def timestamp(self) -> float:
        """Get current Unix timestamp."""
        return time.time()


# ============================================================
# MOCK CLOCK (TESTING)
# ============================================================

class MockClock(ClockProtocol):
    """
    Mock clock for testing.

    Allows time manipulation for deterministic tests.
    """

    def __init__(self, initial_time: Optional[datetime] = None):
        """
        Initialize mock clock.

        Args:
            initial_time: Starting time (defaults to current UTC)
        """
        initial_time = initial_time or datetime.now(timezone.utc)
        if initial_time.tzinfo is None:
            initial_time = initial_time.replace(tzinfo=timezone.utc)
        self._time = initial_time
        self._lock = threading.Lock()

    def now(self) -> datetime:
        """Get current (mocked) datetime."""
        with self._lock:
            return self._time

    def timestamp(self) -> float:
        """Get current (mocked) timestamp."""
        with self._lock:
            return self._time.timestamp()

    def set_time(self, new_time: datetime) -> None:
        """Set the current time."""
        with self._lock:
            if new_time.tzinfo is None:
                new_time = new_time.replace(tzinfo=timezone.utc)
            self._time = new_time

    def advance(self, seconds: float = 0, **kwargs) -> None:
        """
        Advance time by the specified amount.

        Args:
            seconds: Number of seconds to advance
            **kwargs: Passed to timedelta (hours, minutes, days, etc.)
        """
        with self._lock:
            delta = timedelta(seconds=seconds, **kwargs)
            self._time = self._time + delta


# ============================================================
# CLOCK FACTORY
# ============================================================

class ClockFactory:
    """Factory for creating clock instances."""

    _instance: Optional[ClockProtocol] = None
    _lock = threading.Lock()

    @classmethod
    def get_clock(cls) -> ClockProtocol:
        """Get the global clock instance."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = SystemClock()
            return cls._instance

    @classmethod
    def set_clock(cls, clock: ClockProtocol) -> None:
        """Set the global clock instance."""
        with cls._lock:
            cls._instance = clock

    @classmethod
    def reset(cls) -> None:
        """Reset to default system clock."""
        with cls._lock:
            cls._instance = SystemClock()

    @classmethod
    @contextmanager
    def use_mock(
        cls,
        initial_time: Optional[datetime] = None,
    ) -> Generator[MockClock, None, None]:
        """
        Context manager to use mock clock temporarily.

        Args:
            initial_time: Initial time for mock clock
        """
        original = cls._instance
        mock = MockClock(initial_time)
        cls.set_clock(mock)
        try:
            yield mock
        finally:
            cls._instance = original


# ============================================================
# TIMESTAMP UTILITIES
# ============================================================

def utc_naive(dt: datetime) -> datetime:
    """Normalise a datetime to naive UTC for storage and comparison."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_iso8601(dt: datetime) -> str:
    """Convert datetime to ISO 8601 string."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    # Protocols
    "ClockProtocol",

    # Implementations
    "SystemClock",
    "MockClock",

    # Factory
    "ClockFactory",

    # Utilities
    "utc_naive",
    "to_iso8601",
]
