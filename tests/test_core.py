"""
Tests for core clock and exception utilities.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from core.clock import ClockFactory, MockClock, SystemClock, to_iso8601, utc_naive
from core.exceptions import (
    DatabasePersistenceError,
    DuplicateSubscription,
    InsufficientBalance,
    InvalidStateTransition,
    Severity,
)


START = datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)


class TestMockClock:
    """Test deterministic time."""

    def test_naive_initial_time_becomes_utc(self):
        clock = MockClock(datetime(2025, 1, 1, 12))

        assert clock.now().tzinfo == timezone.utc
        assert clock.now_naive() == datetime(2025, 1, 1, 12)

    def test_advance_and_set(self):
        clock = MockClock(START)

        clock.advance(hours=2, minutes=30)
        assert clock.now() == START + timedelta(hours=2, minutes=30)

        clock.advance(seconds=30)
        assert clock.now() == START + timedelta(hours=2, minutes=30, seconds=30)

        clock.set_time(START)
        assert clock.timestamp() == START.timestamp()

    def test_use_mock_restores_previous_clock(self):
        ClockFactory.reset()
        original = ClockFactory.get_clock()

        with ClockFactory.use_mock(START) as mock:
            assert ClockFactory.get_clock() is mock
            assert mock.now() == START

        assert ClockFactory.get_clock() is original
        assert isinstance(original, SystemClock)


class TestTimestamps:
    """Test timestamp normalisation."""

    def test_utc_naive_converts_offsets(self):
        plus_three = timezone(timedelta(hours=3))
        aware = datetime(2025, 3, 3, 12, 0, tzinfo=plus_three)

        assert utc_naive(aware) == datetime(2025, 3, 3, 9, 0)

    def test_utc_naive_leaves_naive_alone(self):
        naive = datetime(2025, 3, 3, 9, 0)

        assert utc_naive(naive) is naive

    def test_iso8601_assumes_utc(self):
        assert to_iso8601(datetime(2025, 3, 3, 9, 0)) == "2025-03-03T09:00:00+00:00"


class TestEngineException:
    """Test exception serialization."""

    def test_insufficient_balance_carries_amounts(self):
        error = InsufficientBalance(7, Decimal("100.00"), Decimal("250.00"), "TRY")

        assert error.available == Decimal("100.00")
        assert error.required == Decimal("250.00")
        assert "250.00 TRY" in error.message
        assert error.context["user_id"] == 7

    def test_to_dict_stringifies_decimals(self):
        data = InsufficientBalance(7, Decimal("1"), Decimal("2"), "USD").to_dict()

        assert data["type"] == "InsufficientBalance"
        assert data["code"] == "RES_INSUFFICIENT_BALANCE"
        assert data["context"]["available"] == "1"
        assert data["cause"] is None

    def test_cause_recorded_in_context(self):
        error = DatabasePersistenceError("write failed", cause=RuntimeError("disk full"))

        assert error.context["cause_type"] == "RuntimeError"
        assert error.context["cause_message"] == "disk full"
        assert error.to_dict()["cause"] == "disk full"
        assert not error.is_transient

    def test_duplicate_subscription_context(self):
        error = DuplicateSubscription(1, 2, existing_id=9)

        assert error.code == "STA_DUPLICATE_SUBSCRIPTION"
        assert error.context == {"user_id": 1, "ipo_id": 2, "existing_id": 9}

    def test_log_format(self):
        error = InvalidStateTransition("deposit", 3, "approved", "rejected")
        error.severity = Severity.HIGH

        line = error.to_log_format()

        assert line.startswith("[HIGH] STA_INVALID_TRANSITION:")
        assert "entity=deposit" in line
