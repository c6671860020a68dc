"""
Shared fixtures for ledger tests.

Each test gets a fresh in-memory SQLite database and a
MockClock pinned to a fixed instant.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from core.clock import ClockFactory, MockClock
from database.engine import create_database_engine
from ledger_engine.config import EngineConfig
from ledger_engine.service import LedgerEngine


START = datetime(2025, 3, 3, 9, 0, 0, tzinfo=timezone.utc)


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def clock():
    """Mock clock at a fixed start time."""
    mock = MockClock(START)
    ClockFactory.set_clock(mock)
    yield mock
    ClockFactory.reset()


@pytest.fixture
def config():
    """Test configuration (in-memory SQLite, fast retries)."""
    return EngineConfig.for_testing()


@pytest.fixture
def ledger(config, clock):
    """LedgerEngine on a fresh in-memory database."""
    db_engine = create_database_engine(url="sqlite://", isolation_level=None)
    engine = LedgerEngine(config, db_engine=db_engine, clock=clock)
    engine.create_tables()
    yield engine
    db_engine.dispose()


@pytest.fixture
def fund(ledger):
    """Approve a deposit for a user. Returns the deposit."""
    def _fund(user_id, amount, currency="USD"):
        return ledger.create_manual_deposit(user_id, Decimal(str(amount)), currency, reviewer_id=99)
    return _fund


@pytest.fixture
def make_ipo(ledger, clock):
    """
    Create an IPO whose window contains the current clock time.

    Returns the IPO after opening it with a sweep when open_now is set.
    """
    counter = {"n": 0}

    def _make(
        total_shares=1000,
        lot_size=100,
        price_min="1.00",
        price_max="10.00",
        currency="USD",
        open_now=True,
        listing_date=None,
        **overrides,
    ):
        counter["n"] += 1
        now = clock.now()
        terms = dict(
            symbol=overrides.pop("symbol", f"IPO{counter['n']}"),
            company_name=overrides.pop("company_name", f"Company {counter['n']}"),
            price_min=Decimal(price_min),
            price_max=Decimal(price_max),
            lot_size=lot_size,
            total_shares=total_shares,
            start_date=overrides.pop("start_date", now - timedelta(hours=1)),
            end_date=overrides.pop("end_date", now + timedelta(days=2)),
            currency=currency,
            listing_date=listing_date,
        )
        terms.update(overrides)
        ipo = ledger.create_ipo(**terms)
        if open_now:
            ledger.run_allocation_sweep()
            ipo = ledger.get_ipo(ipo.id)
        return ipo

    return _make


@pytest.fixture
def close_window(clock):
    """Move the clock past an IPO's end date."""
    def _close(ipo):
        end = ipo.end_date.replace(tzinfo=timezone.utc)
        clock.set_time(end + timedelta(minutes=1))
    return _close
