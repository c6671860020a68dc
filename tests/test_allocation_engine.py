"""
Tests for the Allocation Engine and the Allocation Sweep.

Tests cover:
- Close (compare-and-set) and allocate
- Oversubscription rejections
- Sweep idempotence
- Time-driven open / list transitions
- Failure isolation and job_runs records
- Scheduler loop
"""

import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch

from core.clock import MockClock
from core.exceptions import DatabasePersistenceError
from ledger_engine.allocation import allocate_pro_rata
from ledger_engine.sweep import SweepScheduler


# =============================================================
# TEST: Close & Allocate
# =============================================================

class TestCloseAndAllocate:
    """Test one IPO passing through the sweep."""

    def test_example_even_split(self, ledger, fund, make_ipo, close_window):
        """1000 shares, lot 100, A=600 B=600 -> 500 each."""
        fund(1, 10000)
        fund(2, 10000)
        ipo = make_ipo(total_shares=1000, lot_size=100)
        sub_a = ledger.create_subscription(1, ipo.id, 600, Decimal("5.00"))
        sub_b = ledger.create_subscription(2, ipo.id, 600, Decimal("5.00"))

        close_window(ipo)
        report = ledger.run_allocation_sweep()

        assert report.success
        assert [r.ipo_id for r in report.allocated] == [ipo.id]
        result = report.allocated[0]
        assert result.demand == 1200
        assert result.allocated_shares == 1000
        assert result.settled_count == 2
        assert result.released_amount == Decimal("1000")

        subs = {s.id: s for s in ledger.list_subscriptions(1) + ledger.list_subscriptions(2)}
        for sub in (sub_a, sub_b):
            assert subs[sub.id].status == "allocated"
            assert subs[sub.id].allocation_quantity == 500
            assert subs[sub.id].allocation_amount == Decimal("2500")

        closed = ledger.get_ipo(ipo.id)
        assert closed.status == "closed"
        assert closed.allocated_shares == 1000
        assert closed.allocation_completed_at is not None

    def test_zero_allocation_is_rejected(self, ledger, fund, make_ipo, close_window):
        fund(1, 10000)
        fund(2, 10000)
        ipo = make_ipo(total_shares=100, lot_size=100)
        ledger.create_subscription(1, ipo.id, 100, Decimal("1.00"))
        sub_b = ledger.create_subscription(2, ipo.id, 100, Decimal("1.00"))

        close_window(ipo)
        ledger.run_allocation_sweep()

        loser = ledger.list_subscriptions(2)[0]
        assert loser.id == sub_b.id
        assert loser.status == "rejected"
        assert loser.rejection_reason == "unallocated_oversubscription"
        assert loser.allocation_quantity == 0
        assert ledger.get_balance(2).available == Decimal("10000")

    def test_cancelled_subscriptions_ignored(self, ledger, fund, make_ipo, close_window):
        fund(1, 1000)
        ipo = make_ipo()
        sub = ledger.create_subscription(1, ipo.id, 100, Decimal("1.00"))
        ledger.cancel_subscription(sub.id)

        close_window(ipo)
        report = ledger.run_allocation_sweep()

        assert report.allocated[0].allocated_shares == 0
        assert ledger.list_subscriptions(1)[0].rejection_reason == "user_cancelled"

    def test_confirmed_subscriptions_allocated(self, ledger, fund, make_ipo, close_window):
        fund(1, 1000)
        ipo = make_ipo()
        sub = ledger.create_subscription(1, ipo.id, 100, Decimal("1.00"))
        ledger.confirm_subscription(sub.id)

        close_window(ipo)
        ledger.run_allocation_sweep()

        assert ledger.list_subscriptions(1)[0].status == "allocated"

    def test_not_closed_before_end_date(self, ledger, fund, make_ipo):
        fund(1, 1000)
        ipo = make_ipo()
        ledger.create_subscription(1, ipo.id, 100, Decimal("1.00"))

        report = ledger.run_allocation_sweep()

        assert report.allocated == []
        assert ledger.get_ipo(ipo.id).status == "ongoing"

    def test_direct_close_is_noop_when_not_due(self, ledger, make_ipo):
        ipo = make_ipo()

        assert ledger.close_and_allocate(ipo.id) is None
        assert ledger.get_ipo(ipo.id).status == "ongoing"


# =============================================================
# TEST: Idempotence
# =============================================================

class TestSweepIdempotence:
    """Running the sweep again after allocation changes nothing."""

    def test_second_sweep_is_noop(self, ledger, fund, make_ipo, close_window):
        fund(1, 10000)
        ipo = make_ipo(total_shares=1000, lot_size=100)
        ledger.create_subscription(1, ipo.id, 300, Decimal("2.00"))

        close_window(ipo)
        first = ledger.run_allocation_sweep()
        balance_after_first = ledger.get_balance(1)
        portfolio_after_first = ledger.get_portfolio(1)

        second = ledger.run_allocation_sweep()

        assert len(first.allocated) == 1
        assert second.allocated == []
        assert second.settled_outstanding == 0
        assert ledger.get_balance(1) == balance_after_first
        assert ledger.get_portfolio(1) == portfolio_after_first
        assert len(ledger.list_transactions(1)) == 1

    def test_closing_an_already_closed_ipo_returns_none(self, ledger, make_ipo, close_window):
        ipo = make_ipo()
        close_window(ipo)
        ledger.run_allocation_sweep()

        assert ledger.close_and_allocate(ipo.id) is None


# =============================================================
# TEST: Time-driven transitions
# =============================================================

class TestLifecycleTransitions:
    """Test upcoming -> ongoing and closed -> listed."""

    def test_opens_when_start_passes(self, ledger, make_ipo, clock):
        ipo = make_ipo(open_now=False, start_date=clock.now() + timedelta(hours=2),
                       end_date=clock.now() + timedelta(days=2))

        assert ledger.run_allocation_sweep().opened == []
        clock.advance(hours=3)
        report = ledger.run_allocation_sweep()

        assert report.opened == [ipo.id]
        assert ledger.get_ipo(ipo.id).status == "ongoing"

    def test_lists_after_listing_date(self, ledger, make_ipo, clock, close_window):
        listing = clock.now() + timedelta(days=5)
        ipo = make_ipo(listing_date=listing)

        close_window(ipo)
        report = ledger.run_allocation_sweep()
        assert report.listed == []

        clock.set_time(listing + timedelta(minutes=1))
        report = ledger.run_allocation_sweep()

        assert report.listed == [ipo.id]
        assert ledger.get_ipo(ipo.id).status == "listed"

    def test_no_listing_date_stays_closed(self, ledger, make_ipo, clock, close_window):
        ipo = make_ipo()
        close_window(ipo)
        ledger.run_allocation_sweep()

        clock.advance(days=30)
        ledger.run_allocation_sweep()

        assert ledger.get_ipo(ipo.id).status == "closed"


# =============================================================
# TEST: Failure Isolation & Job Runs
# =============================================================

class TestSweepFailures:
    """A failing IPO does not block the others."""

    def test_failed_ipo_rolls_back_alone(self, ledger, fund, make_ipo, close_window):
        fund(1, 10000)
        bad = make_ipo()
        good = make_ipo()
        ledger.create_subscription(1, bad.id, 100, Decimal("1.00"))
        ledger.create_subscription(1, good.id, 100, Decimal("1.00"))
        close_window(good)


        def flaky(requests, capacity, lot_size):
            if any(r.subscription_id == 1 for r in requests):
                raise DatabasePersistenceError("disk full")
            return allocate_pro_rata(requests, capacity, lot_size)

        with patch("ledger_engine.allocation.allocate_pro_rata", side_effect=flaky):
            report = ledger.run_allocation_sweep()

        assert report.failed == {bad.id: "INF_DATABASE_ERROR"}
        assert [r.ipo_id for r in report.allocated] == [good.id]
        assert not report.success
        assert ledger.get_ipo(bad.id).status == "ongoing"
        assert ledger.get_ipo(good.id).status == "closed"

        runs = ledger.list_job_runs("allocation_sweep", limit=1)
        assert runs[0].status == "partial"

        retry = ledger.run_allocation_sweep()
        assert [r.ipo_id for r in retry.allocated] == [bad.id]
        assert ledger.list_job_runs(limit=1)[0].status == "success"

    def test_every_sweep_records_a_job_run(self, ledger):
        ledger.run_allocation_sweep()
        ledger.run_allocation_sweep()

        runs = ledger.list_job_runs()
        assert len(runs) == 2
        assert runs[0].job_name == "allocation_sweep"
        assert runs[0].details["failed"] == {}
        assert runs[0].execution_ms >= 0


# =============================================================
# TEST: Scheduler
# =============================================================

class TestSweepScheduler:
    """Test the asyncio scheduling loop."""

    def test_runs_requested_ticks(self):
        calls = []
        scheduler = SweepScheduler(lambda: calls.append(1), interval_seconds=0)

        asyncio.run(scheduler.run_forever(max_ticks=3))

        assert scheduler.ticks == 3
        assert len(calls) == 3

    def test_failing_tick_does_not_stop_loop(self):
        calls = []

        def sweep():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")

        scheduler = SweepScheduler(sweep, interval_seconds=0)
        asyncio.run(scheduler.run_forever(max_ticks=2))

        assert len(calls) == 2

    def test_stop_ends_loop(self):
        async def run():
            scheduler = SweepScheduler(lambda: None, interval_seconds=60)
            task = asyncio.create_task(scheduler.run_forever())
            await asyncio.sleep(0.2)
            scheduler.stop()
            await asyncio.wait_for(task, timeout=1)
            return scheduler

        scheduler = asyncio.run(run())
        assert scheduler.ticks == 1

    def test_waits_one_interval(self):
        clock = MockClock(datetime(2025, 3, 3, 9, 20, 30, tzinfo=timezone.utc))
        scheduler = SweepScheduler(lambda: None, interval_seconds=3600, clock=clock)

        assert scheduler.seconds_until_next_tick() == 3600

    def test_align_to_hour_uses_injected_clock(self):
        clock = MockClock(datetime(2025, 3, 3, 9, 20, 30, tzinfo=timezone.utc))
        scheduler = SweepScheduler(lambda: None, interval_seconds=600, clock=clock, align_to_hour=True)

        # 09:20:30 -> 10:00:00
        assert scheduler.seconds_until_next_tick() == 2370

        clock.advance(minutes=39)
        assert scheduler.seconds_until_next_tick() == 30
