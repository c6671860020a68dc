"""
Ledger Engine - Allocation Sweep.

============================================================
PURPOSE
============================================================
The scheduled job that drives IPOs through time:

1. Open upcoming IPOs whose start has passed
2. For each ongoing IPO past its end date, in its OWN
   transaction: close (CAS) -> allocate -> settle
3. Settle any allocated subscription missing its transaction
4. List closed IPOs whose listing date has passed
5. Append a job_runs row

FAILURE ISOLATION:
- A failed IPO rolls back alone; its status CAS never
  committed, so the next tick retries it
- Other IPOs in the same tick proceed

============================================================
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from core.clock import ClockProtocol, ClockFactory, utc_naive
from core.exceptions import EngineException
from database.engine import read_scope, transaction_scope
from database.models import JobRun

from .allocation import AllocationEngine
from .config import EngineConfig
from .ipos import IpoService
from .repository import LedgerRepository
from .settlement import SettlementApplier
from .types import JobStatus, SweepReport


logger = logging.getLogger(__name__)


class AllocationSweep:
    """One tick of the allocation job."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        config: Optional[EngineConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._session_factory = session_factory
        self._config = config or EngineConfig()
        self._clock = clock or ClockFactory.get_clock()

    def run(self, now: Optional[datetime] = None) -> SweepReport:
        """
        Run one sweep.

        Returns:
            SweepReport describing what happened
        """
        now = utc_naive(now) if now else self._clock.now_naive()
        started = time.monotonic()
        report = SweepReport(started_at=now)
        logger.info(f"Allocation sweep started at {now.isoformat()}")

        if self._config.sweep.open_upcoming:
            self._phase(report, "open", lambda s: report.opened.extend(IpoService(s, self._clock).open_due(now)))

        with read_scope(self._session_factory) as session:
            due = LedgerRepository(session).ipos_due_to_close(now)

        for ipo_id in due:
            self._allocate_one(report, ipo_id, now)

        self._phase(report, "settle", lambda s: setattr(
            report,
            "settled_outstanding",
            SettlementApplier(s, self._config.currency, self._clock).settle_outstanding(),
        ))

        if self._config.sweep.list_closed:
            self._phase(report, "list", lambda s: report.listed.extend(IpoService(s, self._clock).list_due(now)))

        report.completed_at = self._clock.now_naive()
        self._record_run(report, int((time.monotonic() - started) * 1000))

        logger.info(
            f"Allocation sweep finished: opened={len(report.opened)} allocated={len(report.allocated)} "
            f"skipped={len(report.skipped)} failed={len(report.failed)} listed={len(report.listed)}"
        )
        return report

    def _allocate_one(self, report: SweepReport, ipo_id: int, now: datetime) -> None:
        try:
            with transaction_scope(self._session_factory) as session:
                result = AllocationEngine(session, self._config.currency, self._clock).close_and_allocate(ipo_id, now)
        except EngineException as e:
            logger.error(f"Allocation failed for IPO {ipo_id}: {e.to_log_format()}", exc_info=True)
            report.failed[ipo_id] = e.code
            return
        except Exception as e:
            logger.error(f"Allocation failed for IPO {ipo_id}: {e}", exc_info=True)
            report.failed[ipo_id] = "INT_UNEXPECTED_ERROR"
            return

        if result is None:
            report.skipped.append(ipo_id)
        else:
            report.allocated.append(result)

    def _phase(self, report: SweepReport, name: str, action: Callable[[Session], None]) -> None:
        try:
            with transaction_scope(self._session_factory) as session:
                action(session)
        except EngineException as e:
            logger.error(f"Sweep phase {name} failed: {e.to_log_format()}", exc_info=True)
            report.phase_errors[name] = e.code
        except Exception as e:
            logger.error(f"Sweep phase {name} failed: {e}", exc_info=True)
            report.phase_errors[name] = "INT_UNEXPECTED_ERROR"

    def _record_run(self, report: SweepReport, execution_ms: int) -> None:
        if report.success:
            status = JobStatus.SUCCESS
        elif report.made_progress:
            status = JobStatus.PARTIAL
        else:
            status = JobStatus.ERROR

        message = (
            f"opened={len(report.opened)} allocated={len(report.allocated)} "
            f"skipped={len(report.skipped)} failed={len(report.failed)} listed={len(report.listed)}"
        )
        with transaction_scope(self._session_factory) as session:
            session.add(JobRun(
                job_name=self._config.sweep.job_name,
                status=status.value,
                message=message,
                execution_ms=execution_ms,
                details=report.to_dict(),
                started_at=report.started_at,
                completed_at=report.completed_at,
            ))


# ============================================================
# SCHEDULER
# ============================================================

class SweepScheduler:
    """
    Runs the sweep every interval until stopped.

    Each tick runs in a worker thread; a failing tick is logged
    and the loop continues. With align_to_hour the ticks land on
    the top of each hour instead.
    """

    def __init__(
        self,
        run_sweep: Callable[[], SweepReport],
        interval_seconds: float,
        clock: Optional[ClockProtocol] = None,
        align_to_hour: bool = False,
    ):
        self._run_sweep = run_sweep
        self._interval = interval_seconds
        self._clock = clock or ClockFactory.get_clock()
        self._align_to_hour = align_to_hour
        self._stop = asyncio.Event()
        self.ticks = 0

    def stop(self) -> None:
        self._stop.set()

    async def run_forever(self, max_ticks: Optional[int] = None) -> None:
        logger.info(f"Starting sweep scheduler | interval={self._interval}s align_to_hour={self._align_to_hour}")
        while not self._stop.is_set():
            try:
                await asyncio.to_thread(self._run_sweep)
            except asyncio.CancelledError:
                logger.info("Sweep scheduler cancelled")
                break
            except Exception as e:
                logger.error(f"Sweep tick error: {e}", exc_info=True)

            self.ticks += 1
            if max_ticks is not None and self.ticks >= max_ticks:
                break
            await self._wait_for_next_tick()
        logger.info("Sweep scheduler stopped")

    def seconds_until_next_tick(self) -> float:
        now = self._clock.now()
        if self._align_to_hour:
            next_tick = now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
        else:
            next_tick = now + timedelta(seconds=self._interval)
        return max((next_tick - now).total_seconds(), 0)

    async def _wait_for_next_tick(self) -> None:
        wait_seconds = self.seconds_until_next_tick()
        logger.debug(f"Waiting {wait_seconds:.1f}s until next sweep")
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=wait_seconds)
        except asyncio.TimeoutError:
            pass


__all__ = ["AllocationSweep", "SweepScheduler"]
