"""
Ledger Engine - IPO Catalog.

============================================================
PURPOSE
============================================================
Administrative creation of offerings and the time-driven
status transitions that are not allocation:

    UPCOMING ──► ONGOING   when start_date <= now
    CLOSED   ──► LISTED    when listing_date <= now and
                           allocation has completed

ONGOING ──► CLOSED belongs to the allocation engine.

Every transition is a compare-and-swap on status; users
never move an IPO.

============================================================
"""

import logging
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from core.clock import ClockProtocol, ClockFactory, utc_naive
from core.exceptions import InvalidIpoDefinition, IpoNotFound, ValidationError
from database.models import Ipo

from .currency import normalize_currency, positive_amount
from .repository import LedgerRepository
from .types import IpoStatus


logger = logging.getLogger(__name__)


def _positive_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidIpoDefinition(f"{name} must be a positive integer", **{name: value})
    return value


class IpoService:
    """Service for IPO records."""

    def __init__(self, session: Session, clock: Optional[ClockProtocol] = None):
        self._repo = LedgerRepository(session)
        self._clock = clock or ClockFactory.get_clock()

    def create_ipo(
        self,
        symbol: str,
        company_name: str,
        price_min: Any,
        price_max: Any,
        lot_size: int,
        total_shares: int,
        start_date: datetime,
        end_date: datetime,
        currency: str = "TRY",
        exchange: str = "BIST",
        listing_date: Optional[datetime] = None,
        created_by: Optional[int] = None,
    ) -> Ipo:
        """
        Create an offering in status upcoming.

        Raises:
            InvalidIpoDefinition if the terms are inconsistent
        """
        symbol = (symbol or "").strip().upper()
        if not symbol:
            raise InvalidIpoDefinition("symbol is required")
        if not (company_name or "").strip():
            raise InvalidIpoDefinition("company_name is required", symbol=symbol)

        low = positive_amount(price_min)
        high = positive_amount(price_max)
        if low > high:
            raise InvalidIpoDefinition("price_min must not exceed price_max", price_min=low, price_max=high)

        lot_size = _positive_int(lot_size, "lot_size")
        total_shares = _positive_int(total_shares, "total_shares")

        start = utc_naive(start_date)
        end = utc_naive(end_date)
        if start >= end:
            raise InvalidIpoDefinition("start_date must be before end_date", start_date=start, end_date=end)
        listing = utc_naive(listing_date) if listing_date else None
        if listing is not None and listing < end:
            raise InvalidIpoDefinition("listing_date must not precede end_date", listing_date=listing)

        if self._repo.get_ipo_by_symbol(symbol) is not None:
            raise InvalidIpoDefinition("symbol already used by another IPO", symbol=symbol)

        now = self._clock.now_naive()
        ipo = Ipo(
            symbol=symbol,
            company_name=company_name.strip(),
            exchange=exchange,
            currency=normalize_currency(currency),
            price_min=low,
            price_max=high,
            lot_size=lot_size,
            total_shares=total_shares,
            start_date=start,
            end_date=end,
            listing_date=listing,
            status=IpoStatus.UPCOMING.value,
            allocated_shares=0,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        self._repo.add(ipo)
        self._repo.flush()

        logger.info(
            f"IPO {ipo.id} {symbol} created: {total_shares} shares, lot {lot_size}, "
            f"band {low}-{high} {ipo.currency}, window {start.isoformat()} - {end.isoformat()}"
        )
        return ipo

    def get_ipo(self, ipo_id: int) -> Ipo:
        ipo = self._repo.get_ipo(ipo_id)
        if ipo is None:
            raise IpoNotFound(ipo_id)
        return ipo

    def list_ipos(self, status: Optional[Any] = None) -> List[Ipo]:
        wanted = status
        if status is not None and not isinstance(status, IpoStatus):
            try:
                wanted = IpoStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown IPO status {status!r}", context={"status": status})
        return self._repo.list_ipos(wanted)

    # ---------------------------------------------------------
    # TIME-DRIVEN TRANSITIONS
    # ---------------------------------------------------------

    def open_due(self, now: Optional[datetime] = None) -> List[int]:
        """Move every upcoming IPO whose start has passed to ongoing."""
        now = utc_naive(now) if now else self._clock.now_naive()
        opened = []
        for ipo_id in self._repo.ipos_due_to_open(now):
            if self._repo.compare_and_set_ipo_status(
                ipo_id, IpoStatus.UPCOMING, IpoStatus.ONGOING, now, Ipo.start_date <= now,
            ):
                opened.append(ipo_id)
                logger.info(f"IPO {ipo_id} opened for subscriptions")
        return opened

    def list_due(self, now: Optional[datetime] = None) -> List[int]:
        """Move every allocated IPO whose listing date has passed to listed."""
        now = utc_naive(now) if now else self._clock.now_naive()
        listed = []
        for ipo_id in self._repo.ipos_due_to_list(now):
            if self._repo.compare_and_set_ipo_status(
                ipo_id, IpoStatus.CLOSED, IpoStatus.LISTED, now,
                Ipo.allocation_completed_at.is_not(None),
            ):
                listed.append(ipo_id)
                logger.info(f"IPO {ipo_id} listed")
        return listed


__all__ = ["IpoService"]
