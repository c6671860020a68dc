"""
Ledger Engine - Allocation Engine.

============================================================
PURPOSE
============================================================
Closes an IPO at the end of its window and distributes
its shares among live subscriptions.

EXACTLY ONCE:
    The ongoing -> closed compare-and-swap is the mutex. Only
    the caller that performed it allocates; anyone else finds
    the IPO already closed and returns without work.

ALGORITHM (pro-rata, largest remainder):
1. demand = Σ quantity, capacity = total_shares
2. demand <= capacity: everyone gets their full request
3. demand > capacity:
   exact_lots_i = quantity_i * capacity / (demand * lot)
   entitlement_i = floor(exact_lots_i) * lot
   leftover lots go one at a time to the largest fractional
   remainder (ties: earliest request, then lowest id), never
   beyond a subscriber's own request
4. allocated if entitlement > 0, else rejected

Unused reservation is released by the status write alone.

============================================================
"""

import logging
from datetime import datetime
from decimal import Decimal
from fractions import Fraction
from typing import Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from core.clock import ClockProtocol, ClockFactory, utc_naive
from core.exceptions import IpoNotFound
from database.models import Ipo

from .config import CurrencyConfig
from .repository import LedgerRepository
from .settlement import SettlementApplier
from .types import (
    AllocationPlan,
    AllocationRequest,
    AllocationResult,
    IpoStatus,
    RejectionReason,
    SubscriptionStatus,
)


logger = logging.getLogger(__name__)


# ============================================================
# PURE ALGORITHM
# ============================================================

def allocate_pro_rata(
    requests: Sequence[AllocationRequest],
    capacity: int,
    lot_size: int,
) -> AllocationPlan:
    """
    Distribute capacity among requests in whole lots.

    Args:
        requests: Subscriber claims (quantities are lot multiples)
        capacity: Shares on offer
        lot_size: Minimum tradable unit

    Returns:
        AllocationPlan with one entry per request
    """
    if lot_size <= 0:
        raise ValueError("lot_size must be positive")
    if capacity < 0:
        raise ValueError("capacity must not be negative")

    demand = sum(r.quantity for r in requests)
    plan = AllocationPlan(capacity=capacity, lot_size=lot_size, demand=demand)

    if demand == 0:
        plan.allocations = {r.subscription_id: 0 for r in requests}
        return plan

    if demand <= capacity:
        plan.allocations = {r.subscription_id: r.quantity for r in requests}
        return plan

    allocations: Dict[int, int] = {}
    remainders: Dict[int, Fraction] = {}
    for r in requests:
        exact_lots = Fraction(r.quantity * capacity, demand * lot_size)
        whole_lots = exact_lots.numerator // exact_lots.denominator
        allocations[r.subscription_id] = whole_lots * lot_size
        remainders[r.subscription_id] = exact_lots - whole_lots

    leftover_lots = (capacity - sum(allocations.values())) // lot_size

    ranked = sorted(
        requests,
        key=lambda r: (
            -remainders[r.subscription_id],
            r.requested_at or datetime.min,
            r.subscription_id,
        ),
    )

    while leftover_lots > 0:
        progressed = False
        for r in ranked:
            if leftover_lots == 0:
                break
            if allocations[r.subscription_id] + lot_size <= r.quantity:
                allocations[r.subscription_id] += lot_size
                leftover_lots -= 1
                progressed = True
        if not progressed:
            break

    plan.allocations = allocations
    return plan


# ============================================================
# ALLOCATION ENGINE
# ============================================================

class AllocationEngine:
    """
    Close-and-allocate for one IPO inside the caller's transaction.

    Settlement of the resulting allocations runs in the same
    transaction, so an IPO is either fully processed or not at all.
    """

    def __init__(
        self,
        session: Session,
        config: Optional[CurrencyConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._repo = LedgerRepository(session)
        self._config = config or CurrencyConfig()
        self._clock = clock or ClockFactory.get_clock()
        self._settlement = SettlementApplier(session, self._config, self._clock)

    def close_and_allocate(self, ipo_id: int, now: Optional[datetime] = None) -> Optional[AllocationResult]:
        """
        Close an ended IPO and allocate its shares.

        Returns:
            AllocationResult, or None if the IPO was not ongoing
            past its end date (another run already closed it)
        """
        now = utc_naive(now) if now else self._clock.now_naive()

        ipo = self._repo.get_ipo(ipo_id)
        if ipo is None:
            raise IpoNotFound(ipo_id)

        won = self._repo.compare_and_set_ipo_status(
            ipo_id,
            IpoStatus.ONGOING,
            IpoStatus.CLOSED,
            now,
            Ipo.end_date < now,
        )
        if not won:
            logger.warning(f"IPO {ipo_id} not closed by this run (status={ipo.status}); skipping allocation")
            return None

        ipo = self._repo.get_ipo(ipo_id, lock=True)
        subscriptions = self._repo.reserving_subscriptions_for_ipo(ipo_id, lock=True)

        requests: List[AllocationRequest] = [
            AllocationRequest(
                subscription_id=s.id,
                quantity=s.quantity,
                requested_at=s.created_at,
            )
            for s in subscriptions
        ]
        plan = allocate_pro_rata(requests, ipo.total_shares, ipo.lot_size)

        allocated = rejected = 0
        released = Decimal("0")
        for s in subscriptions:
            quantity = plan.allocations.get(s.id, 0)
            amount = Decimal(s.price_per_share) * quantity
            s.allocation_quantity = quantity
            s.allocation_amount = amount
            s.updated_at = now
            if quantity > 0:
                s.status = SubscriptionStatus.ALLOCATED.value
                allocated += 1
            else:
                s.status = SubscriptionStatus.REJECTED.value
                s.rejection_reason = RejectionReason.UNALLOCATED_OVERSUBSCRIPTION
                rejected += 1
            released += Decimal(s.total_amount) - amount

        ipo.allocated_shares = plan.total_allocated
        ipo.allocation_completed_at = now
        ipo.updated_at = now
        self._repo.flush()

        settled = self._settlement.settle_ipo(ipo)

        logger.info(
            f"IPO {ipo_id} {ipo.symbol} allocated: demand={plan.demand} capacity={plan.capacity} "
            f"allocated={plan.total_allocated} subscribers={len(subscriptions)} "
            f"(allocated={allocated}, rejected={rejected}, settled={settled}, "
            f"released={released} {ipo.currency})"
        )

        return AllocationResult(
            ipo_id=ipo_id,
            symbol=ipo.symbol,
            demand=plan.demand,
            capacity=plan.capacity,
            allocated_shares=plan.total_allocated,
            allocated_count=allocated,
            rejected_count=rejected,
            settled_count=settled,
            released_amount=released,
        )


__all__ = ["allocate_pro_rata", "AllocationEngine"]
