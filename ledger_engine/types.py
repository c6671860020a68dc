"""
Ledger Engine - Types.

============================================================
PURPOSE
============================================================
All type definitions for the Deposit Ledger & IPO Settlement
Engine: lifecycle enums and the value objects returned across
the engine boundary.

CRITICAL PRINCIPLE:
    "Balance is a view, not a mutable field."
    Nothing in this module stores a balance.

============================================================
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field
from enum import Enum
from decimal import Decimal


# ============================================================
# DEPOSIT LIFECYCLE
# ============================================================

class DepositStatus(Enum):
    """
    Deposit lifecycle state.

    PENDING ──► APPROVED   (terminal, counts toward balance)
        │
        └─────► REJECTED   (terminal)
    """

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    def is_terminal(self) -> bool:
        """Check if state is terminal."""
        return self in {DepositStatus.APPROVED, DepositStatus.REJECTED}


class DepositMethod(Enum):
    """How the funds arrived."""

    BANK_TRANSFER = "bank_transfer"
    CREDIT_CARD = "credit_card"
    CRYPTO = "crypto"
    MANUAL = "manual_payment"


class ReviewDecision(Enum):
    """Reviewer verdict on a pending deposit."""

    APPROVED = "approved"
    REJECTED = "rejected"


# ============================================================
# IPO LIFECYCLE
# ============================================================

class IpoStatus(Enum):
    """
    IPO lifecycle state. Driven by time and the sweep job only.

    UPCOMING ──► ONGOING ──► CLOSED ──► LISTED
    """

    UPCOMING = "upcoming"
    ONGOING = "ongoing"
    CLOSED = "closed"
    LISTED = "listed"


# ============================================================
# SUBSCRIPTION LIFECYCLE
# ============================================================

class SubscriptionStatus(Enum):
    """
    Subscription lifecycle state.

    PENDING ──► CONFIRMED ──► ALLOCATED
       │            │
       └────────────┴───────► REJECTED

    PENDING and CONFIRMED reserve funds.
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    ALLOCATED = "allocated"
    REJECTED = "rejected"

    def is_terminal(self) -> bool:
        """Check if state is terminal."""
        return self in {SubscriptionStatus.ALLOCATED, SubscriptionStatus.REJECTED}

    def reserves_funds(self) -> bool:
        """Check if the subscription's total amount is held back."""
        return not self.is_terminal()


RESERVING_SUBSCRIPTION_STATUSES = (
    SubscriptionStatus.PENDING,
    SubscriptionStatus.CONFIRMED,
)


class RejectionReason:
    """Reason codes written to rejected subscriptions."""

    USER_CANCELLED = "user_cancelled"
    UNALLOCATED_OVERSUBSCRIPTION = "unallocated_oversubscription"


# ============================================================
# STOCK TRANSACTIONS
# ============================================================

class TransactionType(Enum):
    """Stock transaction side."""

    BUY = "buy"
    SELL = "sell"


class TransactionStatus(Enum):
    """Stock transaction status."""

    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class JobStatus(Enum):
    """Outcome of a scheduled job run."""

    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"


# ============================================================
# BALANCE
# ============================================================

@dataclass(frozen=True)
class BalanceSnapshot:
    """
    Derived balance for one user.

    Recomputed from deposit, subscription and transaction rows on
    every read. available == total - reserved, exactly.
    """

    user_id: int
    """User the balance belongs to."""

    currency: str
    """Account base currency all figures are expressed in."""

    total: Decimal
    """Approved deposits minus cash spent."""

    reserved: Decimal
    """Sum of pending/confirmed subscription amounts."""

    @property
    def available(self) -> Decimal:
        """Spendable balance."""
        return self.total - self.reserved

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "user_id": self.user_id,
            "currency": self.currency,
            "total": str(self.total),
            "reserved": str(self.reserved),
            "available": str(self.available),
        }


# ============================================================
# ALLOCATION
# ============================================================

@dataclass(frozen=True)
class AllocationRequest:
    """One subscriber's claim on an offering."""

    subscription_id: int
    quantity: int
    requested_at: Optional[datetime] = None


@dataclass
class AllocationPlan:
    """
    Output of the pro-rata algorithm.

    Maps subscription id to allocated share quantity.
    """

    capacity: int
    lot_size: int
    demand: int
    allocations: Dict[int, int] = field(default_factory=dict)

    @property
    def oversubscribed(self) -> bool:
        """Demand exceeds capacity."""
        return self.demand > self.capacity

    @property
    def total_allocated(self) -> int:
        """Shares handed out."""
        return sum(self.allocations.values())

    @property
    def unallocated(self) -> int:
        """Capacity left over."""
        return self.capacity - self.total_allocated


@dataclass
class AllocationResult:
    """Outcome of closing and allocating one IPO."""

    ipo_id: int
    symbol: str
    demand: int
    capacity: int
    allocated_shares: int
    allocated_count: int
    rejected_count: int
    settled_count: int
    released_amount: Decimal = Decimal("0")
    """Reservation freed by the status writes (requested minus allocated cash)."""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "ipo_id": self.ipo_id,
            "symbol": self.symbol,
            "demand": self.demand,
            "capacity": self.capacity,
            "allocated_shares": self.allocated_shares,
            "allocated_count": self.allocated_count,
            "rejected_count": self.rejected_count,
            "settled_count": self.settled_count,
            "released_amount": str(self.released_amount),
        }


@dataclass
class SweepReport:
    """Summary of one allocation sweep tick."""

    started_at: datetime
    opened: List[int] = field(default_factory=list)
    allocated: List[AllocationResult] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    failed: Dict[int, str] = field(default_factory=dict)
    listed: List[int] = field(default_factory=list)
    settled_outstanding: int = 0
    phase_errors: Dict[str, str] = field(default_factory=dict)
    """Errors from the bulk phases (open, settle, list), keyed by phase."""
    completed_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        """Nothing failed during this tick."""
        return not self.failed and not self.phase_errors

    @property
    def made_progress(self) -> bool:
        return bool(self.opened or self.allocated or self.listed or self.settled_outstanding)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "opened": list(self.opened),
            "allocated": [a.to_dict() for a in self.allocated],
            "skipped": list(self.skipped),
            "failed": {str(k): v for k, v in self.failed.items()},
            "listed": list(self.listed),
            "settled_outstanding": self.settled_outstanding,
            "phase_errors": dict(self.phase_errors),
        }


# ============================================================
# PORTFOLIO
# ============================================================

@dataclass(frozen=True)
class PortfolioPosition:
    """One holding as seen by portfolio views."""

    symbol: str
    quantity: int
    average_price: Decimal
    total_cost: Decimal
    currency: str
