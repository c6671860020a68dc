"""
Ledger Engine Package.

============================================================
PURPOSE
============================================================
Deposit ledger and IPO settlement for a brokerage.

CRITICAL PRINCIPLE:
    "Balance is a view, not a mutable field."
    "Money moves only through rows that can be audited."

AUTHORITY BOUNDARIES:
    CAN:
        - Record and review deposits
        - Reserve funds for IPO subscriptions
        - Close, allocate and settle IPOs
        - Record trades against the derived balance

    MUST NOT:
        - Store a balance column
        - Change an IPO's status outside a compare-and-set
        - Settle a subscription twice

============================================================
MODULES
============================================================
- types: Lifecycle enums and value objects
- config: Engine configuration (YAML / environment)
- errors: Error code registry
- state_machine: Deposit, subscription and IPO transitions
- repository: Database operations
- currency: Directed rate lookups and conversion
- balance: Derived balance computation
- deposits: Deposit submission and review
- ipos: IPO definitions and time-driven status changes
- subscriptions: Subscription reservation
- allocation: Pro-rata allocation
- settlement: Stock transactions and holdings
- trading: Post-listing buys and sells
- sweep: Scheduled allocation job
- service: LedgerEngine facade
- schemas / router / api: HTTP surface

============================================================
"""

# ============================================================
# TYPES
# ============================================================
from .types import (
    # Enums
    DepositStatus,
    DepositMethod,
    ReviewDecision,
    IpoStatus,
    SubscriptionStatus,
    TransactionType,
    TransactionStatus,
    JobStatus,
    # Dataclasses
    BalanceSnapshot,
    AllocationRequest,
    AllocationPlan,
    AllocationResult,
    SweepReport,
    PortfolioPosition,
)

# ============================================================
# CONFIGURATION
# ============================================================
from .config import (
    CurrencyConfig,
    RetryConfig,
    TradingConfig,
    SweepConfig,
    DatabaseConfig,
    EngineConfig,
)

# ============================================================
# ERRORS
# ============================================================
from .errors import (
    ErrorCategory,
    ErrorCodeInfo,
    ERROR_CODES,
    get_error_info,
    is_retryable,
)

# ============================================================
# SERVICES
# ============================================================
from .allocation import allocate_pro_rata, AllocationEngine
from .sweep import AllocationSweep, SweepScheduler
from .service import LedgerEngine


__all__ = [
    # Types
    "DepositStatus",
    "DepositMethod",
    "ReviewDecision",
    "IpoStatus",
    "SubscriptionStatus",
    "TransactionType",
    "TransactionStatus",
    "JobStatus",
    "BalanceSnapshot",
    "AllocationRequest",
    "AllocationPlan",
    "AllocationResult",
    "SweepReport",
    "PortfolioPosition",
    # Config
    "CurrencyConfig",
    "RetryConfig",
    "TradingConfig",
    "SweepConfig",
    "DatabaseConfig",
    "EngineConfig",
    # Errors
    "ErrorCategory",
    "ErrorCodeInfo",
    "ERROR_CODES",
    "get_error_info",
    "is_retryable",
    # Services
    "allocate_pro_rata",
    "AllocationEngine",
    "AllocationSweep",
    "SweepScheduler",
    "LedgerEngine",
]
