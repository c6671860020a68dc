"""
Database ORM Models - Ledger Tables.

============================================================
LEDGER DATABASE SCHEMA
============================================================

TABLES:
- accounts: user id -> base currency (per-user lock row)
- currency_rates: directed exchange rates
- deposits: user deposits and their review outcome
- stocks: tradable instruments
- ipos: offerings and their allocation state
- ipo_subscriptions: requests that reserve funds
- portfolios: holdings per (user, stock)
- stock_transactions: append-only audit log
- job_runs: scheduler audit log

There is no balance column anywhere. Balances are derived.

============================================================
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List, Any

from sqlalchemy import (
    String,
    Integer,
    BigInteger,
    Numeric,
    DateTime,
    Boolean,
    Text,
    JSON,
    ForeignKey,
    Index,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from .engine import Base


# =============================================================
# HELPER FUNCTIONS
# =============================================================

def utc_now() -> datetime:
    """Get current UTC timestamp (naive)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


MONEY = Numeric(24, 8)
RATE = Numeric(24, 10)

RESERVING_STATUS_CLAUSE = "status IN ('pending', 'confirmed')"


# =============================================================
# ACCOUNTS
# =============================================================

class Account(Base):
    """
    Per-user ledger account.

    Holds the base currency balances are expressed in. Locked
    FOR UPDATE by subscribe/cancel/trade to serialise balance checks.
    """

    __tablename__ = "accounts"

    user_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    base_currency: Mapped[str] = mapped_column(String(5), nullable=False, default="USD")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)


# =============================================================
# CURRENCY RATES
# =============================================================

class CurrencyRate(Base):
    """
    Directed exchange rate.

    (USD, TRY) and (TRY, USD) are independent rows.
    """

    __tablename__ = "currency_rates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    from_currency: Mapped[str] = mapped_column(String(5), nullable=False)
    to_currency: Mapped[str] = mapped_column(String(5), nullable=False)
    rate: Mapped[Decimal] = mapped_column(RATE, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_manual: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_updated_by: Mapped[Optional[int]] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        UniqueConstraint("from_currency", "to_currency", name="uq_currency_rates_pair"),
    )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "from_currency": self.from_currency,
            "to_currency": self.to_currency,
            "rate": str(self.rate),
            "is_active": self.is_active,
            "is_manual": self.is_manual,
            "last_updated_by": self.last_updated_by,
            "updated_at": _iso(self.updated_at),
        }


# =============================================================
# DEPOSITS
# =============================================================

class Deposit(Base):
    """
    User deposit.

    pending -> approved | rejected, exactly once.
    """

    __tablename__ = "deposits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("accounts.user_id"), nullable=False, index=True)

    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(5), nullable=False)
    method: Mapped[str] = mapped_column(String(32), nullable=False)
    transaction_id: Mapped[Optional[str]] = mapped_column(String(128))

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", index=True)
    reviewed_by: Mapped[Optional[int]] = mapped_column(Integer)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index("ix_deposits_user_status", "user_id", "status"),
    )


# =============================================================
# STOCKS
# =============================================================

class Stock(Base):
    """Tradable instrument. Created on first settlement of an IPO."""

    __tablename__ = "stocks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String(16), unique=True, nullable=False, index=True)
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    exchange: Mapped[str] = mapped_column(String(32), nullable=False, default="BIST")
    currency: Mapped[str] = mapped_column(String(5), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)


# =============================================================
# IPOS
# =============================================================

class Ipo(Base):
    """
    Initial public offering.

    Status moves upcoming -> ongoing -> closed -> listed, driven
    only by the sweep job.
    """

    __tablename__ = "ipos"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String(16), unique=True, nullable=False, index=True)
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    exchange: Mapped[str] = mapped_column(String(32), nullable=False, default="BIST")
    currency: Mapped[str] = mapped_column(String(5), nullable=False, default="TRY")

    price_min: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    price_max: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    lot_size: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    total_shares: Mapped[int] = mapped_column(BigInteger, nullable=False)

    start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    listing_date: Mapped[Optional[datetime]] = mapped_column(DateTime)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="upcoming", index=True)
    allocated_shares: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    allocation_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    created_by: Mapped[Optional[int]] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)

    subscriptions: Mapped[List["IpoSubscription"]] = relationship(
        "IpoSubscription",
        back_populates="ipo",
    )

    __table_args__ = (
        Index("ix_ipos_status_end_date", "status", "end_date"),
    )


# =============================================================
# IPO SUBSCRIPTIONS
# =============================================================

class IpoSubscription(Base):
    """
    Subscription request.

    total_amount is reserved while status is pending/confirmed.
    """

    __tablename__ = "ipo_subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("accounts.user_id"), nullable=False, index=True)
    ipo_id: Mapped[int] = mapped_column(Integer, ForeignKey("ipos.id"), nullable=False, index=True)

    quantity: Mapped[int] = mapped_column(BigInteger, nullable=False)
    price_per_share: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(5), nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", index=True)
    allocation_quantity: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    allocation_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    rejection_reason: Mapped[Optional[str]] = mapped_column(String(64))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)

    ipo: Mapped["Ipo"] = relationship("Ipo", back_populates="subscriptions")

    __table_args__ = (
        # One live request per (user, ipo); re-subscribing after cancel is allowed
        Index(
            "uq_ipo_subscriptions_active_user_ipo",
            "user_id",
            "ipo_id",
            unique=True,
            postgresql_where=text(RESERVING_STATUS_CLAUSE),
            sqlite_where=text(RESERVING_STATUS_CLAUSE),
        ),
        Index("ix_ipo_subscriptions_ipo_status", "ipo_id", "status"),
    )


# =============================================================
# PORTFOLIOS
# =============================================================

class Portfolio(Base):
    """Holding per (user, stock). Never deleted, may reach zero."""

    __tablename__ = "portfolios"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("accounts.user_id"), nullable=False, index=True)
    stock_id: Mapped[int] = mapped_column(Integer, ForeignKey("stocks.id"), nullable=False)

    quantity: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    average_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_cost: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    last_transaction_date: Mapped[Optional[datetime]] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)

    stock: Mapped["Stock"] = relationship("Stock")

    __table_args__ = (
        UniqueConstraint("user_id", "stock_id", name="uq_portfolios_user_stock"),
    )


# =============================================================
# STOCK TRANSACTIONS
# =============================================================

class StockTransaction(Base):
    """
    Append-only audit record of every buy/sell/allocation.

    subscription_id is set for IPO settlements and is unique.
    """

    __tablename__ = "stock_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("accounts.user_id"), nullable=False, index=True)
    stock_id: Mapped[int] = mapped_column(Integer, ForeignKey("stocks.id"), nullable=False)
    subscription_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("ipo_subscriptions.id"), unique=True,
    )

    type: Mapped[str] = mapped_column(String(8), nullable=False)
    quantity: Mapped[int] = mapped_column(BigInteger, nullable=False)
    price_per_share: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    commission: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(5), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="completed")
    notes: Mapped[Optional[str]] = mapped_column(Text)

    transaction_date: Mapped[datetime] = mapped_column(DateTime, default=utc_now, index=True)

    stock: Mapped["Stock"] = relationship("Stock")

    __table_args__ = (
        Index("ix_stock_transactions_user_date", "user_id", "transaction_date"),
    )


# =============================================================
# JOB RUNS
# =============================================================

class JobRun(Base):
    """One execution of a scheduled job."""

    __tablename__ = "job_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_name: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    message: Mapped[Optional[str]] = mapped_column(Text)
    execution_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    details: Mapped[Optional[Any]] = mapped_column(JSON)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)


__all__ = [
    "utc_now",
    "Account",
    "CurrencyRate",
    "Deposit",
    "Stock",
    "Ipo",
    "IpoSubscription",
    "Portfolio",
    "StockTransaction",
    "JobRun",
]
