"""
Pydantic Schemas for the Ledger API.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from enum import Enum

from pydantic import BaseModel, Field


# =============================================================
# ENUMS
# =============================================================

class DepositMethodEnum(str, Enum):
    BANK_TRANSFER = "bank_transfer"
    CREDIT_CARD = "credit_card"
    CRYPTO = "crypto"
    MANUAL_PAYMENT = "manual_payment"


class DepositStatusEnum(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ReviewDecisionEnum(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


class IpoStatusEnum(str, Enum):
    UPCOMING = "upcoming"
    ONGOING = "ongoing"
    CLOSED = "closed"
    LISTED = "listed"


class SubscriptionStatusEnum(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ALLOCATED = "allocated"
    REJECTED = "rejected"


class TradeSideEnum(str, Enum):
    BUY = "buy"
    SELL = "sell"


# =============================================================
# ERRORS
# =============================================================

class ErrorBody(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    error: ErrorBody


# =============================================================
# CURRENCY
# =============================================================

class CurrencyRateUpsert(BaseModel):
    """Admin rate update. Directed: from -> to only."""
    from_currency: str = Field(..., min_length=3, max_length=5)
    to_currency: str = Field(..., min_length=3, max_length=5)
    rate: Decimal
    updated_by: Optional[int] = None
    is_manual: bool = True


class CurrencyRateResponse(BaseModel):
    id: int
    from_currency: str
    to_currency: str
    rate: Decimal
    is_active: bool
    is_manual: bool
    last_updated_by: Optional[int] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ConversionResponse(BaseModel):
    amount: Decimal
    from_currency: str
    to_currency: str
    converted: Decimal


# =============================================================
# DEPOSITS
# =============================================================

class DepositCreate(BaseModel):
    user_id: int
    amount: Decimal
    currency: str
    method: DepositMethodEnum = DepositMethodEnum.BANK_TRANSFER
    transaction_id: Optional[str] = None


class ManualDepositCreate(BaseModel):
    """Admin-entered deposit, approved on creation."""
    user_id: int
    amount: Decimal
    currency: str
    reviewer_id: int
    method: DepositMethodEnum = DepositMethodEnum.MANUAL_PAYMENT
    transaction_id: Optional[str] = None


class DepositReviewRequest(BaseModel):
    decision: ReviewDecisionEnum
    reviewer_id: Optional[int] = None
    reason: Optional[str] = Field(None, max_length=2000)


class DepositResponse(BaseModel):
    id: int
    user_id: int
    amount: Decimal
    currency: str
    method: str
    transaction_id: Optional[str] = None
    status: str
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


# =============================================================
# IPOS
# =============================================================

class IpoCreate(BaseModel):
    symbol: str
    company_name: str
    price_min: Decimal
    price_max: Decimal
    lot_size: int
    total_shares: int
    start_date: datetime
    end_date: datetime
    currency: str = "TRY"
    exchange: str = "BIST"
    listing_date: Optional[datetime] = None
    created_by: Optional[int] = None


class IpoResponse(BaseModel):
    id: int
    symbol: str
    company_name: str
    exchange: str
    currency: str
    price_min: Decimal
    price_max: Decimal
    lot_size: int
    total_shares: int
    start_date: datetime
    end_date: datetime
    listing_date: Optional[datetime] = None
    status: str
    allocated_shares: int
    allocation_completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# =============================================================
# SUBSCRIPTIONS
# =============================================================

class SubscriptionCreate(BaseModel):
    user_id: int
    quantity: int
    price_per_share: Decimal


class SubscriptionAmend(BaseModel):
    quantity: int
    price_per_share: Decimal
    user_id: Optional[int] = None


class SubscriptionCancel(BaseModel):
    user_id: Optional[int] = None


class SubscriptionResponse(BaseModel):
    id: int
    user_id: int
    ipo_id: int
    quantity: int
    price_per_share: Decimal
    total_amount: Decimal
    currency: str
    status: str
    allocation_quantity: int
    allocation_amount: Decimal
    rejection_reason: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# =============================================================
# BALANCE & PORTFOLIO
# =============================================================

class BalanceResponse(BaseModel):
    user_id: int
    currency: str
    total: Decimal
    reserved: Decimal
    available: Decimal


class PortfolioItem(BaseModel):
    symbol: str
    quantity: int
    average_price: Decimal
    total_cost: Decimal
    currency: str

    class Config:
        from_attributes = True


# =============================================================
# TRADES
# =============================================================

class TradeCreate(BaseModel):
    symbol: str
    side: TradeSideEnum
    quantity: int
    price_per_share: Decimal


class TransactionResponse(BaseModel):
    id: int
    user_id: int
    symbol: str
    subscription_id: Optional[int] = None
    type: str
    quantity: int
    price_per_share: Decimal
    total_amount: Decimal
    commission: Decimal
    currency: str
    status: str
    notes: Optional[str] = None
    transaction_date: datetime


# =============================================================
# OPERATIONS
# =============================================================

class SweepResponse(BaseModel):
    success: bool
    report: Dict[str, Any]


class JobRunResponse(BaseModel):
    id: int
    job_name: str
    status: str
    message: Optional[str] = None
    execution_ms: int
    started_at: datetime
    completed_at: Optional[datetime] = None
    details: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True


class HealthResponse(BaseModel):
    status: str
    database: bool
    timestamp: str


__all__ = [
    "DepositMethodEnum",
    "DepositStatusEnum",
    "ReviewDecisionEnum",
    "IpoStatusEnum",
    "SubscriptionStatusEnum",
    "TradeSideEnum",
    "ErrorBody",
    "ErrorResponse",
    "CurrencyRateUpsert",
    "CurrencyRateResponse",
    "ConversionResponse",
    "DepositCreate",
    "ManualDepositCreate",
    "DepositReviewRequest",
    "DepositResponse",
    "IpoCreate",
    "IpoResponse",
    "SubscriptionCreate",
    "SubscriptionAmend",
    "SubscriptionCancel",
    "SubscriptionResponse",
    "BalanceResponse",
    "PortfolioItem",
    "TradeCreate",
    "TransactionResponse",
    "SweepResponse",
    "JobRunResponse",
    "HealthResponse",
]
