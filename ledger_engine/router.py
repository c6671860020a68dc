"""
FastAPI Router for Ledger Endpoints.

Provides REST API for:
- Deposits and their review
- IPO creation and subscriptions
- Balances, portfolios and the transaction log
- Currency rates
- The allocation sweep and its job history

Authentication is handled upstream; user and reviewer ids
arrive in paths and bodies.
"""

from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status

from .service import LedgerEngine
from .schemas import (
    BalanceResponse,
    ConversionResponse,
    CurrencyRateResponse,
    CurrencyRateUpsert,
    DepositCreate,
    DepositResponse,
    DepositReviewRequest,
    DepositStatusEnum,
    HealthResponse,
    IpoCreate,
    IpoResponse,
    IpoStatusEnum,
    JobRunResponse,
    ManualDepositCreate,
    PortfolioItem,
    SubscriptionAmend,
    SubscriptionCancel,
    SubscriptionCreate,
    SubscriptionResponse,
    SubscriptionStatusEnum,
    SweepResponse,
    TradeCreate,
    TradeSideEnum,
    TransactionResponse,
)

router = APIRouter()


# =============================================================
# HELPER: Engine dependency
# =============================================================

def get_ledger(request: Request) -> LedgerEngine:
    return request.app.state.ledger


def _transaction_response(transaction, symbol: str) -> TransactionResponse:
    return TransactionResponse(
        id=transaction.id,
        user_id=transaction.user_id,
        symbol=symbol,
        subscription_id=transaction.subscription_id,
        type=transaction.type,
        quantity=transaction.quantity,
        price_per_share=transaction.price_per_share,
        total_amount=transaction.total_amount,
        commission=transaction.commission,
        currency=transaction.currency,
        status=transaction.status,
        notes=transaction.notes,
        transaction_date=transaction.transaction_date,
    )


# =============================================================
# HEALTH
# =============================================================

@router.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check(ledger: LedgerEngine = Depends(get_ledger)):
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        database=ledger.health_check(),
        timestamp=ledger.clock.format_iso(),
    )


# =============================================================
# CURRENCY RATES
# =============================================================

@router.get("/currency-rates", response_model=List[CurrencyRateResponse], tags=["Currency"])
def list_currency_rates(ledger: LedgerEngine = Depends(get_ledger)):
    """All active directed rates."""
    return [CurrencyRateResponse.model_validate(r) for r in ledger.get_active_rates()]


@router.get("/currency-rates/convert", response_model=ConversionResponse, tags=["Currency"])
def convert_currency(
    amount: Decimal = Query(...),
    from_currency: str = Query(..., alias="from"),
    to_currency: str = Query(..., alias="to"),
    ledger: LedgerEngine = Depends(get_ledger),
):
    """Convert an amount with the stored directed rate."""
    converted = ledger.convert(amount, from_currency, to_currency)
    return ConversionResponse(
        amount=amount,
        from_currency=from_currency.upper(),
        to_currency=to_currency.upper(),
        converted=converted,
    )


@router.put("/admin/currency-rates", response_model=CurrencyRateResponse, tags=["Admin"])
def upsert_currency_rate(body: CurrencyRateUpsert, ledger: LedgerEngine = Depends(get_ledger)):
    """Create or update a directed rate."""
    rate = ledger.upsert_currency_rate(
        body.from_currency, body.to_currency, body.rate,
        updated_by=body.updated_by, is_manual=body.is_manual,
    )
    return CurrencyRateResponse.model_validate(rate)


# =============================================================
# DEPOSITS
# =============================================================

@router.post("/deposits", response_model=DepositResponse, status_code=status.HTTP_201_CREATED, tags=["Deposits"])
def submit_deposit(body: DepositCreate, ledger: LedgerEngine = Depends(get_ledger)):
    """Submit a deposit for review."""
    deposit = ledger.submit_deposit(
        body.user_id, body.amount, body.currency, body.method.value, body.transaction_id,
    )
    return DepositResponse.model_validate(deposit)


@router.post(
    "/admin/deposits/manual",
    response_model=DepositResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Admin"],
)
def create_manual_deposit(body: ManualDepositCreate, ledger: LedgerEngine = Depends(get_ledger)):
    """Record an approved deposit on a user's behalf."""
    deposit = ledger.create_manual_deposit(
        body.user_id, body.amount, body.currency, body.reviewer_id, body.method.value, body.transaction_id,
    )
    return DepositResponse.model_validate(deposit)


@router.get("/admin/deposits", response_model=List[DepositResponse], tags=["Admin"])
def list_deposits(
    status_filter: Optional[DepositStatusEnum] = Query(None, alias="status"),
    user_id: Optional[int] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    ledger: LedgerEngine = Depends(get_ledger),
):
    """Deposits, newest first."""
    deposits = ledger.list_deposits(
        status_filter.value if status_filter else None, user_id, limit, offset,
    )
    return [DepositResponse.model_validate(d) for d in deposits]


@router.post("/admin/deposits/{deposit_id}/review", response_model=DepositResponse, tags=["Admin"])
def review_deposit(
    deposit_id: int,
    body: DepositReviewRequest,
    ledger: LedgerEngine = Depends(get_ledger),
):
    """
    Approve or reject a pending deposit.

    A second review of the same deposit returns 409.
    """
    deposit = ledger.review_deposit(deposit_id, body.decision.value, body.reviewer_id, body.reason)
    return DepositResponse.model_validate(deposit)


# =============================================================
# IPOS & SUBSCRIPTIONS
# =============================================================

@router.post("/admin/ipos", response_model=IpoResponse, status_code=status.HTTP_201_CREATED, tags=["Admin"])
def create_ipo(body: IpoCreate, ledger: LedgerEngine = Depends(get_ledger)):
    """Create an upcoming IPO."""
    return IpoResponse.model_validate(ledger.create_ipo(**body.model_dump()))


@router.get("/ipos", response_model=List[IpoResponse], tags=["IPOs"])
def list_ipos(
    status_filter: Optional[IpoStatusEnum] = Query(None, alias="status"),
    ledger: LedgerEngine = Depends(get_ledger),
):
    """Offerings ordered by subscription start."""
    ipos = ledger.list_ipos(status_filter.value if status_filter else None)
    return [IpoResponse.model_validate(i) for i in ipos]


@router.get("/ipos/{ipo_id}", response_model=IpoResponse, tags=["IPOs"])
def get_ipo(ipo_id: int, ledger: LedgerEngine = Depends(get_ledger)):
    return IpoResponse.model_validate(ledger.get_ipo(ipo_id))


@router.post(
    "/ipos/{ipo_id}/subscriptions",
    response_model=SubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Subscriptions"],
)
def create_subscription(ipo_id: int, body: SubscriptionCreate, ledger: LedgerEngine = Depends(get_ledger)):
    """Subscribe to an ongoing IPO, reserving funds."""
    subscription = ledger.create_subscription(body.user_id, ipo_id, body.quantity, body.price_per_share)
    return SubscriptionResponse.model_validate(subscription)


@router.patch("/subscriptions/{subscription_id}", response_model=SubscriptionResponse, tags=["Subscriptions"])
def amend_subscription(
    subscription_id: int,
    body: SubscriptionAmend,
    ledger: LedgerEngine = Depends(get_ledger),
):
    """Replace the terms of a pending subscription."""
    subscription = ledger.amend_subscription(subscription_id, body.quantity, body.price_per_share, body.user_id)
    return SubscriptionResponse.model_validate(subscription)


@router.post("/subscriptions/{subscription_id}/cancel", response_model=SubscriptionResponse, tags=["Subscriptions"])
def cancel_subscription(
    subscription_id: int,
    body: Optional[SubscriptionCancel] = None,
    ledger: LedgerEngine = Depends(get_ledger),
):
    """Cancel a pending subscription, releasing its reservation."""
    subscription = ledger.cancel_subscription(subscription_id, body.user_id if body else None)
    return SubscriptionResponse.model_validate(subscription)


@router.post(
    "/admin/subscriptions/{subscription_id}/confirm",
    response_model=SubscriptionResponse,
    tags=["Admin"],
)
def confirm_subscription(subscription_id: int, ledger: LedgerEngine = Depends(get_ledger)):
    """Confirm a pending subscription."""
    return SubscriptionResponse.model_validate(ledger.confirm_subscription(subscription_id))


# =============================================================
# USER VIEWS
# =============================================================

@router.get("/users/{user_id}/subscriptions", response_model=List[SubscriptionResponse], tags=["Users"])
def list_subscriptions(
    user_id: int,
    status_filter: Optional[SubscriptionStatusEnum] = Query(None, alias="status"),
    ledger: LedgerEngine = Depends(get_ledger),
):
    subscriptions = ledger.list_subscriptions(user_id, status_filter.value if status_filter else None)
    return [SubscriptionResponse.model_validate(s) for s in subscriptions]


@router.get("/users/{user_id}/balance", response_model=BalanceResponse, tags=["Users"])
def get_balance(user_id: int, ledger: LedgerEngine = Depends(get_ledger)):
    """Derived balance: total, reserved, available."""
    snapshot = ledger.get_balance(user_id)
    return BalanceResponse(
        user_id=snapshot.user_id,
        currency=snapshot.currency,
        total=snapshot.total,
        reserved=snapshot.reserved,
        available=snapshot.available,
    )


@router.get("/users/{user_id}/portfolio", response_model=List[PortfolioItem], tags=["Users"])
def get_portfolio(user_id: int, ledger: LedgerEngine = Depends(get_ledger)):
    return [PortfolioItem.model_validate(p) for p in ledger.get_portfolio(user_id)]


@router.get("/users/{user_id}/transactions", response_model=List[TransactionResponse], tags=["Users"])
def list_transactions(
    user_id: int,
    side: Optional[TradeSideEnum] = Query(None, alias="type"),
    limit: int = Query(100, ge=1, le=500),
    ledger: LedgerEngine = Depends(get_ledger),
):
    rows = ledger.list_transactions(user_id, side.value if side else None, limit)
    return [_transaction_response(t, s.symbol) for t, s in rows]


@router.post(
    "/users/{user_id}/trades",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Users"],
)
def record_trade(user_id: int, body: TradeCreate, ledger: LedgerEngine = Depends(get_ledger)):
    """Record a buy or sell against the derived balance."""
    transaction = ledger.record_trade(user_id, body.symbol, body.side.value, body.quantity, body.price_per_share)
    return _transaction_response(transaction, body.symbol.strip().upper())


# =============================================================
# OPERATIONS
# =============================================================

@router.post("/admin/allocation-sweep", response_model=SweepResponse, tags=["Admin"])
def run_allocation_sweep(ledger: LedgerEngine = Depends(get_ledger)):
    """Run one allocation sweep now."""
    report = ledger.run_allocation_sweep()
    return SweepResponse(success=report.success, report=report.to_dict())


@router.get("/admin/job-runs", response_model=List[JobRunResponse], tags=["Admin"])
def list_job_runs(
    job_name: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=200),
    ledger: LedgerEngine = Depends(get_ledger),
):
    return [JobRunResponse.model_validate(r) for r in ledger.list_job_runs(job_name, limit)]
