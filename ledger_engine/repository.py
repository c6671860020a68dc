"""
Ledger Engine - Repository.

============================================================
PURPOSE
============================================================
Database operations for the ledger engine.

RESPONSIBILITIES:
- Load/lock accounts, deposits, IPOs, subscriptions, portfolios
- Compare-and-swap IPO status transitions
- Raw per-currency inputs for the derived balance
- Audit log and job run reads

CRITICAL REQUIREMENTS:
- The repository never commits; transaction_scope() does
- Row locks use SELECT ... FOR UPDATE
- Status CAS returns whether THIS caller won the transition

============================================================
"""

import logging
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, update, and_
from sqlalchemy.orm import Session

from database.models import (
    Account,
    CurrencyRate,
    Deposit,
    Stock,
    Ipo,
    IpoSubscription,
    Portfolio,
    StockTransaction,
    JobRun,
)

from .state_machine import TransitionGuard
from .types import (
    DepositStatus,
    IpoStatus,
    SubscriptionStatus,
    TransactionStatus,
    TransactionType,
    RESERVING_SUBSCRIPTION_STATUSES,
)


logger = logging.getLogger(__name__)

_RESERVING = [s.value for s in RESERVING_SUBSCRIPTION_STATUSES]


def _sum_by_currency(rows) -> Dict[str, Decimal]:
    totals: Dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
    for currency, amount in rows:
        totals[currency] += Decimal(amount)
    return dict(totals)


# ============================================================
# LEDGER REPOSITORY
# ============================================================

class LedgerRepository:
    """
    Repository for ledger data persistence.

    Wraps one session; the caller owns the transaction.
    """

    def __init__(self, session: Session):
        """
        Initialize repository.

        Args:
            session: SQLAlchemy session
        """
        self._session = session

    @property
    def session(self) -> Session:
        return self._session

    def add(self, instance) -> None:
        self._session.add(instance)

    def flush(self) -> None:
        self._session.flush()

    # --------------------------------------------------------
    # ACCOUNTS
    # --------------------------------------------------------

    def get_account(self, user_id: int) -> Optional[Account]:
        return self._session.get(Account, user_id)

    def get_or_create_account(self, user_id: int, base_currency: str) -> Account:
        """Fetch the account row, creating it with the given base currency."""
        account = self.get_account(user_id)
        if account is None:
            account = Account(user_id=user_id, base_currency=base_currency)
            self._session.add(account)
            self._session.flush()
            logger.info(f"Created account for user {user_id} ({base_currency})")
        return account

    def lock_account(self, user_id: int, base_currency: str) -> Account:
        """
        Lock the user's account row for the rest of the transaction.

        Serialises read-then-insert balance checks for one user.
        """
        self.get_or_create_account(user_id, base_currency)
        return self._session.execute(
            select(Account).where(Account.user_id == user_id).with_for_update()
        ).scalar_one()

    # --------------------------------------------------------
    # CURRENCY RATES
    # --------------------------------------------------------

    def get_rate(self, from_currency: str, to_currency: str) -> Optional[CurrencyRate]:
        return self._session.execute(
            select(CurrencyRate).where(
                CurrencyRate.from_currency == from_currency,
                CurrencyRate.to_currency == to_currency,
            )
        ).scalar_one_or_none()

    def get_active_rate(self, from_currency: str, to_currency: str) -> Optional[CurrencyRate]:
        rate = self.get_rate(from_currency, to_currency)
        if rate is None or not rate.is_active:
            return None
        return rate

    def list_active_rates(self) -> List[CurrencyRate]:
        return list(self._session.execute(
            select(CurrencyRate)
            .where(CurrencyRate.is_active.is_(True))
            .order_by(CurrencyRate.from_currency, CurrencyRate.to_currency)
        ).scalars())

    # --------------------------------------------------------
    # DEPOSITS
    # --------------------------------------------------------

    def get_deposit(self, deposit_id: int, lock: bool = False) -> Optional[Deposit]:
        stmt = select(Deposit).where(Deposit.id == deposit_id)
        if lock:
            stmt = stmt.with_for_update()
        return self._session.execute(stmt).scalar_one_or_none()

    def list_deposits(
        self,
        status: Optional[DepositStatus] = None,
        user_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Deposit]:
        stmt = select(Deposit)
        if status is not None:
            stmt = stmt.where(Deposit.status == status.value)
        if user_id is not None:
            stmt = stmt.where(Deposit.user_id == user_id)
        stmt = stmt.order_by(Deposit.created_at.desc(), Deposit.id.desc()).limit(limit).offset(offset)
        return list(self._session.execute(stmt).scalars())

    def approved_deposit_totals(self, user_id: int) -> Dict[str, Decimal]:
        """Approved deposit amounts per currency."""
        rows = self._session.execute(
            select(Deposit.currency, Deposit.amount).where(
                Deposit.user_id == user_id,
                Deposit.status == DepositStatus.APPROVED.value,
            )
        ).all()
        return _sum_by_currency(rows)

    # --------------------------------------------------------
    # IPOS
    # --------------------------------------------------------

    def get_ipo(self, ipo_id: int, lock: bool = False) -> Optional[Ipo]:
        stmt = select(Ipo).where(Ipo.id == ipo_id)
        if lock:
            stmt = stmt.with_for_update()
        return self._session.execute(stmt).scalar_one_or_none()

    def get_ipo_by_symbol(self, symbol: str) -> Optional[Ipo]:
        return self._session.execute(
            select(Ipo).where(Ipo.symbol == symbol)
        ).scalar_one_or_none()

    def list_ipos(self, status: Optional[IpoStatus] = None) -> List[Ipo]:
        stmt = select(Ipo)
        if status is not None:
            stmt = stmt.where(Ipo.status == status.value)
        return list(self._session.execute(stmt.order_by(Ipo.start_date, Ipo.id)).scalars())

    def ipos_due_to_open(self, now: datetime) -> List[int]:
        return list(self._session.execute(
            select(Ipo.id).where(
                Ipo.status == IpoStatus.UPCOMING.value,
                Ipo.start_date <= now,
            ).order_by(Ipo.id)
        ).scalars())

    def ipos_due_to_close(self, now: datetime) -> List[int]:
        return list(self._session.execute(
            select(Ipo.id).where(
                Ipo.status == IpoStatus.ONGOING.value,
                Ipo.end_date < now,
            ).order_by(Ipo.end_date, Ipo.id)
        ).scalars())

    def ipos_due_to_list(self, now: datetime) -> List[int]:
        return list(self._session.execute(
            select(Ipo.id).where(
                Ipo.status == IpoStatus.CLOSED.value,
                Ipo.allocation_completed_at.is_not(None),
                Ipo.listing_date.is_not(None),
                Ipo.listing_date <= now,
            ).order_by(Ipo.id)
        ).scalars())

    def compare_and_set_ipo_status(
        self,
        ipo_id: int,
        expected: IpoStatus,
        target: IpoStatus,
        now: datetime,
        *conditions,
    ) -> bool:
        """
        Atomically move an IPO from expected to target status.

        Returns:
            True only if this statement performed the transition
        """
        TransitionGuard.require("ipo", ipo_id, expected, target)
        result = self._session.execute(
            update(Ipo)
            .where(and_(Ipo.id == ipo_id, Ipo.status == expected.value, *conditions))
            .values(status=target.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        won = result.rowcount == 1
        if won:
            self._session.expire_all()
        return won

    # --------------------------------------------------------
    # SUBSCRIPTIONS
    # --------------------------------------------------------

    def get_subscription(self, subscription_id: int, lock: bool = False) -> Optional[IpoSubscription]:
        stmt = select(IpoSubscription).where(IpoSubscription.id == subscription_id)
        if lock:
            stmt = stmt.with_for_update()
        return self._session.execute(stmt).scalar_one_or_none()

    def find_active_subscription(self, user_id: int, ipo_id: int) -> Optional[IpoSubscription]:
        return self._session.execute(
            select(IpoSubscription).where(
                IpoSubscription.user_id == user_id,
                IpoSubscription.ipo_id == ipo_id,
                IpoSubscription.status.in_(_RESERVING),
            )
        ).scalars().first()

    def reserving_subscriptions_for_ipo(self, ipo_id: int, lock: bool = True) -> List[IpoSubscription]:
        stmt = (
            select(IpoSubscription)
            .where(
                IpoSubscription.ipo_id == ipo_id,
                IpoSubscription.status.in_(_RESERVING),
            )
            .order_by(IpoSubscription.created_at, IpoSubscription.id)
        )
        if lock:
            stmt = stmt.with_for_update()
        return list(self._session.execute(stmt).scalars())

    def list_subscriptions(
        self,
        user_id: int,
        status: Optional[SubscriptionStatus] = None,
    ) -> List[IpoSubscription]:
        stmt = select(IpoSubscription).where(IpoSubscription.user_id == user_id)
        if status is not None:
            stmt = stmt.where(IpoSubscription.status == status.value)
        return list(self._session.execute(
            stmt.order_by(IpoSubscription.created_at.desc(), IpoSubscription.id.desc())
        ).scalars())

    def reserved_totals(self, user_id: int) -> Dict[str, Decimal]:
        """Reserved subscription amounts per currency."""
        rows = self._session.execute(
            select(IpoSubscription.currency, IpoSubscription.total_amount).where(
                IpoSubscription.user_id == user_id,
                IpoSubscription.status.in_(_RESERVING),
            )
        ).all()
        return _sum_by_currency(rows)

    def allocated_spend_totals(self, user_id: int) -> Dict[str, Decimal]:
        """Cash actually spent on allocations, per currency."""
        rows = self._session.execute(
            select(IpoSubscription.currency, IpoSubscription.allocation_amount).where(
                IpoSubscription.user_id == user_id,
                IpoSubscription.status == SubscriptionStatus.ALLOCATED.value,
            )
        ).all()
        return _sum_by_currency(rows)

    def unsettled_allocations(self, ipo_id: Optional[int] = None) -> List[IpoSubscription]:
        """Allocated subscriptions with no settlement transaction."""
        stmt = (
            select(IpoSubscription)
            .outerjoin(StockTransaction, StockTransaction.subscription_id == IpoSubscription.id)
            .where(
                IpoSubscription.status == SubscriptionStatus.ALLOCATED.value,
                StockTransaction.id.is_(None),
            )
            .order_by(IpoSubscription.id)
        )
        if ipo_id is not None:
            stmt = stmt.where(IpoSubscription.ipo_id == ipo_id)
        return list(self._session.execute(stmt).scalars())

    # --------------------------------------------------------
    # STOCKS & PORTFOLIOS
    # --------------------------------------------------------

    def get_stock_by_symbol(self, symbol: str) -> Optional[Stock]:
        return self._session.execute(
            select(Stock).where(Stock.symbol == symbol)
        ).scalar_one_or_none()

    def get_portfolio(self, user_id: int, stock_id: int, lock: bool = False) -> Optional[Portfolio]:
        stmt = select(Portfolio).where(
            Portfolio.user_id == user_id,
            Portfolio.stock_id == stock_id,
        )
        if lock:
            stmt = stmt.with_for_update()
        return self._session.execute(stmt).scalar_one_or_none()

    def list_portfolio(self, user_id: int) -> List[Tuple[Portfolio, Stock]]:
        return list(self._session.execute(
            select(Portfolio, Stock)
            .join(Stock, Stock.id == Portfolio.stock_id)
            .where(Portfolio.user_id == user_id)
            .order_by(Stock.symbol)
        ).tuples())

    # --------------------------------------------------------
    # STOCK TRANSACTIONS
    # --------------------------------------------------------

    def transaction_for_subscription(self, subscription_id: int) -> Optional[StockTransaction]:
        return self._session.execute(
            select(StockTransaction).where(StockTransaction.subscription_id == subscription_id)
        ).scalar_one_or_none()

    def trade_cash_flows(self, user_id: int) -> Dict[str, Decimal]:
        """
        Net cash flow of completed trades per currency.

        Settlement rows (subscription_id set) are excluded; their
        cash is already counted through allocation_amount.
        """
        rows = self._session.execute(
            select(
                StockTransaction.currency,
                StockTransaction.type,
                StockTransaction.total_amount,
                StockTransaction.commission,
            ).where(
                StockTransaction.user_id == user_id,
                StockTransaction.subscription_id.is_(None),
                StockTransaction.status == TransactionStatus.COMPLETED.value,
            )
        ).all()

        flows: Dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
        for currency, side, amount, commission in rows:
            if side == TransactionType.BUY.value:
                flows[currency] -= Decimal(amount) + Decimal(commission)
            else:
                flows[currency] += Decimal(amount) - Decimal(commission)
        return dict(flows)

    def list_transactions(
        self,
        user_id: int,
        side: Optional[TransactionType] = None,
        limit: int = 100,
    ) -> List[Tuple[StockTransaction, Stock]]:
        stmt = (
            select(StockTransaction, Stock)
            .join(Stock, Stock.id == StockTransaction.stock_id)
            .where(StockTransaction.user_id == user_id)
        )
        if side is not None:
            stmt = stmt.where(StockTransaction.type == side.value)
        stmt = stmt.order_by(StockTransaction.transaction_date.desc(), StockTransaction.id.desc()).limit(limit)
        return list(self._session.execute(stmt).tuples())

    # --------------------------------------------------------
    # JOB RUNS
    # --------------------------------------------------------

    def list_job_runs(self, job_name: Optional[str] = None, limit: int = 20) -> List[JobRun]:
        stmt = select(JobRun)
        if job_name:
            stmt = stmt.where(JobRun.job_name == job_name)
        return list(self._session.execute(
            stmt.order_by(JobRun.started_at.desc(), JobRun.id.desc()).limit(limit)
        ).scalars())


__all__ = ["LedgerRepository"]
