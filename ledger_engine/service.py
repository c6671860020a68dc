"""
Ledger Engine - Boundary Facade.

============================================================
PURPOSE
============================================================
The single entry point collaborators call. Each method runs
in its own transaction (mutations) or read session (queries).

TRANSACTIONS:
- Mutations: transaction_scope(), retried only on transient
  infrastructure errors with exponential backoff
- Business errors are raised on the first attempt with no
  state change
- Reads: lock-free, committed data only

============================================================
"""

import logging
import time
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, List, Optional, Tuple, TypeVar

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from core.clock import ClockProtocol, ClockFactory
from core.exceptions import EngineException
from database.engine import (
    create_all_tables,
    initialize_database,
    create_database_engine,
    create_session_factory,
    read_scope,
    transaction_scope,
)
from database.models import (
    CurrencyRate,
    Deposit,
    Ipo,
    IpoSubscription,
    JobRun,
    Stock,
    StockTransaction,
)

from .allocation import AllocationEngine
from .balance import BalanceLedger
from .config import EngineConfig
from .currency import CurrencyConversionService
from .deposits import DepositReviewService
from .ipos import IpoService
from .repository import LedgerRepository
from .settlement import SettlementApplier
from .subscriptions import SubscriptionReservationManager
from .sweep import AllocationSweep
from .trading import TradeService
from .types import (
    AllocationResult,
    BalanceSnapshot,
    DepositMethod,
    PortfolioPosition,
    SweepReport,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")


class LedgerEngine:
    """
    Deposit Ledger & IPO Settlement Engine.

    Usage:
        engine = LedgerEngine(EngineConfig.from_env())
        engine.create_tables()
        engine.review_deposit(42, "approved", reviewer_id=1)
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        db_engine: Optional[Engine] = None,
        session_factory: Optional[Callable[[], Session]] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._config = (config or EngineConfig()).ensure_valid()
        if session_factory is None:
            db_engine = db_engine or create_database_engine(**self._config.database.engine_kwargs())
            session_factory = create_session_factory(db_engine)
        self._db_engine = db_engine or getattr(session_factory, "kw", {}).get("bind")
        self._session_factory = session_factory
        self._clock = clock or ClockFactory.get_clock()

    @classmethod
    def from_env(cls) -> "LedgerEngine":
        return cls(EngineConfig.from_env())

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def clock(self) -> ClockProtocol:
        return self._clock

    @property
    def session_factory(self) -> Callable[[], Session]:
        return self._session_factory

    def create_tables(self) -> None:
        create_all_tables(self._db_engine)

    def initialize_database(self) -> None:
        """Verify the connection, then create missing tables."""
        initialize_database(self._db_engine)

    # --------------------------------------------------------
    # TRANSACTION HELPERS
    # --------------------------------------------------------

    def _write(self, operation: str, fn: Callable[[Session], T]) -> T:
        """Run fn in a transaction, retrying transient failures."""
        retry = self._config.retry
        attempt = 0
        while True:
            try:
                with transaction_scope(self._session_factory) as session:
                    return fn(session)
            except EngineException as e:
                if e.is_transient and attempt < retry.max_retries:
                    attempt += 1
                    delay = retry.delay_for(attempt)
                    logger.warning(
                        f"{operation}: transient failure {e.code}, retry {attempt}/{retry.max_retries} in {delay:.2f}s"
                    )
                    time.sleep(delay)
                    continue
                if e.is_transient:
                    logger.error(f"{operation}: giving up after {attempt} retries: {e.to_log_format()}")
                raise

    def _read(self, fn: Callable[[Session], T]) -> T:
        with read_scope(self._session_factory) as session:
            return fn(session)

    # --------------------------------------------------------
    # CURRENCY
    # --------------------------------------------------------

    def convert(self, amount: Any, from_currency: str, to_currency: str) -> Decimal:
        return self._read(
            lambda s: CurrencyConversionService(s, self._config.currency).convert(amount, from_currency, to_currency)
        )

    def get_active_rates(self) -> List[CurrencyRate]:
        return self._read(lambda s: CurrencyConversionService(s, self._config.currency).get_active_rates())

    def upsert_currency_rate(
        self,
        from_currency: str,
        to_currency: str,
        rate: Any,
        updated_by: Optional[int] = None,
        is_manual: bool = True,
    ) -> CurrencyRate:
        return self._write("upsert_currency_rate", lambda s: CurrencyConversionService(
            s, self._config.currency,
        ).upsert_currency_rate(
            from_currency, to_currency, rate, self._clock.now_naive(), updated_by=updated_by, is_manual=is_manual,
        ))

    def deactivate_currency_rate(
        self,
        from_currency: str,
        to_currency: str,
        updated_by: Optional[int] = None,
    ) -> CurrencyRate:
        return self._write("deactivate_currency_rate", lambda s: CurrencyConversionService(
            s, self._config.currency,
        ).deactivate_currency_rate(from_currency, to_currency, self._clock.now_naive(), updated_by))

    # --------------------------------------------------------
    # DEPOSITS
    # --------------------------------------------------------

    def _deposits(self, session: Session) -> DepositReviewService:
        return DepositReviewService(session, self._config.currency, self._clock)

    def submit_deposit(
        self,
        user_id: int,
        amount: Any,
        currency: str,
        method: Any = DepositMethod.BANK_TRANSFER,
        transaction_id: Optional[str] = None,
    ) -> Deposit:
        return self._write("submit_deposit", lambda s: self._deposits(s).submit_deposit(
            user_id, amount, currency, method, transaction_id,
        ))

    def create_manual_deposit(
        self,
        user_id: int,
        amount: Any,
        currency: str,
        reviewer_id: int,
        method: Any = DepositMethod.MANUAL,
        transaction_id: Optional[str] = None,
    ) -> Deposit:
        return self._write("create_manual_deposit", lambda s: self._deposits(s).create_manual_deposit(
            user_id, amount, currency, reviewer_id, method, transaction_id,
        ))

    def review_deposit(
        self,
        deposit_id: int,
        decision: Any,
        reviewer_id: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> Deposit:
        return self._write("review_deposit", lambda s: self._deposits(s).review_deposit(
            deposit_id, decision, reviewer_id, reason,
        ))

    def list_deposits(
        self,
        status: Optional[Any] = None,
        user_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Deposit]:
        return self._read(lambda s: self._deposits(s).list_deposits(status, user_id, limit, offset))

    # --------------------------------------------------------
    # IPOS
    # --------------------------------------------------------

    def create_ipo(self, **terms: Any) -> Ipo:
        return self._write("create_ipo", lambda s: IpoService(s, self._clock).create_ipo(**terms))

    def get_ipo(self, ipo_id: int) -> Ipo:
        return self._read(lambda s: IpoService(s, self._clock).get_ipo(ipo_id))

    def list_ipos(self, status: Optional[str] = None) -> List[Ipo]:
        return self._read(lambda s: IpoService(s, self._clock).list_ipos(status))

    # --------------------------------------------------------
    # SUBSCRIPTIONS
    # --------------------------------------------------------

    def _subscriptions(self, session: Session) -> SubscriptionReservationManager:
        return SubscriptionReservationManager(session, self._config.currency, self._clock)

    def create_subscription(
        self,
        user_id: int,
        ipo_id: int,
        quantity: int,
        price_per_share: Any,
    ) -> IpoSubscription:
        return self._write("create_subscription", lambda s: self._subscriptions(s).subscribe(
            user_id, ipo_id, quantity, price_per_share,
        ))

    def amend_subscription(
        self,
        subscription_id: int,
        quantity: int,
        price_per_share: Any,
        user_id: Optional[int] = None,
    ) -> IpoSubscription:
        return self._write("amend_subscription", lambda s: self._subscriptions(s).amend_subscription(
            subscription_id, quantity, price_per_share, user_id,
        ))

    def cancel_subscription(self, subscription_id: int, user_id: Optional[int] = None) -> IpoSubscription:
        return self._write("cancel_subscription", lambda s: self._subscriptions(s).cancel(subscription_id, user_id))

    def confirm_subscription(self, subscription_id: int) -> IpoSubscription:
        return self._write(
            "confirm_subscription", lambda s: self._subscriptions(s).confirm_subscription(subscription_id),
        )

    def list_subscriptions(self, user_id: int, status: Optional[Any] = None) -> List[IpoSubscription]:
        return self._read(lambda s: self._subscriptions(s).list_subscriptions(user_id, status))

    # --------------------------------------------------------
    # BALANCE
    # --------------------------------------------------------

    def get_balance(self, user_id: int) -> BalanceSnapshot:
        return self._read(lambda s: BalanceLedger(s, self._config.currency).get_balance(user_id))

    # --------------------------------------------------------
    # ALLOCATION & SETTLEMENT
    # --------------------------------------------------------

    def run_allocation_sweep(self, now: Optional[datetime] = None) -> SweepReport:
        return AllocationSweep(self._session_factory, self._config, self._clock).run(now)

    def close_and_allocate(self, ipo_id: int) -> Optional[AllocationResult]:
        return self._write("close_and_allocate", lambda s: AllocationEngine(
            s, self._config.currency, self._clock,
        ).close_and_allocate(ipo_id))

    def settle_outstanding(self) -> int:
        return self._write("settle_outstanding", lambda s: SettlementApplier(
            s, self._config.currency, self._clock,
        ).settle_outstanding())

    def get_portfolio(self, user_id: int) -> List[PortfolioPosition]:
        return self._read(lambda s: SettlementApplier(s, self._config.currency, self._clock).get_portfolio(user_id))

    # --------------------------------------------------------
    # TRADES
    # --------------------------------------------------------

    def _trades(self, session: Session) -> TradeService:
        return TradeService(session, self._config.currency, self._config.trading, self._clock)

    def record_trade(
        self,
        user_id: int,
        symbol: str,
        side: Any,
        quantity: int,
        price_per_share: Any,
    ) -> StockTransaction:
        return self._write("record_trade", lambda s: self._trades(s).record_trade(
            user_id, symbol, side, quantity, price_per_share,
        ))

    def list_transactions(
        self,
        user_id: int,
        side: Optional[Any] = None,
        limit: int = 100,
    ) -> List[Tuple[StockTransaction, Stock]]:
        return self._read(lambda s: self._trades(s).list_transactions(user_id, side, limit))

    # --------------------------------------------------------
    # OPERATIONS
    # --------------------------------------------------------

    def list_job_runs(self, job_name: Optional[str] = None, limit: int = 20) -> List[JobRun]:
        return self._read(lambda s: LedgerRepository(s).list_job_runs(job_name, limit))

    def health_check(self) -> bool:
        """Return True if the database answers."""
        return self._read(lambda s: s.execute(text("SELECT 1")).scalar() == 1)


__all__ = ["LedgerEngine"]
