"""
Ledger Engine - Buy/Sell Transaction Log.

============================================================
PURPOSE
============================================================
Records simple stock trades against the derived balance.
There is no order book and no matching: a trade is accepted
at the given price or rejected.

RULES:
- Commission = amount * commission_rate, in the stock currency
- BUY needs available >= amount + commission
- SELL needs holding >= quantity; cost basis shrinks at the
  unchanged average price and the row persists at zero
- Both append a completed StockTransaction with no
  subscription_id, which the ledger counts as cash flow

============================================================
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, List, Optional, Tuple

from sqlalchemy.orm import Session

from core.clock import ClockProtocol, ClockFactory
from core.exceptions import (
    InsufficientBalance,
    InsufficientHoldings,
    InvalidAmount,
    StockNotFound,
    ValidationError,
)
from database.models import Stock, StockTransaction

from .balance import BalanceLedger
from .config import CurrencyConfig, TradingConfig
from .currency import positive_amount
from .repository import LedgerRepository
from .settlement import add_to_holding, PRICE_PLACES
from .types import TransactionStatus, TransactionType


logger = logging.getLogger(__name__)


def parse_side(side: Any) -> TransactionType:
    if isinstance(side, TransactionType):
        return side
    try:
        return TransactionType(str(side).strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown trade side {side!r}", context={"side": side})


class TradeService:
    """Service for buy/sell trades."""

    def __init__(
        self,
        session: Session,
        config: Optional[CurrencyConfig] = None,
        trading: Optional[TradingConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._repo = LedgerRepository(session)
        self._config = config or CurrencyConfig()
        self._trading = trading or TradingConfig()
        self._ledger = BalanceLedger(session, self._config)
        self._clock = clock or ClockFactory.get_clock()

    def record_trade(
        self,
        user_id: int,
        symbol: str,
        side: Any,
        quantity: int,
        price_per_share: Any,
    ) -> StockTransaction:
        """
        Record a completed buy or sell.

        Raises:
            StockNotFound, InvalidAmount, InsufficientBalance,
            InsufficientHoldings
        """
        trade_side = parse_side(side)
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidAmount(quantity, "quantity must be a positive integer")
        price = positive_amount(price_per_share)

        stock = self._repo.get_stock_by_symbol((symbol or "").strip().upper())
        if stock is None:
            raise StockNotFound(symbol)

        self._repo.lock_account(user_id, self._config.base_currency)

        now = self._clock.now_naive()
        amount = price * quantity
        commission = self._config.quantize(amount * self._trading.commission_rate, stock.currency)

        if trade_side == TransactionType.BUY:
            self._buy(user_id, stock, quantity, price, amount, commission, now)
        else:
            self._sell(user_id, stock, quantity, now)

        transaction = StockTransaction(
            user_id=user_id,
            stock_id=stock.id,
            subscription_id=None,
            type=trade_side.value,
            quantity=quantity,
            price_per_share=price,
            total_amount=amount,
            commission=commission,
            currency=stock.currency,
            status=TransactionStatus.COMPLETED.value,
            transaction_date=now,
        )
        self._repo.add(transaction)
        self._repo.flush()

        logger.info(
            f"Trade {transaction.id}: user={user_id} {trade_side.value} {quantity} {stock.symbol} "
            f"@ {price} (commission {commission} {stock.currency})"
        )
        return transaction

    def _buy(self, user_id, stock: Stock, quantity, price, amount, commission, now) -> None:
        required = amount + commission
        available = self._ledger.available_in(user_id, stock.currency)
        if available < required:
            logger.warning(f"Buy rejected for user {user_id}: available {available} < required {required}")
            raise InsufficientBalance(user_id, available, required, stock.currency)

        # Rates are directed, so re-check in the currency the ledger sums in
        before = self._ledger.get_balance(user_id)
        after = self._ledger.project_balance(user_id, cash={stock.currency: -required})
        if after.available < 0:
            needed = before.available - after.available
            logger.warning(
                f"Buy rejected for user {user_id}: available {before.available} < required {needed} {before.currency}"
            )
            raise InsufficientBalance(user_id, before.available, needed, before.currency)
        add_to_holding(self._repo, user_id, stock, quantity, price, amount, now)

    def _sell(self, user_id, stock: Stock, quantity, now) -> None:
        holding = self._repo.get_portfolio(user_id, stock.id, lock=True)
        held = holding.quantity if holding else 0
        if held < quantity:
            logger.warning(f"Sell rejected for user {user_id}: holds {held} {stock.symbol}, selling {quantity}")
            raise InsufficientHoldings(user_id, stock.symbol, held, quantity)

        remaining = held - quantity
        if remaining == 0:
            holding.total_cost = Decimal("0")
        else:
            reduction = (Decimal(holding.average_price) * quantity).quantize(PRICE_PLACES, rounding=ROUND_HALF_UP)
            holding.total_cost = Decimal(holding.total_cost) - reduction
        holding.quantity = remaining
        holding.last_transaction_date = now
        holding.updated_at = now
        self._repo.flush()

    def list_transactions(
        self,
        user_id: int,
        side: Optional[Any] = None,
        limit: int = 100,
    ) -> List[Tuple[StockTransaction, Stock]]:
        wanted = parse_side(side) if side is not None else None
        return self._repo.list_transactions(user_id, wanted, limit)


__all__ = ["TradeService", "parse_side"]
