"""
Ledger Engine - Settlement Applier.

============================================================
PURPOSE
============================================================
Turns allocated subscriptions into holdings and audit rows.

For each allocated subscription, in one transaction:
(a) append a completed BUY StockTransaction
(b) upsert Portfolio(user, stock) with the weighted average:

    avg' = (q * avg + q_new * price) / (q + q_new)

IDEMPOTENCY:
    stock_transactions.subscription_id is unique. A subscription
    that already has its row is skipped, so settling twice never
    double-credits a holding.

============================================================
"""

import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from sqlalchemy.orm import Session

from core.clock import ClockProtocol, ClockFactory
from database.models import Ipo, IpoSubscription, Portfolio, Stock, StockTransaction

from .config import CurrencyConfig
from .repository import LedgerRepository
from .types import (
    PortfolioPosition,
    SubscriptionStatus,
    TransactionStatus,
    TransactionType,
)


logger = logging.getLogger(__name__)

PRICE_PLACES = Decimal("0.00000001")


def weighted_average(old_quantity: int, old_average: Decimal, quantity: int, price: Decimal) -> Decimal:
    """Cost-basis weighted average after adding shares."""
    new_quantity = old_quantity + quantity
    if new_quantity == 0:
        return Decimal(old_average)
    value = (Decimal(old_quantity) * Decimal(old_average) + Decimal(quantity) * Decimal(price)) / new_quantity
    return value.quantize(PRICE_PLACES, rounding=ROUND_HALF_UP)


def add_to_holding(
    repo: LedgerRepository,
    user_id: int,
    stock: Stock,
    quantity: int,
    price: Decimal,
    cost: Decimal,
    now: datetime,
) -> Portfolio:
    """Upsert a portfolio row with an additive buy."""
    holding = repo.get_portfolio(user_id, stock.id, lock=True)
    if holding is None:
        holding = Portfolio(
            user_id=user_id,
            stock_id=stock.id,
            quantity=quantity,
            average_price=Decimal(price),
            total_cost=Decimal(cost),
            last_transaction_date=now,
            created_at=now,
            updated_at=now,
        )
        repo.add(holding)
    else:
        holding.average_price = weighted_average(holding.quantity, holding.average_price, quantity, price)
        holding.quantity = holding.quantity + quantity
        holding.total_cost = Decimal(holding.total_cost) + Decimal(cost)
        holding.last_transaction_date = now
        holding.updated_at = now
    repo.flush()
    return holding


class SettlementApplier:
    """Applies allocations to portfolios and the transaction log."""

    def __init__(
        self,
        session: Session,
        config: Optional[CurrencyConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._repo = LedgerRepository(session)
        self._config = config or CurrencyConfig()
        self._clock = clock or ClockFactory.get_clock()

    def stock_for_ipo(self, ipo: Ipo) -> Stock:
        """The stocks row carrying the IPO's symbol, created on first use."""
        stock = self._repo.get_stock_by_symbol(ipo.symbol)
        if stock is None:
            stock = Stock(
                symbol=ipo.symbol,
                company_name=ipo.company_name,
                exchange=ipo.exchange,
                currency=ipo.currency,
                is_active=True,
                created_at=self._clock.now_naive(),
            )
            self._repo.add(stock)
            self._repo.flush()
            logger.info(f"Created stock {stock.symbol} from IPO {ipo.id}")
        return stock

    def settle_subscription(self, subscription: IpoSubscription) -> bool:
        """
        Settle one allocated subscription.

        Returns:
            True if settlement was applied, False if skipped
        """
        if subscription.status != SubscriptionStatus.ALLOCATED.value:
            logger.warning(f"Subscription {subscription.id} is {subscription.status}, not settling")
            return False

        if self._repo.transaction_for_subscription(subscription.id) is not None:
            logger.warning(f"Subscription {subscription.id} already settled, skipping")
            return False

        ipo = self._repo.get_ipo(subscription.ipo_id)
        stock = self.stock_for_ipo(ipo)
        now = self._clock.now_naive()
        price = Decimal(subscription.price_per_share)
        amount = Decimal(subscription.allocation_amount)

        self._repo.add(StockTransaction(
            user_id=subscription.user_id,
            stock_id=stock.id,
            subscription_id=subscription.id,
            type=TransactionType.BUY.value,
            quantity=subscription.allocation_quantity,
            price_per_share=price,
            total_amount=amount,
            commission=Decimal("0"),
            currency=subscription.currency,
            status=TransactionStatus.COMPLETED.value,
            notes=f"IPO allocation {ipo.symbol}",
            transaction_date=now,
        ))
        add_to_holding(
            self._repo,
            subscription.user_id,
            stock,
            subscription.allocation_quantity,
            price,
            amount,
            now,
        )

        logger.info(
            f"Settled subscription {subscription.id}: user={subscription.user_id} "
            f"+{subscription.allocation_quantity} {stock.symbol} @ {price}"
        )
        return True

    def settle_ipo(self, ipo: Ipo) -> int:
        """Settle every unsettled allocation of one IPO."""
        return sum(1 for s in self._repo.unsettled_allocations(ipo.id) if self.settle_subscription(s))

    def settle_outstanding(self) -> int:
        """Recovery pass over allocated subscriptions lacking a transaction."""
        settled = sum(1 for s in self._repo.unsettled_allocations() if self.settle_subscription(s))
        if settled:
            logger.info(f"Recovered {settled} outstanding settlement(s)")
        return settled

    # ---------------------------------------------------------
    # READS
    # ---------------------------------------------------------

    def get_portfolio(self, user_id: int) -> List[PortfolioPosition]:
        """Holdings including zero-quantity rows."""
        return [
            PortfolioPosition(
                symbol=stock.symbol,
                quantity=holding.quantity,
                average_price=Decimal(holding.average_price),
                total_cost=Decimal(holding.total_cost),
                currency=stock.currency,
            )
            for holding, stock in self._repo.list_portfolio(user_id)
        ]


__all__ = ["SettlementApplier", "add_to_holding", "weighted_average"]
