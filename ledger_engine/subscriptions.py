"""
Ledger Engine - Subscription Reservation Manager.

============================================================
PURPOSE
============================================================
Creates, amends, confirms and cancels IPO subscriptions.

RESERVATION MODEL:
- Inserting a pending row IS the reservation; the ledger
  derives `reserved` from live rows
- Cancelling (status -> rejected) IS the release

PRECONDITIONS (checked in this order):
1. IPO exists, is ongoing, and now is within [start, end]
2. quantity is a positive multiple of lot_size
3. price_per_share within [price_min, price_max]
4. No other pending/confirmed row for (user, ipo)
5. available >= quantity * price_per_share in the IPO currency,
   and the base-currency ledger stays non-negative after the insert

CONCURRENCY:
- The user's account row is locked FOR UPDATE before the
  balance check, so read-then-insert is atomic per user

============================================================
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.clock import ClockProtocol, ClockFactory
from core.exceptions import (
    DuplicateSubscription,
    InsufficientBalance,
    InvalidLotSize,
    InvalidStateTransition,
    IpoNotFound,
    OutsideSubscriptionWindow,
    PriceOutOfRange,
    SubscriptionNotFound,
    ValidationError,
)
from database.models import Ipo, IpoSubscription

from .balance import BalanceLedger
from .config import CurrencyConfig
from .currency import positive_amount
from .repository import LedgerRepository
from .state_machine import TransitionGuard
from .types import IpoStatus, RejectionReason, SubscriptionStatus


logger = logging.getLogger(__name__)


class SubscriptionReservationManager:
    """Service for the subscription lifecycle."""

    def __init__(
        self,
        session: Session,
        config: Optional[CurrencyConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._session = session
        self._repo = LedgerRepository(session)
        self._config = config or CurrencyConfig()
        self._ledger = BalanceLedger(session, self._config)
        self._clock = clock or ClockFactory.get_clock()

    # ---------------------------------------------------------
    # CHECKS
    # ---------------------------------------------------------

    def _load_ipo(self, ipo_id: int) -> Ipo:
        ipo = self._repo.get_ipo(ipo_id)
        if ipo is None:
            raise IpoNotFound(ipo_id)
        return ipo

    @staticmethod
    def _check_window(ipo: Ipo, now: datetime) -> None:
        if ipo.status != IpoStatus.ONGOING.value or not (ipo.start_date <= now <= ipo.end_date):
            raise OutsideSubscriptionWindow(ipo.id, ipo.status, now)

    @staticmethod
    def _check_lot(quantity: Any, lot_size: int) -> int:
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise InvalidLotSize(quantity, lot_size)
        if quantity <= 0 or quantity % lot_size != 0:
            raise InvalidLotSize(quantity, lot_size)
        return quantity

    @staticmethod
    def _check_price(price: Decimal, ipo: Ipo) -> None:
        if not (Decimal(ipo.price_min) <= price <= Decimal(ipo.price_max)):
            raise PriceOutOfRange(price, Decimal(ipo.price_min), Decimal(ipo.price_max))

    def _check_funds(self, user_id: int, required: Decimal, currency: str, credit: Decimal = Decimal("0")) -> None:
        """
        Require funds for a reservation of `required` in `currency`.

        `credit` is the caller's own reservation being replaced. The
        request must fit the available balance quoted in the IPO
        currency, and the ledger must still read available >= 0 in
        the base currency once the reservation is written. Directed
        rates need not be reciprocal, so both are checked.
        """
        available = self._ledger.available_in(user_id, currency) + credit
        if available < required:
            logger.warning(
                f"Subscription rejected for user {user_id}: available {available} < required {required} {currency}"
            )
            raise InsufficientBalance(user_id, available, required, currency)

        before = self._ledger.get_balance(user_id)
        after = self._ledger.project_balance(user_id, reserve={currency: required - credit})
        if after.available < 0 and after.available < before.available:
            needed = before.available - after.available
            logger.warning(
                f"Subscription rejected for user {user_id}: available {before.available} < required "
                f"{needed} {before.currency} at the {currency}->{before.currency} rate"
            )
            raise InsufficientBalance(user_id, before.available, needed, before.currency)

    def _lock_subscription(self, subscription_id: int, user_id: Optional[int]) -> IpoSubscription:
        """Lock the owner's account, then the subscription row."""
        subscription = self._repo.get_subscription(subscription_id)
        if subscription is None or (user_id is not None and subscription.user_id != user_id):
            raise SubscriptionNotFound(subscription_id)

        self._repo.lock_account(subscription.user_id, self._config.base_currency)
        return self._repo.get_subscription(subscription_id, lock=True)

    # ---------------------------------------------------------
    # SUBSCRIBE
    # ---------------------------------------------------------

    def subscribe(
        self,
        user_id: int,
        ipo_id: int,
        quantity: int,
        price_per_share: Any,
    ) -> IpoSubscription:
        """
        Insert a pending subscription, reserving its total amount.

        Raises:
            IpoNotFound, OutsideSubscriptionWindow, InvalidLotSize,
            PriceOutOfRange, DuplicateSubscription, InsufficientBalance
        """
        price = positive_amount(price_per_share)
        now = self._clock.now_naive()

        ipo = self._load_ipo(ipo_id)
        self._check_window(ipo, now)
        quantity = self._check_lot(quantity, ipo.lot_size)
        self._check_price(price, ipo)

        self._repo.lock_account(user_id, self._config.base_currency)

        existing = self._repo.find_active_subscription(user_id, ipo_id)
        if existing is not None:
            raise DuplicateSubscription(user_id, ipo_id, existing.id)

        total = price * quantity
        self._check_funds(user_id, total, ipo.currency)

        subscription = IpoSubscription(
            user_id=user_id,
            ipo_id=ipo_id,
            quantity=quantity,
            price_per_share=price,
            total_amount=total,
            currency=ipo.currency,
            status=SubscriptionStatus.PENDING.value,
            allocation_quantity=0,
            allocation_amount=Decimal("0"),
            created_at=now,
            updated_at=now,
        )
        self._repo.add(subscription)
        try:
            self._repo.flush()
        except IntegrityError as e:
            # Concurrent insert won the partial unique index
            raise DuplicateSubscription(user_id, ipo_id) from e

        logger.info(
            f"Subscription {subscription.id} created: user={user_id} ipo={ipo_id} "
            f"{quantity} @ {price} = {total} {ipo.currency} reserved"
        )
        return subscription

    # ---------------------------------------------------------
    # AMEND
    # ---------------------------------------------------------

    def amend_subscription(
        self,
        subscription_id: int,
        quantity: int,
        price_per_share: Any,
        user_id: Optional[int] = None,
    ) -> IpoSubscription:
        """
        Replace the terms of a pending subscription in place.

        The balance check credits back the row's own reservation.
        """
        price = positive_amount(price_per_share)
        now = self._clock.now_naive()

        subscription = self._lock_subscription(subscription_id, user_id)
        if subscription.status != SubscriptionStatus.PENDING.value:
            raise InvalidStateTransition(
                "subscription", subscription_id, subscription.status, SubscriptionStatus.PENDING.value,
            )

        ipo = self._load_ipo(subscription.ipo_id)
        self._check_window(ipo, now)
        quantity = self._check_lot(quantity, ipo.lot_size)
        self._check_price(price, ipo)

        total = price * quantity
        self._check_funds(subscription.user_id, total, ipo.currency, credit=Decimal(subscription.total_amount))

        previous = (subscription.quantity, subscription.price_per_share)
        subscription.quantity = quantity
        subscription.price_per_share = price
        subscription.total_amount = total
        subscription.updated_at = now
        self._repo.flush()

        logger.info(
            f"Subscription {subscription_id} amended: {previous[0]} @ {previous[1]} -> "
            f"{quantity} @ {price} ({total} {ipo.currency} reserved)"
        )
        return subscription

    # ---------------------------------------------------------
    # CONFIRM / CANCEL
    # ---------------------------------------------------------

    def confirm_subscription(self, subscription_id: int) -> IpoSubscription:
        """Administrative pending -> confirmed. Funds stay reserved."""
        subscription = self._repo.get_subscription(subscription_id, lock=True)
        if subscription is None:
            raise SubscriptionNotFound(subscription_id)

        TransitionGuard.require(
            "subscription",
            subscription_id,
            SubscriptionStatus(subscription.status),
            SubscriptionStatus.CONFIRMED,
        )
        subscription.status = SubscriptionStatus.CONFIRMED.value
        subscription.updated_at = self._clock.now_naive()
        self._repo.flush()

        logger.info(f"Subscription {subscription_id} confirmed")
        return subscription

    def cancel(self, subscription_id: int, user_id: Optional[int] = None) -> IpoSubscription:
        """
        Cancel a pending subscription, releasing its reservation.

        Raises:
            SubscriptionNotFound, InvalidStateTransition (not pending)
        """
        subscription = self._lock_subscription(subscription_id, user_id)
        if subscription.status != SubscriptionStatus.PENDING.value:
            logger.warning(f"Cancel refused for subscription {subscription_id} in status {subscription.status}")
            raise InvalidStateTransition(
                "subscription", subscription_id, subscription.status, SubscriptionStatus.REJECTED.value,
            )

        subscription.status = SubscriptionStatus.REJECTED.value
        subscription.rejection_reason = RejectionReason.USER_CANCELLED
        subscription.updated_at = self._clock.now_naive()
        self._repo.flush()

        logger.info(
            f"Subscription {subscription_id} cancelled by user {subscription.user_id}, "
            f"released {subscription.total_amount} {subscription.currency}"
        )
        return subscription

    def list_subscriptions(self, user_id: int, status: Optional[Any] = None) -> List[IpoSubscription]:
        wanted = status
        if status is not None and not isinstance(status, SubscriptionStatus):
            try:
                wanted = SubscriptionStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown subscription status {status!r}", context={"status": status})
        return self._repo.list_subscriptions(user_id, wanted)


__all__ = ["SubscriptionReservationManager"]
