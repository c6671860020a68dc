"""
Ledger Engine - Deposit Review State Machine.

============================================================
PURPOSE
============================================================
Deposit submission and review.

STATE MACHINE:
    PENDING ──► APPROVED   (counts toward balance)
        │
        └─────► REJECTED   (requires a reason)

GUARDS:
- Reviewing a terminal deposit raises InvalidStateTransition,
  so a retried review can never double-approve
- Approval requires a rate from the deposit currency into the
  account base currency; otherwise the deposit stays pending

============================================================
"""

import logging
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from core.clock import ClockProtocol, ClockFactory
from core.exceptions import (
    DepositNotFound,
    InvalidReviewDecision,
    MissingRejectionReason,
    ValidationError,
)
from database.models import Deposit

from .config import CurrencyConfig
from .currency import CurrencyConversionService, normalize_currency, positive_amount
from .repository import LedgerRepository
from .state_machine import TransitionGuard
from .types import DepositMethod, DepositStatus, ReviewDecision


logger = logging.getLogger(__name__)


def parse_decision(decision: Any) -> ReviewDecision:
    """Accept 'approved'/'rejected' (or approve/reject) as a decision."""
    if isinstance(decision, ReviewDecision):
        return decision
    aliases = {"approve": "approved", "reject": "rejected"}
    if isinstance(decision, str):
        value = decision.strip().lower()
        try:
            return ReviewDecision(aliases.get(value, value))
        except ValueError:
            pass
    raise InvalidReviewDecision(decision)


def parse_method(method: Any) -> DepositMethod:
    if isinstance(method, DepositMethod):
        return method
    try:
        return DepositMethod(str(method).strip().lower())
    except ValueError:
        raise ValidationError(
            f"Unknown deposit method {method!r}",
            context={"method": method, "allowed": [m.value for m in DepositMethod]},
        )


class DepositReviewService:
    """Service for the deposit lifecycle."""

    def __init__(
        self,
        session: Session,
        config: Optional[CurrencyConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._repo = LedgerRepository(session)
        self._config = config or CurrencyConfig()
        self._currency = CurrencyConversionService(session, self._config)
        self._clock = clock or ClockFactory.get_clock()

    # ---------------------------------------------------------
    # SUBMISSION
    # ---------------------------------------------------------

    def submit_deposit(
        self,
        user_id: int,
        amount: Any,
        currency: str,
        method: Any,
        transaction_id: Optional[str] = None,
    ) -> Deposit:
        """Record a user deposit as pending."""
        value = positive_amount(amount)
        code = normalize_currency(currency)
        deposit_method = parse_method(method)
        now = self._clock.now_naive()

        self._repo.get_or_create_account(user_id, self._config.base_currency)
        deposit = Deposit(
            user_id=user_id,
            amount=value,
            currency=code,
            method=deposit_method.value,
            transaction_id=transaction_id,
            status=DepositStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        self._repo.add(deposit)
        self._repo.flush()

        logger.info(f"Deposit {deposit.id} submitted: user={user_id} {value} {code} via {deposit_method.value}")
        return deposit

    def create_manual_deposit(
        self,
        user_id: int,
        amount: Any,
        currency: str,
        reviewer_id: int,
        method: Any = DepositMethod.MANUAL,
        transaction_id: Optional[str] = None,
    ) -> Deposit:
        """Admin-entered deposit, approved on creation."""
        value = positive_amount(amount)
        code = normalize_currency(currency)
        deposit_method = parse_method(method)
        now = self._clock.now_naive()

        account = self._repo.get_or_create_account(user_id, self._config.base_currency)
        self._currency.get_rate(code, account.base_currency)

        deposit = Deposit(
            user_id=user_id,
            amount=value,
            currency=code,
            method=deposit_method.value,
            transaction_id=transaction_id,
            status=DepositStatus.APPROVED.value,
            reviewed_by=reviewer_id,
            reviewed_at=now,
            created_at=now,
            updated_at=now,
        )
        self._repo.add(deposit)
        self._repo.flush()

        logger.info(f"Manual deposit {deposit.id} approved by {reviewer_id}: user={user_id} {value} {code}")
        return deposit

    # ---------------------------------------------------------
    # REVIEW
    # ---------------------------------------------------------

    def review_deposit(
        self,
        deposit_id: int,
        decision: Any,
        reviewer_id: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> Deposit:
        """
        Move a pending deposit to approved or rejected.

        Raises:
            DepositNotFound, InvalidReviewDecision,
            InvalidStateTransition, MissingRejectionReason,
            RateNotFound (approval only)
        """
        verdict = parse_decision(decision)

        deposit = self._repo.get_deposit(deposit_id, lock=True)
        if deposit is None:
            raise DepositNotFound(deposit_id)

        target = DepositStatus(verdict.value)
        TransitionGuard.require("deposit", deposit_id, DepositStatus(deposit.status), target)

        reason = (reason or "").strip() or None
        if target == DepositStatus.REJECTED and reason is None:
            raise MissingRejectionReason(deposit_id)

        if target == DepositStatus.APPROVED:
            account = self._repo.get_or_create_account(deposit.user_id, self._config.base_currency)
            self._currency.get_rate(deposit.currency, account.base_currency)

        now = self._clock.now_naive()
        deposit.status = target.value
        deposit.reviewed_by = reviewer_id
        deposit.reviewed_at = now
        deposit.rejection_reason = reason if target == DepositStatus.REJECTED else None
        deposit.updated_at = now
        self._repo.flush()

        logger.info(
            f"Deposit {deposit_id} {target.value} by reviewer {reviewer_id}"
            + (f" (reason: {reason})" if target == DepositStatus.REJECTED else "")
        )
        return deposit

    def list_deposits(
        self,
        status: Optional[Any] = None,
        user_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Deposit]:
        wanted = status
        if status is not None and not isinstance(status, DepositStatus):
            try:
                wanted = DepositStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown deposit status {status!r}", context={"status": status})
        return self._repo.list_deposits(status=wanted, user_id=user_id, limit=limit, offset=offset)


__all__ = ["DepositReviewService", "parse_decision", "parse_method"]
