"""
Ledger Engine - Currency Conversion Service.

============================================================
PURPOSE
============================================================
Converts amounts between currency codes using stored
DIRECTED exchange rates, and manages those rates.

RULES:
- from == to returns the amount unchanged, no lookup
- Otherwise the active (from, to) row is required
- The reverse pair is NEVER used to infer a rate; stored
  inverse rates may carry a spread
- Results are rounded to the target currency's minor unit

============================================================
"""

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from core.exceptions import (
    InvalidAmount,
    InvalidCurrency,
    RateNotFound,
    ValidationError,
)
from database.models import CurrencyRate

from .config import CurrencyConfig
from .repository import LedgerRepository


logger = logging.getLogger(__name__)


# ============================================================
# INPUT NORMALISATION
# ============================================================

def normalize_currency(code: Any) -> str:
    """
    Validate and upper-case a currency code.

    Raises:
        InvalidCurrency if the code is not 3-5 letters
    """
    if not isinstance(code, str):
        raise InvalidCurrency(code)
    normalized = code.strip().upper()
    if not (3 <= len(normalized) <= 5 and normalized.isalpha() and normalized.isascii()):
        raise InvalidCurrency(code)
    return normalized


def to_decimal(value: Any) -> Decimal:
    """
    Convert a numeric input to Decimal without going through float.

    Raises:
        InvalidAmount if the value is not a finite number
    """
    if isinstance(value, bool):
        raise InvalidAmount(value, "not a number")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmount(value, "not a number")
    if not amount.is_finite():
        raise InvalidAmount(value, "not a finite number")
    return amount


def positive_amount(value: Any) -> Decimal:
    """Parse an amount that must be strictly positive."""
    amount = to_decimal(value)
    if amount <= 0:
        raise InvalidAmount(value, "amount must be positive")
    return amount


# ============================================================
# CURRENCY CONVERSION SERVICE
# ============================================================

class CurrencyConversionService:
    """
    Directed-rate currency conversion.

    Operates inside the caller's session so conversions see the
    same snapshot as the rows being summed.
    """

    def __init__(self, session: Session, config: Optional[CurrencyConfig] = None):
        """
        Initialize service.

        Args:
            session: SQLAlchemy session
            config: Currency precision configuration
        """
        self._repo = LedgerRepository(session)
        self._config = config or CurrencyConfig()

    @property
    def config(self) -> CurrencyConfig:
        return self._config

    def quantize(self, amount: Decimal, currency: str) -> Decimal:
        """Round to the currency's minor unit."""
        return self._config.quantize(amount, currency)

    def get_rate(self, from_currency: str, to_currency: str) -> Decimal:
        """
        Get the active directed rate.

        Raises:
            RateNotFound if no active (from, to) row exists
        """
        source = normalize_currency(from_currency)
        target = normalize_currency(to_currency)
        if source == target:
            return Decimal("1")

        row = self._repo.get_active_rate(source, target)
        if row is None:
            raise RateNotFound(source, target)
        return Decimal(row.rate)

    def convert(self, amount: Any, from_currency: str, to_currency: str) -> Decimal:
        """
        Convert an amount between currencies.

        Args:
            amount: Amount in from_currency
            from_currency: Source code
            to_currency: Target code

        Returns:
            Converted amount rounded to to_currency precision

        Raises:
            RateNotFound if no active directed rate exists
        """
        value = to_decimal(amount)
        source = normalize_currency(from_currency)
        target = normalize_currency(to_currency)

        if source == target:
            return value

        rate = self.get_rate(source, target)
        return self.quantize(value * rate, target)

    # --------------------------------------------------------
    # RATE MANAGEMENT
    # --------------------------------------------------------

    def get_active_rates(self) -> List[CurrencyRate]:
        """All active directed rates, ordered by pair."""
        return self._repo.list_active_rates()

    def upsert_currency_rate(
        self,
        from_currency: str,
        to_currency: str,
        rate: Any,
        now: datetime,
        updated_by: Optional[int] = None,
        is_manual: bool = True,
    ) -> CurrencyRate:
        """
        Create or update a directed rate.

        Re-activates a deactivated pair.

        Raises:
            InvalidAmount if rate <= 0
            ValidationError if from == to
        """
        source = normalize_currency(from_currency)
        target = normalize_currency(to_currency)
        if source == target:
            raise ValidationError(
                f"Rate for {source} -> {target} is implicitly 1 and cannot be stored",
                context={"from_currency": source, "to_currency": target},
            )
        value = to_decimal(rate)
        if value <= 0:
            raise InvalidAmount(rate, "rate must be greater than zero")

        row = self._repo.get_rate(source, target)
        if row is None:
            row = CurrencyRate(
                from_currency=source,
                to_currency=target,
                rate=value,
                is_active=True,
                is_manual=is_manual,
                last_updated_by=updated_by,
                created_at=now,
                updated_at=now,
            )
            self._repo.add(row)
            action = "Created"
        else:
            row.rate = value
            row.is_active = True
            row.is_manual = is_manual
            row.last_updated_by = updated_by
            row.updated_at = now
            action = "Updated"

        self._repo.flush()
        logger.info(f"{action} currency rate {source}->{target} = {value} (by {updated_by})")
        return row

    def deactivate_currency_rate(
        self,
        from_currency: str,
        to_currency: str,
        now: datetime,
        updated_by: Optional[int] = None,
    ) -> CurrencyRate:
        """
        Deactivate a directed rate.

        Raises:
            RateNotFound if the pair was never stored
        """
        source = normalize_currency(from_currency)
        target = normalize_currency(to_currency)
        row = self._repo.get_rate(source, target)
        if row is None:
            raise RateNotFound(source, target)

        row.is_active = False
        row.last_updated_by = updated_by
        row.updated_at = now
        self._repo.flush()
        logger.info(f"Deactivated currency rate {source}->{target}")
        return row


__all__ = [
    "normalize_currency",
    "to_decimal",
    "positive_amount",
    "CurrencyConversionService",
]
