"""
Ledger Engine - Balance Ledger.

============================================================
PURPOSE
============================================================
Derives a user's balance from deposit, subscription and
transaction rows on every read.

    total     = approved deposits
              - cash spent on allocations
              + net cash flow of buy/sell trades
    reserved  = pending/confirmed subscription amounts
    available = total - reserved

All figures are converted to the account's base currency.

CRITICAL PRINCIPLE:
    There is no stored balance. Nothing can drift.

============================================================
"""

import logging
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy.orm import Session

from .config import CurrencyConfig
from .currency import CurrencyConversionService, normalize_currency
from .repository import LedgerRepository
from .types import BalanceSnapshot


logger = logging.getLogger(__name__)


class BalanceLedger:
    """
    Read-only balance derivation.

    Reads are lock-free; inside a single session they observe
    one committed snapshot.
    """

    def __init__(self, session: Session, config: Optional[CurrencyConfig] = None):
        self._repo = LedgerRepository(session)
        self._config = config or CurrencyConfig()
        self._currency = CurrencyConversionService(session, self._config)

    def base_currency(self, user_id: int) -> str:
        """Account base currency, or the configured default for unknown users."""
        account = self._repo.get_account(user_id)
        return account.base_currency if account else self._config.base_currency

    def _to_base(self, totals: Dict[str, Decimal], base: str) -> Decimal:
        result = Decimal("0")
        for currency, amount in sorted(totals.items()):
            result += self._currency.convert(amount, currency, base)
        return result

    def get_balance(self, user_id: int) -> BalanceSnapshot:
        """
        Compute {total, reserved, available} for a user.

        Raises:
            RateNotFound if a contributing currency has no active
            rate into the base currency
        """
        snapshot = self._derive(user_id)
        logger.debug(
            f"Balance user={user_id} total={snapshot.total} reserved={snapshot.reserved} "
            f"available={snapshot.available} {snapshot.currency}"
        )
        return snapshot

    def project_balance(
        self,
        user_id: int,
        reserve: Optional[Dict[str, Decimal]] = None,
        cash: Optional[Dict[str, Decimal]] = None,
    ) -> BalanceSnapshot:
        """
        Balance as it would read after a pending change is written.

        Args:
            reserve: Extra reservations per currency (negative releases)
            cash: Extra trade cash flow per currency (negative spends)

        The deltas are merged into the per-currency sums before
        conversion, so the result matches the next get_balance exactly.
        """
        return self._derive(user_id, reserve or {}, cash or {})

    def _derive(
        self,
        user_id: int,
        reserve: Optional[Dict[str, Decimal]] = None,
        cash: Optional[Dict[str, Decimal]] = None,
    ) -> BalanceSnapshot:
        base = self.base_currency(user_id)

        deposits = self._to_base(self._repo.approved_deposit_totals(user_id), base)
        spent = self._to_base(self._repo.allocated_spend_totals(user_id), base)
        trades = self._to_base(_merge(self._repo.trade_cash_flows(user_id), cash), base)
        reserved = self._to_base(_merge(self._repo.reserved_totals(user_id), reserve), base)

        return BalanceSnapshot(
            user_id=user_id,
            currency=base,
            total=self._currency.quantize(deposits - spent + trades, base),
            reserved=self._currency.quantize(reserved, base),
        )

    def available_in(self, user_id: int, currency: str) -> Decimal:
        """Available balance converted into another currency."""
        snapshot = self.get_balance(user_id)
        return self._currency.convert(snapshot.available, snapshot.currency, normalize_currency(currency))


def _merge(totals: Dict[str, Decimal], delta: Optional[Dict[str, Decimal]]) -> Dict[str, Decimal]:
    if not delta:
        return totals
    merged = dict(totals)
    for currency, amount in delta.items():
        code = normalize_currency(currency)
        merged[code] = merged.get(code, Decimal("0")) + amount
    return merged


__all__ = ["BalanceLedger"]
