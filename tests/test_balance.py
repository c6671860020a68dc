"""
Tests for the Balance Ledger.

Balance is derived on every read from deposits, subscriptions
and trades; these tests check the derivation, never a column.
"""

import pytest
from decimal import Decimal

from core.exceptions import RateNotFound


class TestBalanceDerivation:
    """Test {total, reserved, available}."""

    def test_unknown_user_has_zero_balance(self, ledger):
        balance = ledger.get_balance(42)

        assert balance.currency == "USD"
        assert balance.total == Decimal("0")
        assert balance.reserved == Decimal("0")
        assert balance.available == Decimal("0")

    def test_deposit_and_reservation_example(self, ledger, fund, make_ipo):
        """1000 USD approved, 400 USD reserved -> {1000, 400, 600}."""
        fund(1, 1000)
        ipo = make_ipo(price_min="1.00", price_max="10.00", lot_size=100)
        ledger.create_subscription(1, ipo.id, 100, Decimal("4.00"))

        balance = ledger.get_balance(1)

        assert balance.total == Decimal("1000")
        assert balance.reserved == Decimal("400")
        assert balance.available == Decimal("600")
        assert balance.to_dict()["available"] == "600.00"

    def test_available_is_total_minus_reserved(self, ledger, fund, make_ipo):
        """Holds across an interleaving of approvals, subscriptions and cancels."""
        pending = ledger.submit_deposit(1, Decimal("300"), "USD")
        fund(1, 700)
        first = make_ipo()
        second = make_ipo()

        sub_a = ledger.create_subscription(1, first.id, 100, Decimal("2.50"))
        ledger.review_deposit(pending.id, "approved")
        ledger.create_subscription(1, second.id, 200, Decimal("1.25"))
        ledger.cancel_subscription(sub_a.id)

        balance = ledger.get_balance(1)
        assert balance.total == Decimal("1000")
        assert balance.reserved == Decimal("250")
        assert balance.available == balance.total - balance.reserved

    def test_multi_currency_deposits_convert_to_base(self, ledger, fund):
        ledger.upsert_currency_rate("EUR", "USD", Decimal("1.10"))
        fund(1, 100)
        fund(1, 100, "EUR")

        assert ledger.get_balance(1).total == Decimal("210.00")

    def test_deactivated_rate_breaks_balance_read(self, ledger, fund):
        """A balance with an unconvertible currency fails loudly."""
        ledger.upsert_currency_rate("EUR", "USD", Decimal("1.10"))
        fund(1, 100, "EUR")
        ledger.deactivate_currency_rate("EUR", "USD")

        with pytest.raises(RateNotFound):
            ledger.get_balance(1)

    def test_allocation_moves_reservation_to_spent(self, ledger, fund, make_ipo, close_window):
        """After allocation, total drops by the allocated cash and nothing stays reserved."""
        fund(1, 1000)
        ipo = make_ipo(total_shares=1000, lot_size=100)
        ledger.create_subscription(1, ipo.id, 200, Decimal("3.00"))

        close_window(ipo)
        ledger.run_allocation_sweep()

        balance = ledger.get_balance(1)
        assert balance.total == Decimal("400")
        assert balance.reserved == Decimal("0")
        assert balance.available == Decimal("400")
