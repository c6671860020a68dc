"""
Tests for the buy/sell transaction log.

Tests cover:
- Commission and balance effects
- Insufficient balance / holdings
- Cost basis on sells
"""

import pytest
from decimal import Decimal

from core.exceptions import (
    InsufficientBalance,
    InsufficientHoldings,
    InvalidAmount,
    StockNotFound,
    ValidationError,
)


@pytest.fixture
def listed(ledger, fund, make_ipo, close_window):
    """User 1 holds 200 shares of an allocated IPO bought at 2.50."""
    fund(1, 1500)
    ipo = make_ipo()
    ledger.create_subscription(1, ipo.id, 200, Decimal("2.50"))
    close_window(ipo)
    ledger.run_allocation_sweep()
    return ipo


class TestBuy:
    """Test buys."""

    def test_buy_charges_amount_plus_commission(self, ledger, listed):
        tx = ledger.record_trade(1, listed.symbol, "buy", 100, Decimal("3.00"))

        assert tx.total_amount == Decimal("300")
        assert tx.commission == Decimal("0.30")
        assert tx.subscription_id is None
        # 1500 - 500 (allocation) - 300.30
        assert ledger.get_balance(1).total == Decimal("699.70")

    def test_buy_beyond_available(self, ledger, listed):
        with pytest.raises(InsufficientBalance):
            ledger.record_trade(1, listed.symbol, "buy", 1000, Decimal("1.00"))

        assert len(ledger.list_transactions(1)) == 1

    def test_buy_respects_reservations(self, ledger, fund, listed, make_ipo):
        """Reserved funds are not spendable."""
        other = make_ipo()
        ledger.create_subscription(1, other.id, 100, Decimal("9.00"))

        # available: 1000 - 900 = 100; 100 @ 1.00 + 0.10 commission is too much
        with pytest.raises(InsufficientBalance):
            ledger.record_trade(1, listed.symbol, "buy", 100, Decimal("1.00"))

    def test_spread_between_directed_rates_cannot_overdraw(self, ledger, fund, make_ipo, close_window):
        ledger.upsert_currency_rate("USD", "TRY", Decimal("34.25"))
        ledger.upsert_currency_rate("TRY", "USD", Decimal("0.0300"))
        fund(1, 100)
        ipo = make_ipo(symbol="ISTK", currency="TRY", lot_size=100, price_min="5", price_max="50")
        ledger.create_subscription(1, ipo.id, 100, Decimal("10.00"))
        close_window(ipo)
        ledger.run_allocation_sweep()
        fund(2, 100)

        # 3350 + 3.35 commission fits 3425 TRY but costs 100.60 USD
        with pytest.raises(InsufficientBalance) as exc_info:
            ledger.record_trade(2, "ISTK", "buy", 134, Decimal("25.00"))

        assert exc_info.value.required == Decimal("100.60")
        assert ledger.list_transactions(2) == []

        ledger.record_trade(2, "ISTK", "buy", 130, Decimal("25.00"))

        # 3250 + 3.25 commission = 3253.25 TRY -> 97.60 USD
        assert ledger.get_balance(2).available == Decimal("2.40")

    def test_unknown_symbol(self, ledger, fund):
        fund(1, 100)
        with pytest.raises(StockNotFound):
            ledger.record_trade(1, "NOPE", "buy", 1, Decimal("1"))

    @pytest.mark.parametrize("quantity", [0, -5, 1.5])
    def test_quantity_must_be_positive_integer(self, ledger, listed, quantity):
        with pytest.raises(InvalidAmount):
            ledger.record_trade(1, listed.symbol, "buy", quantity, Decimal("1"))

    def test_unknown_side(self, ledger, listed):
        with pytest.raises(ValidationError):
            ledger.record_trade(1, listed.symbol, "short", 1, Decimal("1"))


class TestSell:
    """Test sells."""

    def test_sell_credits_amount_minus_commission(self, ledger, listed):
        ledger.record_trade(1, listed.symbol, "sell", 100, Decimal("4.00"))

        # 1000 + 400 - 0.40
        assert ledger.get_balance(1).total == Decimal("1399.60")
        position = ledger.get_portfolio(1)[0]
        assert position.quantity == 100
        assert position.average_price == Decimal("2.50")
        assert position.total_cost == Decimal("250")

    def test_sell_all_keeps_zero_row(self, ledger, listed):
        ledger.record_trade(1, listed.symbol, "sell", 200, Decimal("3.00"))

        position = ledger.get_portfolio(1)[0]
        assert position.quantity == 0
        assert position.total_cost == Decimal("0")

    def test_sell_more_than_held(self, ledger, listed):
        with pytest.raises(InsufficientHoldings):
            ledger.record_trade(1, listed.symbol, "sell", 201, Decimal("3.00"))

        assert ledger.get_portfolio(1)[0].quantity == 200

    def test_sell_without_holding(self, ledger, fund, listed):
        fund(2, 100)
        with pytest.raises(InsufficientHoldings):
            ledger.record_trade(2, listed.symbol, "sell", 1, Decimal("3.00"))


class TestTransactionLog:
    """Test the audit log read."""

    def test_filter_by_side(self, ledger, listed):
        ledger.record_trade(1, listed.symbol, "sell", 50, Decimal("3.00"))

        assert len(ledger.list_transactions(1)) == 2
        sells = ledger.list_transactions(1, "sell")
        assert [t.type for t, _ in sells] == ["sell"]
