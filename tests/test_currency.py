"""
Tests for the Currency Conversion Service.

Tests cover:
- Directed rate lookups
- Identity conversion
- Rate management (upsert, deactivate)
- Input normalisation
"""

import pytest
from decimal import Decimal

from core.exceptions import InvalidAmount, InvalidCurrency, RateNotFound, ValidationError
from ledger_engine.currency import normalize_currency, to_decimal, positive_amount


# =============================================================
# TEST: Conversion
# =============================================================

class TestConvert:
    """Test convert() against stored rates."""

    def test_usd_to_try_example(self, ledger):
        """100 USD at 34.25 converts to 3425.00 TRY."""
        ledger.upsert_currency_rate("USD", "TRY", Decimal("34.25"))

        assert ledger.convert(Decimal("100"), "USD", "TRY") == Decimal("3425.00")

    def test_missing_rate_fails(self, ledger):
        """No stored XYZ -> USD rate raises RateNotFound."""
        with pytest.raises(RateNotFound) as exc_info:
            ledger.convert(Decimal("100"), "XYZ", "USD")

        assert exc_info.value.code == "RES_RATE_NOT_FOUND"

    def test_rates_are_directed(self, ledger):
        """A USD -> TRY rate does not imply TRY -> USD."""
        ledger.upsert_currency_rate("USD", "TRY", Decimal("34.25"))

        with pytest.raises(RateNotFound):
            ledger.convert(Decimal("100"), "TRY", "USD")

    def test_same_currency_is_identity(self, ledger):
        """Converting to the same currency needs no rate."""
        assert ledger.convert(Decimal("12.345"), "EUR", "EUR") == Decimal("12.345")

    def test_result_rounded_to_target_precision(self, ledger):
        """Results are rounded half-up to the target's minor unit."""
        ledger.upsert_currency_rate("USD", "EUR", Decimal("0.925"))

        assert ledger.convert(Decimal("1.01"), "USD", "EUR") == Decimal("0.93")

    def test_crypto_precision(self, ledger):
        """BTC amounts keep eight decimal places."""
        ledger.upsert_currency_rate("USD", "BTC", Decimal("0.0000153"))

        assert ledger.convert(Decimal("100"), "USD", "BTC") == Decimal("0.00153000")

    def test_codes_are_case_insensitive(self, ledger):
        """Lower-case codes resolve to the same rate."""
        ledger.upsert_currency_rate("usd", "try", Decimal("30"))

        assert ledger.convert(Decimal("2"), "usd", "TRY") == Decimal("60.00")


# =============================================================
# TEST: Rate Management
# =============================================================

class TestRateManagement:
    """Test upsert and deactivation."""

    def test_upsert_updates_existing_pair(self, ledger):
        """A second upsert replaces the rate rather than adding a row."""
        ledger.upsert_currency_rate("USD", "TRY", Decimal("30"))
        ledger.upsert_currency_rate("USD", "TRY", Decimal("34.25"), updated_by=7)

        rates = ledger.get_active_rates()
        assert len(rates) == 1
        assert rates[0].rate == Decimal("34.25")
        assert rates[0].last_updated_by == 7

    def test_rate_must_be_positive(self, ledger):
        with pytest.raises(InvalidAmount):
            ledger.upsert_currency_rate("USD", "TRY", Decimal("0"))

    def test_identity_pair_rejected(self, ledger):
        with pytest.raises(ValidationError):
            ledger.upsert_currency_rate("USD", "USD", Decimal("1"))

    def test_deactivated_rate_not_used(self, ledger):
        """After deactivation the pair behaves as missing."""
        ledger.upsert_currency_rate("USD", "TRY", Decimal("34.25"))
        ledger.deactivate_currency_rate("USD", "TRY")

        with pytest.raises(RateNotFound):
            ledger.convert(Decimal("1"), "USD", "TRY")
        assert ledger.get_active_rates() == []

    def test_upsert_reactivates(self, ledger):
        ledger.upsert_currency_rate("USD", "TRY", Decimal("34.25"))
        ledger.deactivate_currency_rate("USD", "TRY")
        ledger.upsert_currency_rate("USD", "TRY", Decimal("35"))

        assert ledger.convert(Decimal("1"), "USD", "TRY") == Decimal("35.00")

    def test_deactivate_unknown_pair(self, ledger):
        with pytest.raises(RateNotFound):
            ledger.deactivate_currency_rate("USD", "JPY")


# =============================================================
# TEST: Input Normalisation
# =============================================================

class TestNormalisation:
    """Test currency and amount parsing helpers."""

    def test_normalize_currency(self):
        assert normalize_currency(" usdt ") == "USDT"

    @pytest.mark.parametrize("code", ["US", "TOOLONG", "U5D", "", None, 840])
    def test_invalid_currency(self, code):
        with pytest.raises(InvalidCurrency):
            normalize_currency(code)

    def test_to_decimal_avoids_float_noise(self):
        assert to_decimal(0.1) == Decimal("0.1")

    @pytest.mark.parametrize("value", ["abc", True, float("nan"), float("inf"), None])
    def test_to_decimal_rejects_non_numbers(self, value):
        with pytest.raises(InvalidAmount):
            to_decimal(value)

    @pytest.mark.parametrize("value", [0, -1, "-0.01"])
    def test_positive_amount(self, value):
        with pytest.raises(InvalidAmount):
            positive_amount(value)
