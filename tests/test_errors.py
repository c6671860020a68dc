"""
Tests for the error registry and transition guards.
"""

import pytest
from decimal import Decimal

from core.exceptions import (
    DepositNotFound,
    InsufficientBalance,
    InvalidStateTransition,
    TransactionConflictError,
)
from ledger_engine.errors import (
    ERROR_CODES,
    RETRYABLE_ERROR_CODES,
    ErrorCategory,
    get_error_info,
    is_client_visible,
    is_retryable,
)
from ledger_engine.state_machine import TransitionGuard, is_terminal
from ledger_engine.types import DepositStatus, IpoStatus, SubscriptionStatus


# =============================================================
# TEST: Error Registry
# =============================================================

class TestErrorRegistry:
    """Test code -> category / status / retry mapping."""

    def test_registry_keys_match_codes(self):
        for code, info in ERROR_CODES.items():
            assert info.code == code

    @pytest.mark.parametrize("code,status", [
        ("VAL_INVALID_AMOUNT", 422),
        ("STA_INVALID_TRANSITION", 409),
        ("RES_INSUFFICIENT_BALANCE", 409),
        ("RES_DEPOSIT_NOT_FOUND", 404),
        ("RES_RATE_NOT_FOUND", 404),
        ("INF_TRANSACTION_CONFLICT", 503),
        ("INT_UNEXPECTED_ERROR", 500),
    ])
    def test_http_status(self, code, status):
        assert get_error_info(code).http_status == status

    def test_only_infrastructure_is_retryable(self):
        assert RETRYABLE_ERROR_CODES
        for code in RETRYABLE_ERROR_CODES:
            assert get_error_info(code).category == ErrorCategory.INFRASTRUCTURE
        assert not is_retryable("RES_INSUFFICIENT_BALANCE")
        assert is_retryable("INF_TRANSACTION_CONFLICT")

    def test_unknown_code_is_internal(self):
        info = get_error_info("NOPE")

        assert info.category == ErrorCategory.INTERNAL
        assert info.http_status == 500
        assert not is_client_visible("NOPE")

    def test_business_errors_visible(self):
        assert is_client_visible("STA_DUPLICATE_SUBSCRIPTION")
        assert not is_client_visible("INF_DATABASE_ERROR")

    def test_every_exception_code_registered(self):
        errors = [
            DepositNotFound(1),
            InsufficientBalance(1, Decimal("1"), Decimal("2"), "USD"),
            InvalidStateTransition("deposit", 1, "approved", "rejected"),
            TransactionConflictError("conflict"),
        ]
        for error in errors:
            assert error.code in ERROR_CODES

    def test_transient_classification(self):
        assert TransactionConflictError("conflict").is_transient
        assert not DepositNotFound(1).is_transient


# =============================================================
# TEST: Transition Guard
# =============================================================

class TestTransitionGuard:
    """Test lifecycle tables."""

    def test_deposit_pending_transitions(self):
        assert TransitionGuard.can_transition(DepositStatus.PENDING, DepositStatus.APPROVED)[0]
        assert TransitionGuard.can_transition(DepositStatus.PENDING, DepositStatus.REJECTED)[0]

    @pytest.mark.parametrize("state", [DepositStatus.APPROVED, DepositStatus.REJECTED])
    def test_deposit_terminal(self, state):
        allowed, reason = TransitionGuard.can_transition(state, state)

        assert not allowed
        assert "terminal" in reason
        assert is_terminal(state)

    def test_require_raises(self):
        with pytest.raises(InvalidStateTransition) as exc_info:
            TransitionGuard.require("subscription", 3, SubscriptionStatus.ALLOCATED, SubscriptionStatus.REJECTED)

        assert exc_info.value.code == "STA_INVALID_TRANSITION"

    def test_subscription_confirmed_cannot_return_to_pending(self):
        assert not TransitionGuard.can_transition(SubscriptionStatus.CONFIRMED, SubscriptionStatus.PENDING)[0]

    def test_ipo_is_linear(self):
        assert TransitionGuard.can_transition(IpoStatus.UPCOMING, IpoStatus.ONGOING)[0]
        assert not TransitionGuard.can_transition(IpoStatus.UPCOMING, IpoStatus.CLOSED)[0]
        assert not TransitionGuard.can_transition(IpoStatus.LISTED, IpoStatus.CLOSED)[0]
        assert is_terminal(IpoStatus.LISTED)
