"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines all custom exceptions for the ledger engine.

- Provides clear exception hierarchy
- Every exception carries a stable error code
- Supports error categorization for the HTTP layer
- Includes context for debugging

============================================================
EXCEPTION HIERARCHY
============================================================
EngineException (base)
├── ConfigurationError
├── ValidationError
│   ├── InvalidAmount
│   ├── InvalidCurrency
│   ├── InvalidLotSize
│   ├── PriceOutOfRange
│   ├── MissingRejectionReason
│   ├── InvalidReviewDecision
│   └── InvalidIpoDefinition
├── StateError
│   ├── InvalidStateTransition
│   ├── OutsideSubscriptionWindow
│   └── DuplicateSubscription
├── ResourceError
│   ├── InsufficientBalance
│   ├── InsufficientHoldings
│   ├── RateNotFound
│   └── EntityNotFound
│       ├── DepositNotFound
│       ├── IpoNotFound
│       ├── SubscriptionNotFound
│       └── StockNotFound
└── InfrastructureError
    ├── TransactionConflictError
    └── DatabasePersistenceError

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels for logging."""

    LOW = "low"
    """Expected business rejection."""

    MEDIUM = "medium"
    """Moderate issue, requires attention."""

    HIGH = "high"
    """Serious issue, may impact operations."""

    CRITICAL = "critical"
    """Critical issue, requires immediate action."""


# ============================================================
# ERROR CLASSIFICATION
# ============================================================

class ErrorClassification(Enum):
    """Classification of error recoverability."""

    RECOVERABLE = "recoverable"
    """Caller can fix the input and try again."""

    TRANSIENT = "transient"
    """Temporary error, retry with the same inputs may succeed."""

    NON_RECOVERABLE = "non_recoverable"
    """Permanent error, requires intervention."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class EngineException(Exception):
    """
    Base exception for all ledger engine errors.

    All exceptions carry:
    - code: stable identifier looked up in the error registry
    - severity: for logging
    - classification: for retry decisions
    - context: for debugging
    - timestamp: when the error occurred
    """

    code: str = "INT_UNEXPECTED_ERROR"
    default_severity: Severity = Severity.MEDIUM
    default_classification: ErrorClassification = ErrorClassification.RECOVERABLE

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        classification: Optional[ErrorClassification] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.classification = classification or self.default_classification
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    @property
    def is_transient(self) -> bool:
        """Check if a retry with identical inputs may succeed."""
        return self.classification == ErrorClassification.TRANSIENT

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging/storage."""
        return {
            "type": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity.value,
            "classification": self.classification.value,
            "context": {k: _stringify(v) for k, v in self.context.items()},
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }

    def to_log_format(self) -> str:
        """Format exception for structured logging."""
        ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
        line = f"[{self.severity.value.upper()}] {self.code}: {self.message}"
        if ctx_str:
            line += f" | {ctx_str}"
        return line


def _stringify(value: Any) -> Any:
    if isinstance(value, (Decimal, datetime, Enum)):
        return str(value.value if isinstance(value, Enum) else value)
    return value


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(EngineException):
    """Error in configuration."""

    code = "CFG_INVALID"
    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if config_key:
            context["config_key"] = config_key
        super().__init__(message, context=context, **kwargs)


# ============================================================
# VALIDATION ERRORS
# ============================================================

class ValidationError(EngineException):
    """Request rejected synchronously, no state change."""

    code = "VAL_INVALID_REQUEST"
    default_severity = Severity.LOW


class InvalidAmount(ValidationError):
    """Amount is missing, zero, negative or malformed."""

    code = "VAL_INVALID_AMOUNT"

    def __init__(self, amount: Any, reason: str = "amount must be positive"):
        super().__init__(
            message=f"Invalid amount {amount}: {reason}",
            context={"amount": amount},
        )


class InvalidCurrency(ValidationError):
    """Currency code is not well formed."""

    code = "VAL_INVALID_CURRENCY"

    def __init__(self, currency: Any, reason: str = "expected a 3-5 letter code"):
        super().__init__(
            message=f"Invalid currency {currency!r}: {reason}",
            context={"currency": currency},
        )


class InvalidLotSize(ValidationError):
    """Quantity is not a positive multiple of the lot size."""

    code = "VAL_INVALID_LOT_SIZE"

    def __init__(self, quantity: Any, lot_size: int):
        super().__init__(
            message=f"Quantity {quantity} must be a positive multiple of lot size {lot_size}",
            context={"quantity": quantity, "lot_size": lot_size},
        )


class PriceOutOfRange(ValidationError):
    """Price per share outside the offering's price band."""

    code = "VAL_PRICE_OUT_OF_RANGE"

    def __init__(self, price: Decimal, price_min: Decimal, price_max: Decimal):
        super().__init__(
            message=f"Price {price} must be between {price_min} and {price_max}",
            context={"price": price, "price_min": price_min, "price_max": price_max},
        )


class MissingRejectionReason(ValidationError):
    """Rejection requires a non-empty reason."""

    code = "VAL_MISSING_REJECTION_REASON"

    def __init__(self, deposit_id: int):
        super().__init__(
            message=f"Rejecting deposit {deposit_id} requires a rejection reason",
            context={"deposit_id": deposit_id},
        )


class InvalidReviewDecision(ValidationError):
    """Review decision is not approve/reject."""

    code = "VAL_INVALID_DECISION"

    def __init__(self, decision: Any):
        super().__init__(
            message=f"Invalid review decision {decision!r}, expected 'approved' or 'rejected'",
            context={"decision": decision},
        )


class InvalidIpoDefinition(ValidationError):
    """IPO terms are inconsistent."""

    code = "VAL_INVALID_IPO"

    def __init__(self, reason: str, **context):
        super().__init__(message=f"Invalid IPO definition: {reason}", context=context)


# ============================================================
# STATE ERRORS
# ============================================================

class StateError(EngineException):
    """Operation does not match the current status of a record."""

    code = "STA_INVALID_STATE"
    default_severity = Severity.LOW


class InvalidStateTransition(StateError):
    """Requested status change is not allowed from the current status."""

    code = "STA_INVALID_TRANSITION"

    def __init__(self, entity: str, entity_id: Any, from_state: str, to_state: str):
        super().__init__(
            message=f"Cannot transition {entity} {entity_id} from {from_state} to {to_state}",
            context={
                "entity": entity,
                "entity_id": entity_id,
                "from_state": from_state,
                "to_state": to_state,
            },
        )
        self.entity = entity
        self.from_state = from_state
        self.to_state = to_state


class OutsideSubscriptionWindow(StateError):
    """IPO is not accepting subscriptions right now."""

    code = "STA_OUTSIDE_WINDOW"

    def __init__(self, ipo_id: int, status: str, now: datetime):
        super().__init__(
            message=f"IPO {ipo_id} is not open for subscriptions (status={status})",
            context={"ipo_id": ipo_id, "status": status, "now": now},
        )


class DuplicateSubscription(StateError):
    """User already holds a non-terminal subscription for the IPO."""

    code = "STA_DUPLICATE_SUBSCRIPTION"

    def __init__(self, user_id: int, ipo_id: int, existing_id: Optional[int] = None):
        super().__init__(
            message=f"User {user_id} already has an active subscription for IPO {ipo_id}",
            context={"user_id": user_id, "ipo_id": ipo_id, "existing_id": existing_id},
        )


# ============================================================
# RESOURCE ERRORS
# ============================================================

class ResourceError(EngineException):
    """Required resource is missing or insufficient."""

    code = "RES_UNAVAILABLE"
    default_severity = Severity.LOW


class InsufficientBalance(ResourceError):
    """Available balance does not cover the request."""

    code = "RES_INSUFFICIENT_BALANCE"

    def __init__(self, user_id: int, available: Decimal, required: Decimal, currency: str):
        super().__init__(
            message=(
                f"Insufficient balance. Available: {available} {currency}, "
                f"required: {required} {currency}"
            ),
            context={
                "user_id": user_id,
                "available": available,
                "required": required,
                "currency": currency,
            },
        )
        self.available = available
        self.required = required


class InsufficientHoldings(ResourceError):
    """Portfolio does not hold enough shares to sell."""

    code = "RES_INSUFFICIENT_HOLDINGS"

    def __init__(self, user_id: int, symbol: str, held: int, requested: int):
        super().__init__(
            message=f"Cannot sell {requested} {symbol}, only {held} held",
            context={"user_id": user_id, "symbol": symbol, "held": held, "requested": requested},
        )


class RateNotFound(ResourceError):
    """No active directed rate for the currency pair."""

    code = "RES_RATE_NOT_FOUND"

    def __init__(self, from_currency: str, to_currency: str):
        super().__init__(
            message=f"No active exchange rate {from_currency} -> {to_currency}",
            context={"from_currency": from_currency, "to_currency": to_currency},
        )
        self.from_currency = from_currency
        self.to_currency = to_currency


class EntityNotFound(ResourceError):
    """Referenced record does not exist."""

    code = "RES_NOT_FOUND"
    entity = "record"

    def __init__(self, entity_id: Any):
        super().__init__(
            message=f"{self.entity.capitalize()} {entity_id} not found",
            context={"entity": self.entity, "entity_id": entity_id},
        )


class DepositNotFound(EntityNotFound):
    code = "RES_DEPOSIT_NOT_FOUND"
    entity = "deposit"


class IpoNotFound(EntityNotFound):
    code = "RES_IPO_NOT_FOUND"
    entity = "ipo"


class SubscriptionNotFound(EntityNotFound):
    code = "RES_SUBSCRIPTION_NOT_FOUND"
    entity = "subscription"


class StockNotFound(EntityNotFound):
    code = "RES_STOCK_NOT_FOUND"
    entity = "stock"


# ============================================================
# INFRASTRUCTURE ERRORS
# ============================================================

class InfrastructureError(EngineException):
    """Storage-level failure, never a business rejection."""

    code = "INF_FAILURE"
    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE


class TransactionConflictError(InfrastructureError):
    """Serialization failure, deadlock or lock timeout; safe to retry."""

    code = "INF_TRANSACTION_CONFLICT"
    default_severity = Severity.MEDIUM
    default_classification = ErrorClassification.TRANSIENT


class DatabasePersistenceError(InfrastructureError):
    """Raised when database persistence fails."""

    code = "INF_DATABASE_ERROR"


class DatabaseConnectionError(DatabasePersistenceError):
    """Raised when database connection fails."""

    code = "INF_DATABASE_UNAVAILABLE"
    default_classification = ErrorClassification.TRANSIENT


class DatabaseInitializationError(DatabasePersistenceError):
    """Raised when database initialization fails."""

    code = "INF_DATABASE_INIT_FAILED"


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    "Severity",
    "ErrorClassification",
    "EngineException",
    "ConfigurationError",
    "ValidationError",
    "InvalidAmount",
    "InvalidCurrency",
    "InvalidLotSize",
    "PriceOutOfRange",
    "MissingRejectionReason",
    "InvalidReviewDecision",
    "InvalidIpoDefinition",
    "StateError",
    "InvalidStateTransition",
    "OutsideSubscriptionWindow",
    "DuplicateSubscription",
    "ResourceError",
    "InsufficientBalance",
    "InsufficientHoldings",
    "RateNotFound",
    "EntityNotFound",
    "DepositNotFound",
    "IpoNotFound",
    "SubscriptionNotFound",
    "StockNotFound",
    "InfrastructureError",
    "TransactionConflictError",
    "DatabasePersistenceError",
    "DatabaseConnectionError",
    "DatabaseInitializationError",
]
