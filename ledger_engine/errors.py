"""
Ledger Engine - Error Taxonomy.

============================================================
PURPOSE
============================================================
Error code registry for ledger failures.

ERROR CATEGORIES:
1. Validation Errors - Bad input, no state change
2. State Errors - Acting on a non-matching status
3. Resource Errors - Missing or insufficient resources
4. Infrastructure Errors - Storage failures
5. Internal Errors - Unexpected failures

RETRYABLE vs NON-RETRYABLE:
- Retryable: Transient infrastructure errors only
- Non-retryable: Every business rejection

The exception classes themselves live in core.exceptions;
this module maps their codes to HTTP status and retry policy.

============================================================
"""

from enum import Enum
from typing import Dict, Set
from dataclasses import dataclass


# ============================================================
# ERROR CATEGORIES
# ============================================================

class ErrorCategory(Enum):
    """Error category classification."""

    VALIDATION = "VALIDATION"
    """Request failed input validation."""

    STATE = "STATE"
    """Record is not in a status that permits the operation."""

    RESOURCE = "RESOURCE"
    """Balance, holding, rate or record is missing."""

    INFRASTRUCTURE = "INFRASTRUCTURE"
    """Database or transaction failure."""

    CONFIGURATION = "CONFIGURATION"
    """Invalid configuration."""

    INTERNAL = "INTERNAL"
    """Unexpected internal error."""


# ============================================================
# ERROR CODE REGISTRY
# ============================================================

@dataclass
class ErrorCodeInfo:
    """Information about an error code."""

    code: str
    """Error code."""

    category: ErrorCategory
    """Error category."""

    http_status: int
    """Status returned by the HTTP layer."""

    is_retryable: bool
    """Whether a retry with the same inputs may succeed."""

    description: str
    """Human-readable description."""


def _info(code: str, category: ErrorCategory, http_status: int, description: str,
          is_retryable: bool = False) -> ErrorCodeInfo:
    return ErrorCodeInfo(
        code=code,
        category=category,
        http_status=http_status,
        is_retryable=is_retryable,
        description=description,
    )


# Error code registry
ERROR_CODES: Dict[str, ErrorCodeInfo] = {
    # ========== VALIDATION ERRORS ==========
    "VAL_INVALID_REQUEST": _info(
        "VAL_INVALID_REQUEST", ErrorCategory.VALIDATION, 422,
        "Request failed validation",
    ),
    "VAL_INVALID_AMOUNT": _info(
        "VAL_INVALID_AMOUNT", ErrorCategory.VALIDATION, 422,
        "Amount must be a positive decimal",
    ),
    "VAL_INVALID_CURRENCY": _info(
        "VAL_INVALID_CURRENCY", ErrorCategory.VALIDATION, 422,
        "Currency code is malformed",
    ),
    "VAL_INVALID_LOT_SIZE": _info(
        "VAL_INVALID_LOT_SIZE", ErrorCategory.VALIDATION, 422,
        "Quantity is not a positive multiple of the lot size",
    ),
    "VAL_PRICE_OUT_OF_RANGE": _info(
        "VAL_PRICE_OUT_OF_RANGE", ErrorCategory.VALIDATION, 422,
        "Price per share outside the offering price band",
    ),
    "VAL_MISSING_REJECTION_REASON": _info(
        "VAL_MISSING_REJECTION_REASON", ErrorCategory.VALIDATION, 422,
        "Rejecting a deposit requires a reason",
    ),
    "VAL_INVALID_DECISION": _info(
        "VAL_INVALID_DECISION", ErrorCategory.VALIDATION, 422,
        "Review decision must be approved or rejected",
    ),
    "VAL_INVALID_IPO": _info(
        "VAL_INVALID_IPO", ErrorCategory.VALIDATION, 422,
        "IPO terms are inconsistent",
    ),

    # ========== STATE ERRORS ==========
    "STA_INVALID_STATE": _info(
        "STA_INVALID_STATE", ErrorCategory.STATE, 409,
        "Record status does not permit the operation",
    ),
    "STA_INVALID_TRANSITION": _info(
        "STA_INVALID_TRANSITION", ErrorCategory.STATE, 409,
        "Status transition not allowed",
    ),
    "STA_OUTSIDE_WINDOW": _info(
        "STA_OUTSIDE_WINDOW", ErrorCategory.STATE, 409,
        "IPO is not accepting subscriptions",
    ),
    "STA_DUPLICATE_SUBSCRIPTION": _info(
        "STA_DUPLICATE_SUBSCRIPTION", ErrorCategory.STATE, 409,
        "User already has an active subscription for this IPO",
    ),

    # ========== RESOURCE ERRORS ==========
    "RES_UNAVAILABLE": _info(
        "RES_UNAVAILABLE", ErrorCategory.RESOURCE, 409,
        "Required resource unavailable",
    ),
    "RES_INSUFFICIENT_BALANCE": _info(
        "RES_INSUFFICIENT_BALANCE", ErrorCategory.RESOURCE, 409,
        "Available balance does not cover the request",
    ),
    "RES_INSUFFICIENT_HOLDINGS": _info(
        "RES_INSUFFICIENT_HOLDINGS", ErrorCategory.RESOURCE, 409,
        "Portfolio holding does not cover the sale",
    ),
    "RES_RATE_NOT_FOUND": _info(
        "RES_RATE_NOT_FOUND", ErrorCategory.RESOURCE, 404,
        "No active exchange rate for the currency pair",
    ),
    "RES_NOT_FOUND": _info(
        "RES_NOT_FOUND", ErrorCategory.RESOURCE, 404,
        "Record not found",
    ),
    "RES_DEPOSIT_NOT_FOUND": _info(
        "RES_DEPOSIT_NOT_FOUND", ErrorCategory.RESOURCE, 404,
        "Deposit not found",
    ),
    "RES_IPO_NOT_FOUND": _info(
        "RES_IPO_NOT_FOUND", ErrorCategory.RESOURCE, 404,
        "IPO not found",
    ),
    "RES_SUBSCRIPTION_NOT_FOUND": _info(
        "RES_SUBSCRIPTION_NOT_FOUND", ErrorCategory.RESOURCE, 404,
        "Subscription not found",
    ),
    "RES_STOCK_NOT_FOUND": _info(
        "RES_STOCK_NOT_FOUND", ErrorCategory.RESOURCE, 404,
        "Stock not found",
    ),

    # ========== INFRASTRUCTURE ERRORS ==========
    "INF_FAILURE": _info(
        "INF_FAILURE", ErrorCategory.INFRASTRUCTURE, 500,
        "Infrastructure failure",
    ),
    "INF_TRANSACTION_CONFLICT": _info(
        "INF_TRANSACTION_CONFLICT", ErrorCategory.INFRASTRUCTURE, 503,
        "Transaction conflict or timeout, safe to retry",
        is_retryable=True,
    ),
    "INF_DATABASE_ERROR": _info(
        "INF_DATABASE_ERROR", ErrorCategory.INFRASTRUCTURE, 500,
        "Database persistence failed",
    ),
    "INF_DATABASE_UNAVAILABLE": _info(
        "INF_DATABASE_UNAVAILABLE", ErrorCategory.INFRASTRUCTURE, 503,
        "Database unavailable",
        is_retryable=True,
    ),
    "INF_DATABASE_INIT_FAILED": _info(
        "INF_DATABASE_INIT_FAILED", ErrorCategory.INFRASTRUCTURE, 500,
        "Database initialization failed",
    ),

    # ========== CONFIGURATION / INTERNAL ==========
    "CFG_INVALID": _info(
        "CFG_INVALID", ErrorCategory.CONFIGURATION, 500,
        "Invalid configuration",
    ),
    "INT_UNEXPECTED_ERROR": _info(
        "INT_UNEXPECTED_ERROR", ErrorCategory.INTERNAL, 500,
        "Internal error",
    ),
}

# Categories whose messages never reach API clients
HIDDEN_CATEGORIES: Set[ErrorCategory] = {
    ErrorCategory.INFRASTRUCTURE,
    ErrorCategory.CONFIGURATION,
    ErrorCategory.INTERNAL,
}


def get_error_info(code: str) -> ErrorCodeInfo:
    """
    Get error info for a code.

    Args:
        code: Error code

    Returns:
        ErrorCodeInfo or default unknown error
    """
    return ERROR_CODES.get(code, ErrorCodeInfo(
        code=code,
        category=ErrorCategory.INTERNAL,
        http_status=500,
        is_retryable=False,
        description=f"Unknown error: {code}",
    ))


def is_retryable(code: str) -> bool:
    """Check if an error code is retryable."""
    return get_error_info(code).is_retryable


def is_client_visible(code: str) -> bool:
    """Check if the error message may be shown to the caller."""
    return get_error_info(code).category not in HIDDEN_CATEGORIES


# ============================================================
# RETRYABLE ERROR SETS
# ============================================================

RETRYABLE_ERROR_CODES: Set[str] = {
    code for code, info in ERROR_CODES.items() if info.is_retryable
}


__all__ = [
    "ErrorCategory",
    "ErrorCodeInfo",
    "ERROR_CODES",
    "RETRYABLE_ERROR_CODES",
    "get_error_info",
    "is_retryable",
    "is_client_visible",
]
