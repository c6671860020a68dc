"""
Database Package Initialization.

============================================================
LEDGER PERSISTENCE LAYER
============================================================

Relational persistence for the deposit ledger and IPO
settlement engine. All mutations run inside explicit
transactions with commit/rollback.

REQUIRED:
- Every mutation goes through transaction_scope()
- Every failure raises a typed exception
- No stored balance columns

============================================================
"""

# Core engine and session management
from .engine import (
    # Declarative base
    Base,

    # Engine creation
    get_database_url,
    create_database_engine,
    get_engine,

    # Session management
    create_session_factory,
    get_session_factory,
    read_scope,
    transaction_scope,

    # Database initialization
    initialize_database,
    verify_database_connection,
    create_all_tables,

    # Exceptions
    TransactionConflictError,
    DatabasePersistenceError,
    DatabaseConnectionError,
    DatabaseInitializationError,
)

# ORM Models
from .models import (
    Account,
    CurrencyRate,
    Deposit,
    Stock,
    Ipo,
    IpoSubscription,
    Portfolio,
    StockTransaction,
    JobRun,
)

__all__ = [
    "Base",
    "get_database_url",
    "create_database_engine",
    "get_engine",
    "create_session_factory",
    "get_session_factory",
    "read_scope",
    "transaction_scope",
    "initialize_database",
    "verify_database_connection",
    "create_all_tables",
    "TransactionConflictError",
    "DatabasePersistenceError",
    "DatabaseConnectionError",
    "DatabaseInitializationError",
    "Account",
    "CurrencyRate",
    "Deposit",
    "Stock",
    "Ipo",
    "IpoSubscription",
    "Portfolio",
    "StockTransaction",
    "JobRun",
]
