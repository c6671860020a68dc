"""
Ledger Engine - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the Deposit Ledger & IPO Settlement Engine.

SOURCES (later wins):
1. Dataclass defaults
2. YAML file (LEDGER_CONFIG_PATH or explicit path)
3. Environment variables (.env loaded via python-dotenv)

CRITICAL CONSTRAINTS:
- No retries of business validation failures
- Bounded retries of transient infrastructure failures
- Deterministic money rounding

============================================================
"""

import os
import logging
from dataclasses import dataclass, field, fields, is_dataclass
from decimal import Decimal, ROUND_HALF_UP, ROUND_HALF_EVEN, ROUND_DOWN, ROUND_UP
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from core.exceptions import ConfigurationError


logger = logging.getLogger(__name__)


ROUNDING_MODES = {
    "ROUND_HALF_UP": ROUND_HALF_UP,
    "ROUND_HALF_EVEN": ROUND_HALF_EVEN,
    "ROUND_DOWN": ROUND_DOWN,
    "ROUND_UP": ROUND_UP,
}


# ============================================================
# CURRENCY CONFIGURATION
# ============================================================

@dataclass
class CurrencyConfig:
    """
    Currency precision configuration.

    Fiat settles to 2 decimals; crypto-denominated internal
    bookkeeping keeps up to 8.
    """

    base_currency: str = "USD"
    """Default account base currency for new accounts."""

    default_precision: int = 2
    """Minor-unit precision for currencies without an override."""

    precision: Dict[str, int] = field(default_factory=lambda: {
        "BTC": 8,
        "ETH": 8,
        "USDT": 8,
    })
    """Per-currency precision overrides."""

    rounding: str = "ROUND_HALF_UP"
    """Decimal rounding mode name."""

    def precision_for(self, currency: str) -> int:
        """Decimal places for a currency code."""
        return self.precision.get(currency.upper(), self.default_precision)

    def quantize(self, amount: Decimal, currency: str) -> Decimal:
        """Round an amount to the currency's minor unit."""
        exponent = Decimal(1).scaleb(-self.precision_for(currency))
        return Decimal(amount).quantize(exponent, rounding=ROUNDING_MODES[self.rounding])


# ============================================================
# RETRY CONFIGURATION
# ============================================================

@dataclass
class RetryConfig:
    """
    Retry configuration for transient infrastructure failures.

    SAFETY: Business errors (InsufficientBalance etc.) are never retried.
    """

    max_retries: int = 3
    """Maximum number of retry attempts."""

    initial_delay_seconds: float = 0.05
    """Initial delay before first retry."""

    max_delay_seconds: float = 2.0
    """Maximum delay between retries."""

    backoff_multiplier: float = 2.0
    """Exponential backoff multiplier."""

    def delay_for(self, attempt: int) -> float:
        """Delay before the given retry attempt (1-based)."""
        delay = self.initial_delay_seconds * (self.backoff_multiplier ** (attempt - 1))
        return min(delay, self.max_delay_seconds)


# ============================================================
# TRADING CONFIGURATION
# ============================================================

@dataclass
class TradingConfig:
    """Simple buy/sell transaction log settings."""

    commission_rate: Decimal = Decimal("0.001")
    """Commission charged on trade amount (0.1%)."""


# ============================================================
# SWEEP CONFIGURATION
# ============================================================

@dataclass
class SweepConfig:
    """Scheduled allocation sweep settings."""

    interval_seconds: float = 3600.0
    """Time between sweep ticks."""

    open_upcoming: bool = True
    """Move upcoming IPOs to ongoing once their start date passes."""

    list_closed: bool = True
    """Move allocated IPOs to listed once their listing date passes."""

    job_name: str = "allocation_sweep"
    """Name recorded in job_runs."""

    align_to_hour: bool = False
    """Scheduler ticks at the top of each hour instead of every interval."""


# ============================================================
# DATABASE CONFIGURATION
# ============================================================

@dataclass
class DatabaseConfig:
    """Database connection settings."""

    url: Optional[str] = None
    """SQLAlchemy URL. None falls back to DATABASE_URL / local SQLite."""

    echo: bool = False
    """Log SQL statements."""

    pool_size: int = 10
    max_overflow: int = 20
    pool_timeout: int = 30
    pool_recycle: int = 1800

    isolation_level: Optional[str] = "SERIALIZABLE"
    """Transaction isolation for mutating operations."""

    statement_timeout_ms: Optional[int] = 30000
    """PostgreSQL statement_timeout; stuck transactions are rolled back."""

    def engine_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for database.engine.create_database_engine."""
        return {
            "url": self.url,
            "echo": self.echo,
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "pool_timeout": self.pool_timeout,
            "pool_recycle": self.pool_recycle,
            "isolation_level": self.isolation_level,
            "statement_timeout_ms": self.statement_timeout_ms,
        }


# ============================================================
# MASTER CONFIGURATION
# ============================================================

@dataclass
class EngineConfig:
    """
    Master configuration for the ledger engine.
    """

    currency: CurrencyConfig = field(default_factory=CurrencyConfig)
    """Currency configuration."""

    retry: RetryConfig = field(default_factory=RetryConfig)
    """Retry configuration."""

    trading: TradingConfig = field(default_factory=TradingConfig)
    """Trading configuration."""

    sweep: SweepConfig = field(default_factory=SweepConfig)
    """Sweep configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    """Database configuration."""

    def validate(self) -> List[str]:
        """Return a list of configuration problems (empty if valid)."""
        errors = []

        if not _is_currency_code(self.currency.base_currency):
            errors.append(f"currency.base_currency invalid: {self.currency.base_currency!r}")
        if self.currency.default_precision < 0:
            errors.append("currency.default_precision must be >= 0")
        for code, places in self.currency.precision.items():
            if places < 0:
                errors.append(f"currency.precision[{code}] must be >= 0")
        if self.currency.rounding not in ROUNDING_MODES:
            errors.append(f"currency.rounding must be one of {sorted(ROUNDING_MODES)}")
        if self.retry.max_retries < 0:
            errors.append("retry.max_retries must be >= 0")
        if not (Decimal("0") <= self.trading.commission_rate < Decimal("1")):
            errors.append("trading.commission_rate must be in [0, 1)")
        if self.sweep.interval_seconds <= 0:
            errors.append("sweep.interval_seconds must be positive")

        return errors

    def ensure_valid(self) -> "EngineConfig":
        """Raise ConfigurationError if validate() reports problems."""
        errors = self.validate()
        if errors:
            raise ConfigurationError(
                "Invalid engine configuration: " + "; ".join(errors),
                context={"errors": errors},
            )
        return self

    # --------------------------------------------------------
    # CONSTRUCTORS
    # --------------------------------------------------------

    @classmethod
    def for_testing(cls) -> "EngineConfig":
        """Get configuration for testing."""
        return cls(
            retry=RetryConfig(max_retries=1, initial_delay_seconds=0.0),
            database=DatabaseConfig(
                url="sqlite://",
                isolation_level=None,
                statement_timeout_ms=None,
            ),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        """Build configuration from a nested dictionary."""
        config = cls()
        unknown = set(data) - {f.name for f in fields(cls)}
        if unknown:
            raise ConfigurationError(
                f"Unknown configuration sections: {', '.join(sorted(unknown))}",
                config_key=sorted(unknown)[0],
            )
        for section in fields(cls):
            values = data.get(section.name)
            if values is None:
                continue
            if not isinstance(values, dict):
                raise ConfigurationError(
                    f"Section {section.name!r} must be a mapping",
                    config_key=section.name,
                )
            _apply_section(getattr(config, section.name), values, section.name)
        return config.ensure_valid()

    @classmethod
    def from_yaml(cls, path: str) -> "EngineConfig":
        """Load configuration from a YAML file."""
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigurationError(
                f"Config file not found: {path}",
                config_key="LEDGER_CONFIG_PATH",
            )

        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}

        logger.info(f"Loaded engine configuration from {config_path}")
        return cls.from_dict(data)

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """
        Load configuration from the environment.

        Reads .env, then an optional YAML file named by
        LEDGER_CONFIG_PATH, then individual overrides.
        """
        load_dotenv()

        config_path = os.getenv("LEDGER_CONFIG_PATH")
        config = cls.from_yaml(config_path) if config_path else cls()

        overrides = {
            ("database", "url"): os.getenv("DATABASE_URL"),
            ("currency", "base_currency"): os.getenv("LEDGER_BASE_CURRENCY"),
            ("trading", "commission_rate"): os.getenv("LEDGER_COMMISSION_RATE"),
            ("sweep", "interval_seconds"): os.getenv("LEDGER_SWEEP_INTERVAL_SECONDS"),
            ("retry", "max_retries"): os.getenv("LEDGER_MAX_RETRIES"),
        }
        for (section, key), raw in overrides.items():
            if raw is not None and raw != "":
                _apply_section(getattr(config, section), {key: raw}, section)

        return config.ensure_valid()


# ============================================================
# HELPERS
# ============================================================

def _is_currency_code(code: Any) -> bool:
    return isinstance(code, str) and code.isalpha() and code.isupper() and 3 <= len(code) <= 5


def _apply_section(target: Any, values: Dict[str, Any], section: str) -> None:
    """Coerce and assign values onto a config dataclass instance."""
    known = {f.name: f for f in fields(target)}
    for key, raw in values.items():
        if key not in known:
            raise ConfigurationError(
                f"Unknown configuration key {section}.{key}",
                config_key=f"{section}.{key}",
            )
        current = getattr(target, key)
        try:
            setattr(target, key, _coerce(raw, current))
        except (ValueError, ArithmeticError, TypeError) as e:
            raise ConfigurationError(
                f"Invalid value for {section}.{key}: {raw!r}",
                config_key=f"{section}.{key}",
                cause=e,
            ) from e


def _coerce(raw: Any, current: Any) -> Any:
    if isinstance(current, bool):
        if isinstance(raw, str):
            return raw.strip().lower() in {"1", "true", "yes", "on"}
        return bool(raw)
    if isinstance(current, Decimal):
        return Decimal(str(raw))
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    if isinstance(current, dict):
        if not isinstance(raw, dict):
            raise TypeError("expected a mapping")
        return {str(k).upper(): int(v) for k, v in raw.items()}
    if is_dataclass(current):
        raise TypeError("nested sections are not supported")
    return raw
