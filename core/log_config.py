"""
Core Module - Logging Setup.

Configures the root logger once per process. Modules only ever
call logging.getLogger(__name__).
"""

import json
import logging
import sys
from typing import Optional


def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    correlation_id: Optional[str] = None,
) -> logging.Logger:
    """
    Set up structured logging.

    Args:
        level: Log level
        log_format: Output format (json or text)
        correlation_id: Correlation ID for tracing

    Returns:
        Configured logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
                "correlation_id": correlation_id or "",
            })
        )
    else:
        formatter = logging.Formatter(
            f"%(asctime)s | %(levelname)-8s | %(name)s | {correlation_id or '-'} | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    # SQL echo is controlled by DatabaseConfig.echo, not the root level
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return logging.getLogger("ledger_engine")


__all__ = ["setup_logging"]
