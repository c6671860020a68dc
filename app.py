#!/usr/bin/env python3
"""
Deposit Ledger & IPO Settlement - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
This is the ONE executable entry point for the ledger.

- serve:      HTTP API (uvicorn)
- sweep:      run one allocation sweep and exit
- scheduler:  run the allocation sweep every interval
- init-db:    create tables

============================================================
USAGE
============================================================
Direct execution:
    python app.py serve --port 8000
    python app.py sweep
    python app.py scheduler --interval 3600

With PM2:
    pm2 start app.py --interpreter python --name ledger-sweep -- scheduler

Environment-based configuration:
    DATABASE_URL=postgresql://... LEDGER_CONFIG_PATH=config/engine.yaml python app.py serve

============================================================
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.absolute()
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from core.exceptions import EngineException
from core.log_config import setup_logging
from ledger_engine.config import EngineConfig
from ledger_engine.service import LedgerEngine
from ledger_engine.sweep import SweepScheduler


logger = logging.getLogger(__name__)


# ============================================================
# CLI
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="ledger",
        description="Deposit ledger and IPO settlement engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s init-db                       # Create tables
  %(prog)s serve --port 8000             # Run the HTTP API
  %(prog)s sweep                         # One allocation sweep
  %(prog)s scheduler --interval 3600     # Hourly sweeps
        """
    )

    # --------------------------------------------------------
    # Common Options
    # --------------------------------------------------------
    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        metavar="PATH",
        help="YAML configuration file (default: environment)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-format",
        type=str,
        choices=["text", "json"],
        default="text",
        help="Log output format (default: text)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # --------------------------------------------------------
    # Commands
    # --------------------------------------------------------
    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", type=str, default="0.0.0.0", help="Bind address (default: 0.0.0.0)")
    serve.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")

    subparsers.add_parser("sweep", help="Run one allocation sweep and exit")

    scheduler = subparsers.add_parser("scheduler", help="Run the allocation sweep on an interval")
    scheduler.add_argument(
        "--interval",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Seconds between sweeps (default: from configuration)",
    )

    subparsers.add_parser("init-db", help="Create database tables")

    return parser


def load_config(path: Optional[str]) -> EngineConfig:
    if path:
        return EngineConfig.from_yaml(path).ensure_valid()
    return EngineConfig.from_env()


# ============================================================
# COMMANDS
# ============================================================

def run_serve(ledger: LedgerEngine, host: str, port: int) -> int:
    import uvicorn

    from ledger_engine.api import create_app

    logger.info(f"Starting API on {host}:{port}")
    uvicorn.run(create_app(ledger), host=host, port=port)
    return 0


def run_sweep(ledger: LedgerEngine) -> int:
    report = ledger.run_allocation_sweep()
    print(json.dumps(report.to_dict(), indent=2))
    return 0 if report.success else 1


async def run_scheduler(ledger: LedgerEngine, interval: float) -> int:
    scheduler = SweepScheduler(
        ledger.run_allocation_sweep,
        interval,
        clock=ledger.clock,
        align_to_hour=ledger.config.sweep.align_to_hour,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, scheduler.stop)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass

    await scheduler.run_forever()
    return 0


def main(argv: Optional[list] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(level=args.log_level, log_format=args.log_format)

    try:
        config = load_config(args.config)
        ledger = LedgerEngine(config)

        if args.command == "init-db":
            ledger.initialize_database()
            return 0

        if args.command == "serve":
            return run_serve(ledger, args.host, args.port)

        if args.command == "sweep":
            return run_sweep(ledger)

        interval = args.interval or config.sweep.interval_seconds
        return asyncio.run(run_scheduler(ledger, interval))

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except EngineException as e:
        logger.error(f"Fatal error: {e.to_log_format()}")
        return 1


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
