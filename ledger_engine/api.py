"""
Ledger Engine - HTTP Application.

============================================================
PURPOSE
============================================================
Builds the FastAPI application around a LedgerEngine.

ERROR MAPPING:
- EngineException -> registry http_status with
  {"error": {"code", "message"}}
- Infrastructure / internal messages are replaced by a
  generic message; the detail goes to the log only
- Anything else -> 500 INT_UNEXPECTED_ERROR

============================================================
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.exceptions import EngineException

from .errors import get_error_info, is_client_visible
from .router import router
from .service import LedgerEngine


logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Service temporarily unavailable"


def _error_body(code: str, message: str) -> dict:
    return {"error": {"code": code, "message": message}}


async def engine_exception_handler(request: Request, exc: EngineException) -> JSONResponse:
    info = get_error_info(exc.code)
    if is_client_visible(exc.code):
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code}")
        message = exc.message
    else:
        logger.error(f"{request.method} {request.url.path} failed: {exc.to_log_format()}")
        message = GENERIC_ERROR_MESSAGE
    return JSONResponse(status_code=info.http_status, content=_error_body(exc.code, message))


async def unexpected_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"{request.method} {request.url.path} crashed: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content=_error_body("INT_UNEXPECTED_ERROR", GENERIC_ERROR_MESSAGE))


def create_app(ledger: Optional[LedgerEngine] = None) -> FastAPI:
    """
    Create the API application.

    Args:
        ledger: Engine to serve; built from the environment if omitted
    """
    app = FastAPI(
        title="Deposit Ledger & IPO Settlement API",
        description="Deposits, IPO subscriptions, allocation and portfolios",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.ledger = ledger or LedgerEngine.from_env()
    app.add_exception_handler(EngineException, engine_exception_handler)
    app.add_exception_handler(Exception, unexpected_exception_handler)
    app.include_router(router)
    return app


__all__ = ["create_app"]
