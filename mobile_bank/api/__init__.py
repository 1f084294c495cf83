"""
Mobile Bank API Application Factory
"""

import time
import uuid
from typing import Optional

import uvicorn

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .dependencies import BankingSystem, get_banking_system
from .auth import router as auth_router
from .accounts import router as accounts_router
from .transactions import router as transactions_router, create_transfer
from ..config import get_config
from ..errors import BankingError, ErrorKind
from ..logging_config import (
    get_logger, log_action, setup_logging, bind_correlation_id, reset_correlation_id
)


logger = get_logger("mobile_bank.api")


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Validation failed"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    return f"{location}: {first.get('msg')}" if location else str(first.get("msg"))


def create_app(system: Optional[BankingSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Mobile Bank API",
        description="Account balances, atomic transfers and transaction history for the mobile app",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )

    if system is not None:
        app.dependency_overrides[get_banking_system] = lambda: system

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[get_config().cors_origin],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        correlation_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        token = bind_correlation_id(correlation_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
            log_action(
                logger, "info", f"{request.method} {request.url.path} {response.status_code}",
                action="http_request",
                extra={"duration_ms": round((time.perf_counter() - started) * 1000, 2)}
            )
        finally:
            reset_correlation_id(token)
        response.headers["X-Request-ID"] = correlation_id
        return response

    @app.exception_handler(BankingError)
    async def banking_error_handler(request: Request, exc: BankingError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        if any("amount" in error.get("loc", ()) for error in exc.errors()):
            error = BankingError(ErrorKind.INVALID_AMOUNT, "Amount must be a number")
        else:
            error = BankingError(ErrorKind.VALIDATION_ERROR, _validation_message(exc))
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        error = BankingError(ErrorKind.TRANSACTION_FAILED, "Internal server error")
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    # Include routers
    app.include_router(auth_router, prefix="/auth", tags=["Auth"])
    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(transactions_router, prefix="/transactions", tags=["Transactions"])
    app.add_api_route(
        "/transfer", create_transfer, methods=["POST"], status_code=201, tags=["Transactions"]
    )

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "mobile_bank_api",
            "version": "1.0.0"
        }

    # Root endpoint
    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Mobile Bank API",
            "version": "1.0.0",
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "auth": "/auth",
                "accounts": "/accounts",
                "transfer": "/transfer",
                "history": "/transactions/history",
            }
        }

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)
    uvicorn.run(
        "mobile_bank.api:app",
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )


# Create the app instance for uvicorn
app = create_app()


__all__ = ["create_app", "run_server", "app", "BankingSystem", "get_banking_system"]
