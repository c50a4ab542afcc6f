"""
PickleBank API Application Factory
"""

from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import get_config
from ..errors import LedgerError
from ..logging_config import setup_logging
from .dependencies import LedgerSystem, get_ledger_system
from .errors import ledger_error_handler, validation_error_handler
from .accounts import router as accounts_router
from .authorization import router as authorization_router
from .transactions import router as transactions_router
from .admin import router as admin_router


def create_app(system: Optional[LedgerSystem] = None) -> FastAPI:
    """
    Create and configure the FastAPI application

    Args:
        system: Ledger system to serve; defaults to the process-wide one
            built from configuration on first request
    """
    config = get_config()

    app = FastAPI(
        title="PickleBank API",
        description="Account ledger with card and security-code authorized transfers",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in config.cors_origins.split(",")],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(LedgerError, ledger_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    if system is not None:
        app.dependency_overrides[get_ledger_system] = lambda: system

    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(authorization_router, prefix="/authorization", tags=["Authorization"])
    app.include_router(transactions_router, tags=["Transactions"])
    app.include_router(admin_router, prefix="/admin", tags=["Admin"])

    @app.get("/health")
    def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "picklebank_api",
            "version": __version__
        }

    @app.get("/")
    def get_api_info():
        """Get API information"""
        return {
            "ok": True,
            "service": "PickleBank API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "balance": "/accounts/{account_id}/balance",
                "transactions": "/accounts/{account_id}/transactions",
                "request_code": "/authorization/codes",
                "transfer": "/transfers",
                "withdraw": "/withdrawals",
                "admin": "/admin"
            }
        }

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    setup_logging(config.log_level, config.log_format)
    uvicorn.run(
        "picklebank.api:create_app",
        factory=True,
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )
