"""
Conditional Escrow API Application Factory
"""

from typing import Optional
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from .. import __version__
from ..config import get_config
from ..errors import EscrowError
from ..logging_config import setup_logging
from ..system import EscrowSystem
from .transactions import router as transactions_router
from .ledger import router as ledger_router
from .admin import router as admin_router, audit_router


def create_app(system: Optional[EscrowSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application around an EscrowSystem"""
    app = FastAPI(
        title="Conditional Escrow API",
        description="Escrowed transfers released once on-chain and off-chain conditions are met",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.escrow_system = system if system is not None else EscrowSystem.from_config()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(EscrowError)
    async def escrow_error_handler(request: Request, exc: EscrowError):
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    app.include_router(transactions_router, prefix="/transactions", tags=["Transactions"])
    app.include_router(ledger_router, prefix="/ledger", tags=["Ledger"])
    app.include_router(admin_router, prefix="/admin", tags=["Admin"])
    app.include_router(audit_router, prefix="/audit", tags=["Audit"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "conditional_escrow_api",
            "version": __version__
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Conditional Escrow API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "transactions": "/transactions",
                "ledger": "/ledger",
                "admin": "/admin",
                "audit": "/audit",
            }
        }

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Run the API with uvicorn using EscrowConfig for anything not given"""
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)
    app = create_app(EscrowSystem.from_config(config))
    uvicorn.run(
        app,
        host=host or config.api_host,
        port=port or config.api_port,
        log_level=config.log_level.lower()
    )
