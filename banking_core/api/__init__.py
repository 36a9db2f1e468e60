"""
Banking Core API Application Factory
"""

from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth import BankingSystem, get_banking_system
from .accounts import router as accounts_router
from .transactions import router as transactions_router
from .stocks import router as stocks_router
from .chat import router as chat_router
from .realtime import router as realtime_router
from .. import __version__
from ..config import get_config
from ..errors import BankingError
from ..logging_config import get_logger, setup_logging


logger = get_logger("banking.api")


def create_app(system: Optional[BankingSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    config = system.config if system else get_config()
    setup_logging(level=config.log_level, fmt=config.log_format)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Own the banking system for the lifetime of the app"""
        if getattr(app.state, "system", None) is None:
            app.state.system = BankingSystem(config=config)
        logger.info("Banking core API started")
        yield
        app.state.system.close()
        logger.info("Banking core API stopped")

    app = FastAPI(
        title="Banking Core API",
        description="Wallet ledger, stock trading, customer chat and realtime notifications",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.system = system

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_error_handlers(app)

    # Include routers
    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(transactions_router, prefix="/transactions", tags=["Transactions"])
    app.include_router(stocks_router, prefix="/stocks", tags=["Stocks"])
    app.include_router(chat_router, prefix="/chat", tags=["Chat"])
    app.include_router(realtime_router, tags=["Realtime"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "banking_core_api",
            "version": __version__
        }

    # Root endpoint
    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Banking Core API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "accounts": "/accounts",
                "transactions": "/transactions",
                "stocks": "/stocks",
                "chat": "/chat",
                "websockets": [
                    "/ws/chat/user", "/ws/chat/admin",
                    "/ws/notifications/user", "/ws/notifications/admin"
                ],
            }
        }

    return app


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(BankingError)
    async def banking_error_handler(request: Request, exc: BankingError):
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc}")
        return JSONResponse(status_code=exc.status_code,
                            content={"success": False, "error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0]["msg"] if errors else "Invalid request"
        location = ".".join(str(part) for part in errors[0]["loc"][1:]) if errors else ""
        if location:
            message = f"{location}: {message}"
        return JSONResponse(status_code=400, content={"success": False, "error": message})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code,
                            content={"success": False, "error": exc.detail},
                            headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
        return JSONResponse(status_code=500,
                            content={"success": False, "error": "Internal Server Error"})


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the API server with uvicorn"""
    config = get_config()
    uvicorn.run(
        create_app(),
        host=host or config.api_host,
        port=port or config.api_port,
        log_level="debug" if debug else config.log_level.lower()
    )


__all__ = ["BankingSystem", "create_app", "get_banking_system", "run_server"]
