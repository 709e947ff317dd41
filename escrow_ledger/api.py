"""
Escrow Ledger FastAPI Application

REST surface for the task lifecycle, offers and wallet. Authentication
is upstream: callers arrive with X-Actor-Id / X-Actor-Role headers.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings, get_settings
from .container import Container, build_container
from .core.exceptions import (
    ConcurrencyConflict,
    InsufficientFunds,
    InvalidAmount,
    InvalidRequest,
    InvalidState,
    InvariantViolation,
    LedgerError,
    NotFoundError,
    ProofRequired,
    StorageError,
    Unauthorized,
)
from .log_config import configure_logging
from .routes import tasks, wallet

logger = structlog.get_logger()

# Most specific class wins (looked up along the exception's MRO)
ERROR_STATUS: dict[type[LedgerError], int] = {
    InsufficientFunds: 402,
    InvalidState: 409,
    Unauthorized: 403,
    ProofRequired: 422,
    ConcurrencyConflict: 409,
    StorageError: 503,
    NotFoundError: 404,
    InvalidAmount: 400,
    InvalidRequest: 400,
    InvariantViolation: 500,
}


def status_for(error: LedgerError) -> int:
    for cls in type(error).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 500


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    status_code = status_for(exc)
    log = logger.error if status_code >= 500 else logger.info
    log("request_failed", path=request.url.path, error=exc.code, status_code=status_code)
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "message": exc.message, "details": exc.details},
    )


def create_app(container: Container | None = None, settings: Settings | None = None) -> FastAPI:
    """
    Build the application.

    Args:
        container: Pre-built services (tests); built from settings at startup if omitted
        settings: Settings override; ``get_settings()`` if omitted
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager"""
        owned = container is None
        if owned:
            configure_logging(settings.log_level, settings.log_json)
            app.state.container = build_container(settings)
        logger.info(
            "service_started",
            service=settings.service_name,
            version=settings.service_version,
            storage_backend=settings.storage_backend,
        )

        yield

        if owned:
            await app.state.container.aclose()
        logger.info("service_stopped", service=settings.service_name)

    app = FastAPI(
        title=settings.service_name,
        description="Escrow ledger for a task marketplace",
        version=settings.service_version,
        lifespan=lifespan,
    )
    if container is not None:
        app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(LedgerError, ledger_error_handler)

    @app.get("/health")
    async def health():
        """Health check"""
        return {"status": "healthy"}

    app.include_router(tasks.router)
    app.include_router(wallet.router)
    return app
