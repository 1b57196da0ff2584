"""
OOH Billing — REST API

FastAPI application exposing campaign billing previews and invoice generation.

Endpoints (all under /api/v1 except /health):
  GET  /campaigns/{id}/totals
  GET  /campaigns/{id}/periods
  GET  /campaigns/{id}/months
  GET  /campaigns/{id}/months/{month}/preview
  GET  /campaigns/{id}/invoices/existing?month=YYYY-MM
  POST /campaigns/{id}/invoices/single
  POST /campaigns/{id}/invoices/periods/{month}
  POST /campaigns/{id}/invoices/assets/{month}
  POST /campaigns/{id}/invoices/batch
  GET  /health

Usage:
    uvicorn ooh_billing.api.app:app --port 8000
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from ..config import settings
from ..errors import ConflictError, LedgerOverrideRequired, NotFoundError, ValidationError
from ..notifications import LoggingNotifier, build_notifier

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger("ooh.billing.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle: DB pool and notifier, unless injected."""
    engine = None
    if app.state.db_session is None:
        engine = create_async_engine(
            settings.database_url,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_pre_ping=True,
            pool_recycle=300,
        )
        app.state.db_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    if app.state.notifier is None:
        app.state.notifier = build_notifier(settings.REDIS_URL, settings.NOTIFY_REDIS_CHANNEL)

    logger.info("OOH billing API ready (company state %s)", settings.COMPANY_STATE_CODE)
    yield

    close = getattr(app.state.notifier, "aclose", None)
    if close is not None:
        await close()
    if engine is not None:
        await engine.dispose()
    logger.info("OOH billing API stopped")


def _error(status: int, exc: Exception, **extra) -> JSONResponse:
    return JSONResponse(status_code=status, content={"detail": str(exc), **extra})


def create_app(session_factory=None, notifier=None, clock=None) -> FastAPI:
    """
    Build the app. Passing a session factory skips engine creation, so
    tests can run against their own database without the lifespan.
    """
    app = FastAPI(
        title="OOH Billing API",
        description="Campaign billing previews and invoice generation",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.db_session = session_factory
    app.state.clock = clock
    app.state.notifier = notifier if notifier is not None else (
        LoggingNotifier() if session_factory is not None else None
    )

    @app.exception_handler(ValidationError)
    async def _validation(request: Request, exc: ValidationError):
        return _error(422, exc, problems=exc.problems)

    @app.exception_handler(ConflictError)
    async def _conflict(request: Request, exc: ConflictError):
        return _error(409, exc, existing_invoice_id=exc.existing_invoice_id, asset_ids=exc.asset_ids)

    @app.exception_handler(LedgerOverrideRequired)
    async def _override_required(request: Request, exc: LedgerOverrideRequired):
        return _error(409, exc)

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError):
        return _error(404, exc)

    from .routes import billing, health
    app.include_router(billing.router, prefix="/api/v1", tags=["Billing"])
    app.include_router(health.router, tags=["Health"])

    return app


app = create_app()
