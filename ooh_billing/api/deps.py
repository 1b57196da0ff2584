"""
OOH Billing API — Shared Dependencies

FastAPI dependency injection for DB sessions and the invoice generator.
"""

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..generator import InvoiceGenerator


async def get_db(request: Request) -> AsyncSession:
    """Yield a database session from the pool."""
    async with request.app.state.db_session() as session:
        yield session


async def get_generator(request: Request) -> InvoiceGenerator:
    kwargs = {}
    if request.app.state.clock is not None:
        kwargs["clock"] = request.app.state.clock
    return InvoiceGenerator(
        request.app.state.db_session,
        notifier=request.app.state.notifier,
        **kwargs,
    )
