"""GET /health"""

import logging
import time

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_db

logger = logging.getLogger("ooh.billing.api")

router = APIRouter()

_start_time = time.monotonic()


@router.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    """Health check: verifies DB connectivity."""
    db_ok = False
    try:
        await db.execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")

    return {
        "status": "ok" if db_ok else "degraded",
        "version": "0.1.0",
        "db_connected": db_ok,
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
    }
