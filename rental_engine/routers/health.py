"""
Health Check Endpoints

/health/ready reports ready only when every table a booking touches can be
read: products, bookings, reservation windows and the order counters.
"""

from datetime import datetime, timezone
import time

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..database import get_db
from ..models import Booking, OrderSequence, Product, ReservationWindow
from ..models.reservation_window import WindowStatus
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

VERSION = "1.0.0"

ENGINE_TABLES = (Product, Booking, ReservationWindow, OrderSequence)


def check_engine_tables(db: Session) -> dict:
    """Row counts per engine table, or the first table that cannot be read."""
    started = time.time()
    tables = {}
    current = None
    try:
        for model in ENGINE_TABLES:
            current = model.__tablename__
            tables[current] = db.execute(
                select(func.count()).select_from(model)
            ).scalar_one()
        active_windows = db.execute(
            select(func.count())
            .select_from(ReservationWindow)
            .where(ReservationWindow.status == WindowStatus.ACTIVE.value)
        ).scalar_one()
    except SQLAlchemyError as e:
        logger.error(f"Readiness check failed on {current}: {e}")
        return {"status": "down", "table": current, "error": str(e)[:100]}

    return {
        "status": "up",
        "dialect": db.bind.dialect.name,
        "latency_ms": round((time.time() - started) * 1000, 2),
        "rows": tables,
        "active_windows": active_windows,
    }


@router.get("/live")
async def liveness_check():
    return {"status": "alive"}


@router.get("/ready")
def readiness_check(db: Session = Depends(get_db)):
    database = check_engine_tables(db)
    body = {
        "status": "ready" if database["status"] == "up" else "not_ready",
        "database": database,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    return JSONResponse(status_code=200 if database["status"] == "up" else 503, content=body)


@router.get("")
async def simple_health_check():
    return {
        "status": "healthy",
        "environment": settings.environment,
        "version": VERSION,
    }
