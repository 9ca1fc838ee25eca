import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from composite_risk.config import ENGINE_VERSION
from dashboard.dependencies import get_db
from dashboard.schemas import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["System Health"])


@router.get("/health", response_model=HealthResponse)
def get_health(db: Session = Depends(get_db)):
    """
    Liveness plus a database round trip.
    """
    try:
        db.execute(text("SELECT 1"))
        database_ok = True
    except SQLAlchemyError as e:
        logger.error(f"Health check database error: {e}")
        database_ok = False

    return HealthResponse(
        status="ok" if database_ok else "degraded",
        database=database_ok,
        engine_version=ENGINE_VERSION,
    )
