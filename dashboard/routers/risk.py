from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from composite_risk.config import CompositeRiskConfig
from dashboard.dependencies import get_config, get_db
from dashboard.schemas import ConfigResponse, HistoryResponse, SnapshotResponse
from dashboard.services import DashboardService

router = APIRouter(prefix="/api", tags=["Composite Risk"])


@router.get("/latest", response_model=SnapshotResponse)
def get_latest(
    db: Session = Depends(get_db),
    config: CompositeRiskConfig = Depends(get_config),
):
    """
    Get the latest composite snapshot with its factor breakdown.
    """
    data = DashboardService(db, config).get_latest_snapshot()
    if data is None:
        raise HTTPException(status_code=404, detail="no snapshot yet")
    return SnapshotResponse(data=data)


@router.get("/history", response_model=HistoryResponse)
def get_history(
    days: int = Query(90, ge=1, le=3650),
    end: Optional[date] = None,
    db: Session = Depends(get_db),
    config: CompositeRiskConfig = Depends(get_config),
):
    """
    Daily composite scores, oldest first.
    """
    return HistoryResponse(data=DashboardService(db, config).get_history(days=days, end=end))


@router.get("/config", response_model=ConfigResponse)
def get_effective_config(config: CompositeRiskConfig = Depends(get_config)):
    """
    Effective configuration (secrets omitted) and its digest.
    """
    return ConfigResponse(
        digest=config.digest(),
        engine_version=config.engine_version,
        data=config.to_dict(),
    )
