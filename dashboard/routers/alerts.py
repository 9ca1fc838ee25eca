from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from composite_risk.config import CompositeRiskConfig
from dashboard.dependencies import get_config, get_db
from dashboard.schemas import AlertsResponse
from dashboard.services import DashboardService

router = APIRouter(prefix="/api", tags=["Alerts"])


@router.get("/alerts", response_model=AlertsResponse)
def get_alerts(
    since: Optional[date] = None,
    db: Session = Depends(get_db),
    config: CompositeRiskConfig = Depends(get_config),
):
    """
    Alert log entries, oldest first.
    """
    return AlertsResponse(data=DashboardService(db, config).get_alerts(since))
