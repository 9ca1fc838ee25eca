"""
Dashboard Services - Read-side queries for the API.
"""

import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from composite_risk.bands import BandClassifier
from composite_risk.config import CompositeRiskConfig
from composite_risk.repository import CompositeRiskRepository
from composite_risk.types import AdjustmentKind

logger = logging.getLogger(__name__)


class DashboardService:
    """Turns repository reads into response payloads."""

    def __init__(self, db: Session, config: CompositeRiskConfig):
        self.db = db
        self.config = config
        self.repo = CompositeRiskRepository(db, BandClassifier(config.bands))

    def get_latest_snapshot(self) -> Optional[Dict[str, Any]]:
        snapshot = self.repo.get_latest_snapshot()
        return snapshot.to_dict() if snapshot else None

    def get_history(
        self,
        days: int = 90,
        end: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        """One point per day over the last ``days`` days up to ``end``."""
        end = end or date.today()
        start = end - timedelta(days=days - 1)

        points = []
        for snapshot in self.repo.get_history(start, end):
            adjustments = snapshot.adjustments
            cycle = adjustments.get(AdjustmentKind.CYCLE.value)
            spike = adjustments.get(AdjustmentKind.SPIKE.value)
            points.append({
                "date": snapshot.as_of_date,
                "composite_score": snapshot.composite_score,
                "band": snapshot.band.key if snapshot.band else None,
                "cycle_adj_pts": cycle.adj_pts if cycle else 0,
                "spike_adj_pts": spike.adj_pts if spike else 0,
            })
        return points

    def get_alerts(self, since: Optional[date] = None) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self.repo.entries(since)]

    def get_config(self) -> Dict[str, Any]:
        return self.config.to_dict()
