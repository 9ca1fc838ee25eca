"""
Pydantic schemas for the read API responses.
"""
import datetime as dt
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =======================
# COMMON
# =======================

class BaseResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)

# =======================
# 1. SNAPSHOT
# =======================

class BandSchema(BaseModel):
    key: str
    label: str
    range: List[int]
    color: str
    recommendation: str

class FactorSchema(BaseModel):
    key: str
    label: str
    pillar: str
    weight_pct: float
    score: Optional[int] = None
    status: str  # fresh, stale, excluded
    last_utc: Optional[datetime] = None
    source: str
    reason: Optional[str] = None
    sub_scores: Dict[str, Optional[int]] = {}
    details: List[str] = []
    effective_weight: float = 0.0

class PillarSchema(BaseModel):
    key: str
    label: str
    weight_pct: float
    score: Optional[float] = None
    effective_weight: float = 0.0
    factor_keys: List[str] = []

class AdjustmentSchema(BaseModel):
    kind: str  # cycle, spike
    adj_pts: int
    residual_or_z: Optional[float] = None
    last_utc: Optional[datetime] = None
    source: str
    reason: Optional[str] = None
    metrics: Dict[str, Any] = {}

class SnapshotSchema(BaseModel):
    as_of_utc: datetime
    composite_score: Optional[int] = None
    raw_composite: Optional[float] = None
    band: Optional[BandSchema] = None
    factors: List[FactorSchema]
    pillars: List[PillarSchema]
    adjustments: Dict[str, AdjustmentSchema]
    config_digest: str
    engine_version: str
    created_at: datetime

class SnapshotResponse(BaseResponse):
    data: SnapshotSchema

# =======================
# 2. HISTORY
# =======================

class HistoryPoint(BaseModel):
    date: dt.date
    composite_score: Optional[int] = None
    band: Optional[str] = None
    cycle_adj_pts: int = 0
    spike_adj_pts: int = 0

class HistoryResponse(BaseResponse):
    data: List[HistoryPoint]

# =======================
# 3. ALERTS
# =======================

class AlertSchema(BaseModel):
    occurred_at: dt.date
    type: str  # band_change, etf_zero_cross, factor_stale
    details: Dict[str, Any] = {}

class AlertsResponse(BaseResponse):
    data: List[AlertSchema]

# =======================
# 4. CONFIG / HEALTH
# =======================

class ConfigResponse(BaseResponse):
    digest: str
    engine_version: str
    data: Dict[str, Any]

class HealthResponse(BaseModel):
    status: str  # ok, degraded
    database: bool
    engine_version: str
    timestamp: datetime = Field(default_factory=_utcnow)
