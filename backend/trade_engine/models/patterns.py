"""
Immutable detection results (funnels, account clusters, circular flows).
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

_PATTERN_NAMESPACE = uuid.UUID("6f1c3d2e-8a4b-4f7e-9c1d-2b3a4c5d6e7f")


def pattern_id(kind: str, members: List[int]) -> str:
    """Deterministic id so identical graphs yield identical results."""
    key = f"{kind}:" + ",".join(str(m) for m in members)
    return str(uuid.uuid5(_PATTERN_NAMESPACE, key))


class SuspicionLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


def level_for_score(score: float) -> SuspicionLevel:
    if score > 0.8:
        return SuspicionLevel.CRITICAL
    if score > 0.6:
        return SuspicionLevel.HIGH
    if score > 0.4:
        return SuspicionLevel.MEDIUM
    return SuspicionLevel.LOW


class _Pattern(BaseModel):
    model_config = ConfigDict(frozen=True)

    pattern_id: str
    suspicion_score: float = Field(ge=0, le=1)
    suspicion_reasons: List[str] = []
    detected_at: datetime
    time_window_days: int

    @computed_field
    @property
    def suspicion_level(self) -> SuspicionLevel:
        return level_for_score(self.suspicion_score)


class FunnelPattern(_Pattern):
    """Many sources pushing value into one account."""
    central_user_id: int
    source_user_ids: List[int]
    total_value_funneled: float
    trade_count: int
    flow_start_time: Optional[datetime] = None
    flow_end_time: Optional[datetime] = None


class AccountCluster(_Pattern):
    """Tightly-knit group of accounts linked by risky trades."""
    user_ids: List[int]
    internal_trades: int
    total_internal_value: float
    avg_account_age_days: float
    internal_trade_ratio: float


class CircularFlow(_Pattern):
    """Value travelling around a directed cycle back to its origin."""
    user_ids: List[int]
    total_value: float
    cycle_length: int
    flow_start_time: Optional[datetime] = None
    flow_end_time: Optional[datetime] = None

    @property
    def flow_duration_hours(self) -> Optional[float]:
        if self.flow_start_time is None or self.flow_end_time is None:
            return None
        return (self.flow_end_time - self.flow_start_time).total_seconds() / 3600
