"""
Trade network graph models.

Built from relationship rows, cached as JSON in Redis and consumed by the
pattern detectors. Edges point along the dominant giving direction.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class TradeNetworkNode(BaseModel):
    user_id: int
    account_age_days: float = 0.0
    total_trades: int = 0
    total_value_given: float = 0.0
    total_value_received: float = 0.0
    risk_score: float = Field(0.0, ge=0, le=1)
    connection_count: int = 0


class TradeNetworkEdge(BaseModel):
    from_user_id: int
    to_user_id: int
    trade_count: int = 0
    total_value: float = 0.0
    value_imbalance_ratio: float = 1.0
    risk_score: float = Field(0.0, ge=0, le=1)
    first_trade_time: Optional[datetime] = None
    last_trade_time: Optional[datetime] = None
    is_suspicious: bool = False


class TradeNetworkGraph(BaseModel):
    nodes: Dict[int, TradeNetworkNode] = {}
    edges: List[TradeNetworkEdge] = []
    time_window_days: int
    generated_at: datetime
    center_user_id: Optional[int] = None
    hops: Optional[int] = None

    def stats(self) -> Dict:
        return {
            "node_count": len(self.nodes),
            "edge_count": len(self.edges),
            "suspicious_edges": sum(1 for e in self.edges if e.is_suspicious),
            "total_value": round(sum(e.total_value for e in self.edges), 2),
            "time_window_days": self.time_window_days,
            "generated_at": self.generated_at.isoformat(),
        }
