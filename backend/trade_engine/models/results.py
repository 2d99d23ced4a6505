"""
Typed results returned by the orchestrator and the fraud gate.
"""

from typing import List, Optional

from pydantic import BaseModel, Field, computed_field

from trade_engine.core.exceptions import RETRYABLE_CODES, TradeResultCode
from trade_engine.models.trade import TradeSession, TradeStatus


class EvolutionCandidate(BaseModel):
    """An asset that became eligible for a trade evolution by changing hands."""
    asset_ref: int
    species: str
    evolves_to: str
    new_owner_id: int
    required_item: Optional[str] = None


class FraudDecision(BaseModel):
    allowed: bool
    message: str = ""
    risk_score: float = Field(0.0, ge=0, le=1)
    reasons: List[str] = []


class TradeResult(BaseModel):
    code: TradeResultCode
    message: str = ""
    session_id: Optional[str] = None
    session: Optional[TradeSession] = None
    evolutions: List[EvolutionCandidate] = []
    fraud: Optional[FraudDecision] = None
    counterpart_id: Optional[int] = None

    @computed_field
    @property
    def success(self) -> bool:
        return self.code in (
            TradeResultCode.OK,
            TradeResultCode.STILL_WAITING,
            TradeResultCode.COMPLETED,
        )

    @computed_field
    @property
    def retryable(self) -> bool:
        if self.session is not None and self.session.status == TradeStatus.FAILED:
            return False
        return self.code in RETRYABLE_CODES
