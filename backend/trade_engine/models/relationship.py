"""
Cumulative per-pair trade statistics.

One row per unordered user pair, stored with ``user1_id < user2_id``.
Counters only ever grow; the derived risk fields are recomputed from them
after every completed trade.
"""

from datetime import datetime
from typing import Optional, Tuple

from pydantic import BaseModel, Field


def canonical_pair(user_a: int, user_b: int) -> Tuple[int, int]:
    return (user_a, user_b) if user_a < user_b else (user_b, user_a)


class UserTradeRelationship(BaseModel):
    user1_id: int
    user2_id: int

    # ── cumulative counters ──────────────────────────────────
    total_trades: int = 0
    user1_total_given_value: float = 0.0
    user2_total_given_value: float = 0.0
    user1_favoring_trades: int = 0
    user2_favoring_trades: int = 0
    balanced_trades: int = 0
    first_trade_at: Optional[datetime] = None
    last_trade_at: Optional[datetime] = None

    # ── derived ──────────────────────────────────────────────
    value_imbalance_ratio: float = 1.0
    trading_frequency: float = 0.0
    account_age_difference_days: float = 0.0
    relationship_risk_score: float = Field(0.0, ge=0, le=1)

    # ── flags ────────────────────────────────────────────────
    flagged_potential_alts: bool = False
    flagged_potential_rmt: bool = False
    flagged_newbie_exploitation: bool = False
    whitelisted: bool = False

    @property
    def total_value(self) -> float:
        return self.user1_total_given_value + self.user2_total_given_value

    def given_by(self, user_id: int) -> float:
        if user_id == self.user1_id:
            return self.user1_total_given_value
        if user_id == self.user2_id:
            return self.user2_total_given_value
        raise ValueError(f"user {user_id} is not part of this relationship")

    def involves(self, user_id: int) -> bool:
        return user_id in (self.user1_id, self.user2_id)

    def other(self, user_id: int) -> int:
        return self.user2_id if user_id == self.user1_id else self.user1_id


def value_imbalance_ratio(given_a: float, given_b: float) -> float:
    """max/min of the two given totals; a zero side yields the other side's magnitude."""
    high, low = max(given_a, given_b), min(given_a, given_b)
    if high <= 0:
        return 1.0
    if low <= 0:
        return high
    return high / low
