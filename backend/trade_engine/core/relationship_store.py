"""
Neo4j persistence for per-pair trade relationships.

Each relationship is a single ``TRADED_WITH`` edge from the lower user id
to the higher one. Counters are incremented inside one ``MERGE`` write
transaction; derived risk fields are written back separately.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from trade_engine.models.relationship import UserTradeRelationship, canonical_pair
from trade_engine.neo4j_manager import Neo4jManager
from trade_engine.utils import cypher_queries as CQ

logger = logging.getLogger(__name__)


def _from_ms(ms: Optional[int]) -> Optional[datetime]:
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def _to_ms(ts: datetime) -> int:
    return int(ts.timestamp() * 1000)


def window_cutoff(window_days: int, now: Optional[datetime] = None) -> datetime:
    return (now or datetime.now(timezone.utc)) - timedelta(days=window_days)


def _row_to_relationship(row: Dict) -> UserTradeRelationship:
    data = dict(row)
    data["first_trade_at"] = _from_ms(data.pop("first_trade_ms", None))
    data["last_trade_at"] = _from_ms(data.pop("last_trade_ms", None))
    return UserTradeRelationship(**{k: v for k, v in data.items() if v is not None})


class Neo4jRelationshipStore:
    """Relationship rows keyed by canonical user pair."""

    def __init__(self, neo4j: Neo4jManager) -> None:
        self.neo4j = neo4j

    async def increment(
        self,
        user1_id: int,
        user2_id: int,
        user1_value: float,
        user2_value: float,
        traded_at: datetime,
        user1_favoring: int = 0,
        user2_favoring: int = 0,
        balanced: int = 0,
    ) -> UserTradeRelationship:
        if user1_id >= user2_id:
            raise ValueError("relationship pairs must be passed as (lower id, higher id)")
        rows = await self.neo4j.write_async(CQ.REL_INCREMENT, {
            "user1_id": user1_id,
            "user2_id": user2_id,
            "user1_value": float(user1_value),
            "user2_value": float(user2_value),
            "user1_favoring": user1_favoring,
            "user2_favoring": user2_favoring,
            "balanced": balanced,
            "traded_ms": _to_ms(traded_at),
        })
        return _row_to_relationship(rows[0])

    async def update_risk(self, rel: UserTradeRelationship) -> UserTradeRelationship:
        rows = await self.neo4j.write_async(CQ.REL_UPDATE_RISK, rel.model_dump(include={
            "user1_id",
            "user2_id",
            "value_imbalance_ratio",
            "trading_frequency",
            "account_age_difference_days",
            "relationship_risk_score",
            "flagged_potential_alts",
            "flagged_potential_rmt",
            "flagged_newbie_exploitation",
        }))
        return _row_to_relationship(rows[0]) if rows else rel

    async def get(self, user_a: int, user_b: int) -> Optional[UserTradeRelationship]:
        user1_id, user2_id = canonical_pair(user_a, user_b)
        rows = await self.neo4j.read_async(CQ.REL_GET, {"user1_id": user1_id, "user2_id": user2_id})
        return _row_to_relationship(rows[0]) if rows else None

    async def in_window(
        self, window_days: int, now: Optional[datetime] = None,
    ) -> List[UserTradeRelationship]:
        rows = await self.neo4j.read_async(
            CQ.REL_IN_WINDOW, {"cutoff_ms": _to_ms(window_cutoff(window_days, now))}
        )
        return [_row_to_relationship(r) for r in rows]

    async def connections(
        self, user_id: int, window_days: int, now: Optional[datetime] = None,
    ) -> List[UserTradeRelationship]:
        rows = await self.neo4j.read_async(CQ.REL_USER_CONNECTIONS, {
            "user_id": user_id,
            "cutoff_ms": _to_ms(window_cutoff(window_days, now)),
        })
        return [_row_to_relationship(r) for r in rows]

    async def among(
        self, user_ids: Iterable[int], window_days: int, now: Optional[datetime] = None,
    ) -> List[UserTradeRelationship]:
        rows = await self.neo4j.read_async(CQ.REL_AMONG, {
            "user_ids": sorted(set(user_ids)),
            "cutoff_ms": _to_ms(window_cutoff(window_days, now)),
        })
        return [_row_to_relationship(r) for r in rows]

    async def set_whitelisted(
        self, user_a: int, user_b: int, whitelisted: bool,
    ) -> Optional[UserTradeRelationship]:
        user1_id, user2_id = canonical_pair(user_a, user_b)
        rows = await self.neo4j.write_async(CQ.REL_SET_WHITELIST, {
            "user1_id": user1_id,
            "user2_id": user2_id,
            "whitelisted": whitelisted,
        })
        if rows:
            logger.info("Relationship %s↔%s whitelisted=%s", user1_id, user2_id, whitelisted)
        return _row_to_relationship(rows[0]) if rows else None
