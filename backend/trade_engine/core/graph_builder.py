"""
Trade network graph construction with Redis caching.

Cache keys
──────────
trade_network:days_{N}                  full network, TTL 6 h
user_network:{id}:hops_{h}:days_{N}     user-centred network, TTL 1 h

A cached payload that no longer decodes is logged and rebuilt; the cache
is always replaced wholesale, never patched.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Set

import redis.asyncio as aioredis
from pydantic import ValidationError

from trade_engine.config import settings
from trade_engine.features.account_age import account_age_days
from trade_engine.models.network import TradeNetworkEdge, TradeNetworkGraph, TradeNetworkNode
from trade_engine.models.relationship import UserTradeRelationship

logger = logging.getLogger(__name__)


def network_cache_key(window_days: int) -> str:
    return f"trade_network:days_{window_days}"


def user_network_cache_key(user_id: int, hops: int, window_days: int) -> str:
    return f"user_network:{user_id}:hops_{hops}:days_{window_days}"


def relationship_to_edge(rel: UserTradeRelationship) -> TradeNetworkEdge:
    """Direct the edge from the side that gave more to the side that gave less."""
    if rel.user2_total_given_value > rel.user1_total_given_value:
        src, dst = rel.user2_id, rel.user1_id
    else:
        src, dst = rel.user1_id, rel.user2_id
    return TradeNetworkEdge(
        from_user_id=src,
        to_user_id=dst,
        trade_count=rel.total_trades,
        total_value=rel.total_value,
        value_imbalance_ratio=rel.value_imbalance_ratio,
        risk_score=rel.relationship_risk_score,
        first_trade_time=rel.first_trade_at,
        last_trade_time=rel.last_trade_at,
        is_suspicious=rel.relationship_risk_score > settings.SUSPICIOUS_EDGE_THRESHOLD,
    )


def build_from_relationships(
    relationships: Iterable[UserTradeRelationship],
    window_days: int,
    now: Optional[datetime] = None,
    center_user_id: Optional[int] = None,
    hops: Optional[int] = None,
) -> TradeNetworkGraph:
    """Pure graph construction; identical input yields an identical graph."""
    now = now or datetime.now(timezone.utc)
    rels = sorted(relationships, key=lambda r: (r.user1_id, r.user2_id))
    nodes: Dict[int, TradeNetworkNode] = {}
    edges: List[TradeNetworkEdge] = []

    for rel in rels:
        for uid in (rel.user1_id, rel.user2_id):
            node = nodes.get(uid)
            if node is None:
                node = nodes[uid] = TradeNetworkNode(
                    user_id=uid,
                    account_age_days=round(account_age_days(uid, now), 4),
                )
            node.total_trades += rel.total_trades
            node.total_value_given += rel.given_by(uid)
            node.total_value_received += rel.given_by(rel.other(uid))
            node.risk_score = max(node.risk_score, rel.relationship_risk_score)
            node.connection_count += 1
        edges.append(relationship_to_edge(rel))

    if center_user_id is not None and center_user_id not in nodes:
        nodes[center_user_id] = TradeNetworkNode(
            user_id=center_user_id,
            account_age_days=round(account_age_days(center_user_id, now), 4),
        )

    return TradeNetworkGraph(
        nodes=dict(sorted(nodes.items())),
        edges=edges,
        time_window_days=window_days,
        generated_at=now,
        center_user_id=center_user_id,
        hops=hops,
    )


class NetworkGraphBuilder:
    """Builds (and caches) trade networks from the relationship store."""

    def __init__(self, relationship_store, redis_client: aioredis.Redis) -> None:
        self.store = relationship_store
        self.redis = redis_client

    # ── full network ─────────────────────────────────────────

    async def build_full_network(self, window_days: int | None = None) -> TradeNetworkGraph:
        window_days = window_days or settings.DEFAULT_WINDOW_DAYS
        key = network_cache_key(window_days)
        cached = await self._read_cache(key)
        if cached is not None:
            return cached

        now = datetime.now(timezone.utc)
        rels = await self.store.in_window(window_days, now)
        graph = build_from_relationships(rels, window_days, now)
        await self._write_cache(key, graph, settings.NETWORK_CACHE_TTL_SEC)
        logger.info(
            "Built trade network (%dd): %d nodes, %d edges",
            window_days, len(graph.nodes), len(graph.edges),
        )
        return graph

    # ── user-centred network ─────────────────────────────────

    async def build_user_centered_network(
        self,
        user_id: int,
        hops: int = 2,
        window_days: int | None = None,
    ) -> TradeNetworkGraph:
        window_days = window_days or settings.DEFAULT_WINDOW_DAYS
        key = user_network_cache_key(user_id, hops, window_days)
        cached = await self._read_cache(key)
        if cached is not None:
            return cached

        now = datetime.now(timezone.utc)
        members = await self._expand(user_id, hops, window_days, now)
        rels = await self.store.among(members, window_days, now) if len(members) > 1 else []
        graph = build_from_relationships(rels, window_days, now, center_user_id=user_id, hops=hops)
        await self._write_cache(key, graph, settings.USER_NETWORK_CACHE_TTL_SEC)
        return graph

    async def _expand(self, user_id: int, hops: int, window_days: int, now: datetime) -> Set[int]:
        """BFS over in-window relationships, ``hops`` levels deep."""
        visited: Set[int] = {user_id}
        frontier: List[int] = [user_id]
        for _ in range(hops):
            next_frontier: List[int] = []
            for uid in frontier:
                for rel in await self.store.connections(uid, window_days, now):
                    other = rel.other(uid)
                    if other not in visited:
                        visited.add(other)
                        next_frontier.append(other)
            if not next_frontier:
                break
            frontier = sorted(next_frontier)
        return visited

    # ── cache maintenance ────────────────────────────────────

    async def clear_network_cache(self, window_days: int | None = None) -> int:
        if window_days is not None:
            return await self.redis.delete(network_cache_key(window_days))
        return await self._delete_matching("trade_network:days_*")

    async def clear_user_network_cache(self, user_id: int) -> int:
        return await self._delete_matching(f"user_network:{user_id}:*")

    async def _delete_matching(self, pattern: str) -> int:
        keys = [key async for key in self.redis.scan_iter(match=pattern)]
        return await self.redis.delete(*keys) if keys else 0

    async def _read_cache(self, key: str) -> Optional[TradeNetworkGraph]:
        raw = await self.redis.get(key)
        if raw is None:
            logger.info("Network cache miss for %s", key)
            return None
        try:
            return TradeNetworkGraph.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Corrupt network cache at %s, rebuilding: %s", key, exc)
            return None

    async def _write_cache(self, key: str, graph: TradeNetworkGraph, ttl: int) -> None:
        await self.redis.set(key, graph.model_dump_json(), ex=ttl)
