"""
Network pattern analysis – cached facade over the pattern detectors.

  • Funnels         – many sources → one sink
  • Account clusters – tightly-knit risky groups
  • Circular flows  – A → B → C → A value loops

Each result list is cached in Redis for PATTERN_CACHE_TTL_SEC under a key
that encodes the window and detector parameter. Undecodable payloads are
treated as misses.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, TypeVar

import redis.asyncio as aioredis
from pydantic import BaseModel, TypeAdapter, ValidationError

from trade_engine.config import settings
from trade_engine.core.graph_builder import NetworkGraphBuilder
from trade_engine.detection.circular_flow import detect_circular_flows
from trade_engine.detection.clusters import detect_clusters
from trade_engine.detection.funnel import detect_funnels
from trade_engine.models.network import TradeNetworkGraph
from trade_engine.models.patterns import AccountCluster, CircularFlow, FunnelPattern

logger = logging.getLogger(__name__)

T = TypeVar("T")

_FUNNELS = TypeAdapter(List[FunnelPattern])
_CLUSTERS = TypeAdapter(List[AccountCluster])
_CIRCULAR = TypeAdapter(List[CircularFlow])


class NetworkAnalysis(BaseModel):
    """All three detector outputs for one graph."""
    funnels: List[FunnelPattern] = []
    clusters: List[AccountCluster] = []
    circular_flows: List[CircularFlow] = []

    @property
    def is_empty(self) -> bool:
        return not (self.funnels or self.clusters or self.circular_flows)


def analyze_network(graph: TradeNetworkGraph) -> NetworkAnalysis:
    """Run every detector with default parameters (uncached)."""
    return NetworkAnalysis(
        funnels=detect_funnels(graph),
        clusters=detect_clusters(graph),
        circular_flows=detect_circular_flows(graph),
    )


class PatternDetectionService:
    def __init__(self, graph_builder: NetworkGraphBuilder, redis_client: aioredis.Redis) -> None:
        self.graphs = graph_builder
        self.redis = redis_client

    # ── cached detectors ─────────────────────────────────────

    async def get_funnel_patterns(
        self, window_days: int | None = None, min_sources: int | None = None,
    ) -> List[FunnelPattern]:
        window_days = window_days or settings.DEFAULT_WINDOW_DAYS
        min_sources = min_sources or settings.FUNNEL_MIN_SOURCES
        key = f"funnel_patterns:days_{window_days}:sources_{min_sources}"
        cached = await self._read(key, _FUNNELS)
        if cached is not None:
            return cached
        graph = await self.graphs.build_full_network(window_days)
        patterns = detect_funnels(graph, min_sources)
        await self._write(key, _FUNNELS, patterns)
        return patterns

    async def get_account_clusters(
        self, window_days: int | None = None, min_cluster_size: int | None = None,
    ) -> List[AccountCluster]:
        window_days = window_days or settings.DEFAULT_WINDOW_DAYS
        min_cluster_size = min_cluster_size or settings.CLUSTER_MIN_SIZE
        key = f"account_clusters:days_{window_days}:size_{min_cluster_size}"
        cached = await self._read(key, _CLUSTERS)
        if cached is not None:
            return cached
        graph = await self.graphs.build_full_network(window_days)
        clusters = detect_clusters(graph, min_cluster_size)
        await self._write(key, _CLUSTERS, clusters)
        return clusters

    async def get_circular_flows(
        self, window_days: int | None = None, max_path_length: int | None = None,
    ) -> List[CircularFlow]:
        window_days = window_days or settings.DEFAULT_WINDOW_DAYS
        max_path_length = max_path_length or settings.CIRCULAR_MAX_PATH_LENGTH
        key = f"circular_flows:days_{window_days}:length_{max_path_length}"
        cached = await self._read(key, _CIRCULAR)
        if cached is not None:
            return cached
        graph = await self.graphs.build_full_network(window_days)
        flows = detect_circular_flows(graph, max_path_length)
        await self._write(key, _CIRCULAR, flows)
        return flows

    # ── dashboard ────────────────────────────────────────────

    async def summary(self, window_days: int | None = None) -> Dict:
        window_days = window_days or settings.DEFAULT_WINDOW_DAYS
        graph = await self.graphs.build_full_network(window_days)
        funnels = await self.get_funnel_patterns(window_days)
        clusters = await self.get_account_clusters(window_days)
        flows = await self.get_circular_flows(window_days)
        return {
            "network": graph.stats(),
            "funnels": len(funnels),
            "clusters": len(clusters),
            "circular_flows": len(flows),
            "high_risk_users": sorted(
                uid for uid, node in graph.nodes.items()
                if node.risk_score > settings.SUSPICIOUS_EDGE_THRESHOLD
            ),
            "top_funnels": [f.model_dump(mode="json") for f in funnels[:5]],
            "top_clusters": [c.model_dump(mode="json") for c in clusters[:5]],
            "top_circular_flows": [c.model_dump(mode="json") for c in flows[:5]],
        }

    async def clear_cache(self) -> int:
        deleted = 0
        for pattern in ("funnel_patterns:*", "account_clusters:*", "circular_flows:*"):
            keys = [key async for key in self.redis.scan_iter(match=pattern)]
            if keys:
                deleted += await self.redis.delete(*keys)
        return deleted

    # ── cache helpers ────────────────────────────────────────

    async def _read(self, key: str, adapter: TypeAdapter[T]) -> Optional[T]:
        raw = await self.redis.get(key)
        if raw is None:
            return None
        try:
            return adapter.validate_json(raw)
        except ValidationError as exc:
            logger.warning("Corrupt pattern cache at %s, recomputing: %s", key, exc)
            return None

    async def _write(self, key: str, adapter: TypeAdapter, value) -> None:
        await self.redis.set(key, adapter.dump_json(value), ex=settings.PATTERN_CACHE_TTL_SEC)
