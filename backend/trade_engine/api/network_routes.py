"""
Trade-network reporting routes – graphs, detected patterns, admin tools.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query

from trade_engine.config import settings
from trade_engine.models.network import TradeNetworkEdge
from trade_engine.models.requests import EdgeSearchRequest, WhitelistRequest
from trade_engine.utils.filters import apply_filter, validate_fields

logger = logging.getLogger(__name__)

network_router = APIRouter(prefix="/network")

_graph_builder = None
_patterns = None
_relationships = None


def init_network_routes(graph_builder, pattern_service, relationship_store):
    """Called once at startup to inject shared dependencies."""
    global _graph_builder, _patterns, _relationships
    _graph_builder = graph_builder
    _patterns = pattern_service
    _relationships = relationship_store


def _ready():
    if _graph_builder is None or _patterns is None:
        raise HTTPException(503, "Network analysis not ready")


# ── graphs ───────────────────────────────────────────────────

@network_router.get("")
async def full_network(window_days: int = Query(settings.DEFAULT_WINDOW_DAYS, ge=1, le=365)):
    _ready()
    graph = await _graph_builder.build_full_network(window_days)
    return graph.model_dump(mode="json")


@network_router.get("/users/{user_id}")
async def user_network(
    user_id: int,
    hops: int = Query(2, ge=1, le=4),
    window_days: int = Query(settings.DEFAULT_WINDOW_DAYS, ge=1, le=365),
):
    _ready()
    graph = await _graph_builder.build_user_centered_network(user_id, hops, window_days)
    return graph.model_dump(mode="json")


@network_router.post("/edges/search")
async def search_edges(body: EdgeSearchRequest):
    """Filter the network's edges with a typed filter expression."""
    _ready()
    try:
        validate_fields(body.filter, TradeNetworkEdge)
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    graph = await _graph_builder.build_full_network(body.window_days)
    edges = apply_filter(body.filter, graph.edges)[: body.limit]
    return {"count": len(edges), "edges": [e.model_dump(mode="json") for e in edges]}


# ── patterns ─────────────────────────────────────────────────

@network_router.get("/patterns/funnels")
async def funnels(
    window_days: int = Query(settings.DEFAULT_WINDOW_DAYS, ge=1, le=365),
    min_sources: int = Query(settings.FUNNEL_MIN_SOURCES, ge=2, le=100),
):
    _ready()
    patterns = await _patterns.get_funnel_patterns(window_days, min_sources)
    return [p.model_dump(mode="json") for p in patterns]


@network_router.get("/patterns/clusters")
async def clusters(
    window_days: int = Query(settings.DEFAULT_WINDOW_DAYS, ge=1, le=365),
    min_cluster_size: int = Query(settings.CLUSTER_MIN_SIZE, ge=2, le=100),
):
    _ready()
    found = await _patterns.get_account_clusters(window_days, min_cluster_size)
    return [c.model_dump(mode="json") for c in found]


@network_router.get("/patterns/circular-flows")
async def circular_flows(
    window_days: int = Query(settings.DEFAULT_WINDOW_DAYS, ge=1, le=365),
    max_path_length: int = Query(settings.CIRCULAR_MAX_PATH_LENGTH, ge=3, le=8),
):
    _ready()
    flows = await _patterns.get_circular_flows(window_days, max_path_length)
    return [f.model_dump(mode="json") for f in flows]


@network_router.get("/summary")
async def summary(window_days: int = Query(settings.DEFAULT_WINDOW_DAYS, ge=1, le=365)):
    _ready()
    return await _patterns.summary(window_days)


# ── admin ────────────────────────────────────────────────────

@network_router.delete("/cache")
async def clear_cache(window_days: int | None = Query(None, ge=1, le=365)):
    _ready()
    graphs = await _graph_builder.clear_network_cache(window_days)
    patterns = await _patterns.clear_cache()
    logger.info("Cleared %d graph and %d pattern cache entries", graphs, patterns)
    return {"graphs_cleared": graphs, "patterns_cleared": patterns}


@network_router.put("/relationships/{user_a}/{user_b}/whitelist")
async def whitelist_relationship(user_a: int, user_b: int, body: WhitelistRequest):
    if _relationships is None:
        raise HTTPException(503, "Network analysis not ready")
    rel = await _relationships.set_whitelisted(user_a, user_b, body.whitelisted)
    if rel is None:
        raise HTTPException(404, "These users have never traded")
    return rel.model_dump(mode="json")
