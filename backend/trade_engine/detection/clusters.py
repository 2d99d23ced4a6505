"""
Account cluster detection – groups of accounts linked by risky trades.

Connected components are built over edges with risk above
RISKY_EDGE_THRESHOLD (undirected). Components of at least
``min_cluster_size`` members are scored on four indicators:
  • similar account creation times
  • trading mostly among themselves
  • regular (coordinated) trade timing
  • majority of new accounts

Suspicion = indicators / 4.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Set

import numpy as np

from trade_engine.config import settings
from trade_engine.models.network import TradeNetworkEdge, TradeNetworkGraph
from trade_engine.models.patterns import AccountCluster, pattern_id

logger = logging.getLogger(__name__)


def connected_components(graph: TradeNetworkGraph) -> List[List[int]]:
    """Components over risky edges, each sorted, in order of smallest member."""
    adjacency: Dict[int, Set[int]] = {uid: set() for uid in graph.nodes}
    for edge in graph.edges:
        if edge.risk_score > settings.RISKY_EDGE_THRESHOLD:
            adjacency.setdefault(edge.from_user_id, set()).add(edge.to_user_id)
            adjacency.setdefault(edge.to_user_id, set()).add(edge.from_user_id)

    visited: Set[int] = set()
    components: List[List[int]] = []
    for start in sorted(adjacency):
        if start in visited:
            continue
        component: List[int] = []
        stack = [start]
        visited.add(start)
        while stack:
            uid = stack.pop()
            component.append(uid)
            for neighbor in sorted(adjacency[uid], reverse=True):
                if neighbor not in visited:
                    visited.add(neighbor)
                    stack.append(neighbor)
        components.append(sorted(component))
    return components


def has_coordinated_timing(edges: List[TradeNetworkEdge]) -> bool:
    """Trade timestamps spaced at near-constant intervals (low dispersion)."""
    times: List[datetime] = []
    for edge in edges:
        if edge.first_trade_time:
            times.append(edge.first_trade_time)
        if edge.last_trade_time:
            times.append(edge.last_trade_time)
    if len(times) < settings.CLUSTER_TIMING_MIN_SAMPLES:
        return False

    stamps = np.array(sorted(t.timestamp() for t in times), dtype=float)
    intervals = np.diff(stamps) / 60.0
    mean = float(np.mean(intervals))
    if mean <= 0:
        return False
    return float(np.std(intervals)) < mean * settings.CLUSTER_TIMING_CV


def detect_clusters(graph: TradeNetworkGraph, min_cluster_size: int | None = None) -> List[AccountCluster]:
    min_cluster_size = min_cluster_size or settings.CLUSTER_MIN_SIZE
    clusters: List[AccountCluster] = []

    for members in connected_components(graph):
        if len(members) < min_cluster_size:
            continue
        member_set = set(members)
        reasons: List[str] = []

        ages = [graph.nodes[uid].account_age_days for uid in members if uid in graph.nodes]
        if ages and max(ages) - min(ages) < settings.CLUSTER_CREATION_WINDOW_DAYS:
            reasons.append("Similar account creation times")

        internal = [e for e in graph.edges if e.from_user_id in member_set and e.to_user_id in member_set]
        touching = [e for e in graph.edges if e.from_user_id in member_set or e.to_user_id in member_set]
        internal_ratio = len(internal) / len(touching) if touching else 0.0
        if internal_ratio > settings.CLUSTER_INTERNAL_RATIO:
            reasons.append("High internal trading ratio")

        if has_coordinated_timing(internal):
            reasons.append("Coordinated trading timing")

        new_members = sum(1 for age in ages if age < settings.NEW_ACCOUNT_DAYS)
        if new_members > len(members) * settings.CLUSTER_NEW_MEMBER_SHARE:
            reasons.append("Majority new accounts")

        score = min(1.0, len(reasons) / 4)
        if score < settings.CLUSTER_SUSPICION_THRESHOLD:
            continue

        clusters.append(AccountCluster(
            pattern_id=pattern_id("cluster", members),
            user_ids=members,
            internal_trades=sum(e.trade_count for e in internal),
            total_internal_value=sum(e.total_value for e in internal),
            avg_account_age_days=round(sum(ages) / len(ages), 2) if ages else 0.0,
            internal_trade_ratio=round(internal_ratio, 4),
            suspicion_score=score,
            suspicion_reasons=reasons,
            detected_at=graph.generated_at,
            time_window_days=graph.time_window_days,
        ))

    clusters.sort(key=lambda c: (-c.suspicion_score, c.user_ids))
    if clusters:
        logger.info("Detected %d account clusters", len(clusters))
    return clusters
