"""
Circular flow detection – value travelling A → B → … → A.

Bounded DFS over directed risky edges (risk > RISKY_EDGE_THRESHOLD) from
every node, paths up to ``max_path_length`` vertices. A cycle needs at
least three participants and is reported once regardless of which
vertex it was discovered from.

Indicators (suspicion = indicators / 4, capped at 1.0):
  • one per cycle edge with value_imbalance_ratio above CIRCULAR_IMBALANCE_RATIO
  • all cycle trades within CIRCULAR_RAPID_HOURS
  • total value above CIRCULAR_HIGH_TOTAL_VALUE
  • majority of participants are new accounts
"""

from __future__ import annotations

import logging
from typing import Dict, List, Set, Tuple

from trade_engine.config import settings
from trade_engine.models.network import TradeNetworkEdge, TradeNetworkGraph
from trade_engine.models.patterns import CircularFlow, pattern_id

logger = logging.getLogger(__name__)


def find_cycles(graph: TradeNetworkGraph, max_path_length: int) -> List[List[int]]:
    """Distinct directed cycles (as vertex paths), deduplicated by vertex set."""
    adjacency: Dict[int, List[int]] = {}
    for edge in graph.edges:
        if edge.risk_score > settings.RISKY_EDGE_THRESHOLD:
            adjacency.setdefault(edge.from_user_id, []).append(edge.to_user_id)
    for targets in adjacency.values():
        targets.sort()

    seen: Set[Tuple[int, ...]] = set()
    cycles: List[List[int]] = []

    def _walk(start: int, path: List[int], on_path: Set[int]) -> None:
        for neighbor in adjacency.get(path[-1], []):
            if neighbor == start and len(path) >= 3:
                key = tuple(sorted(path))
                if key not in seen:
                    seen.add(key)
                    cycles.append(list(path))
            elif neighbor not in on_path and len(path) < max_path_length:
                path.append(neighbor)
                on_path.add(neighbor)
                _walk(start, path, on_path)
                on_path.discard(neighbor)
                path.pop()

    for start in sorted(adjacency):
        _walk(start, [start], {start})
    return cycles


def detect_circular_flows(
    graph: TradeNetworkGraph,
    max_path_length: int | None = None,
) -> List[CircularFlow]:
    max_path_length = max_path_length or settings.CIRCULAR_MAX_PATH_LENGTH
    edge_index: Dict[Tuple[int, int], TradeNetworkEdge] = {
        (e.from_user_id, e.to_user_id): e for e in graph.edges
    }

    flows: List[CircularFlow] = []
    for cycle in find_cycles(graph, max_path_length):
        hops = list(zip(cycle, cycle[1:] + cycle[:1]))
        edges = [edge_index[h] for h in hops]
        indicators = 0
        reasons: List[str] = []

        imbalanced = sum(1 for e in edges if e.value_imbalance_ratio > settings.CIRCULAR_IMBALANCE_RATIO)
        if imbalanced:
            indicators += imbalanced
            reasons.append(f"{imbalanced} imbalanced edges in cycle")

        times = [t for e in edges for t in (e.first_trade_time, e.last_trade_time) if t]
        start = min(times) if times else None
        end = max(times) if times else None
        if start and end and (end - start).total_seconds() < settings.CIRCULAR_RAPID_HOURS * 3600:
            indicators += 1
            reasons.append("Rapid circular trading")

        total_value = sum(e.total_value for e in edges)
        if total_value > settings.CIRCULAR_HIGH_TOTAL_VALUE:
            indicators += 1
            reasons.append("High value circulation")

        new_members = sum(
            1 for uid in cycle
            if uid in graph.nodes and graph.nodes[uid].account_age_days < settings.NEW_ACCOUNT_DAYS
        )
        if new_members > len(cycle) * settings.CIRCULAR_NEW_MEMBER_SHARE:
            indicators += 1
            reasons.append("New accounts in circular flow")

        score = min(1.0, indicators / 4)
        if score < settings.CIRCULAR_SUSPICION_THRESHOLD:
            continue

        flows.append(CircularFlow(
            pattern_id=pattern_id("circular", sorted(cycle)),
            user_ids=cycle,
            total_value=total_value,
            cycle_length=len(cycle),
            suspicion_score=score,
            suspicion_reasons=reasons,
            flow_start_time=start,
            flow_end_time=end,
            detected_at=graph.generated_at,
            time_window_days=graph.time_window_days,
        ))

    flows.sort(key=lambda f: (-f.suspicion_score, sorted(f.user_ids)))
    if flows:
        logger.info("Detected %d circular flows", len(flows))
    return flows
