"""
Funnel detection – many accounts feeding value into one.

For every node with at least ``min_sources`` incoming edges, four
indicators are evaluated:
  • high total value received
  • many small sources (≥ FUNNEL_MANY_SOURCES, low average per source)
  • mostly new source accounts
  • mostly one-sided (high imbalance) incoming edges

Suspicion = indicators / 4; patterns at or above the threshold are kept.
"""

from __future__ import annotations

import logging
from typing import Dict, List

from trade_engine.config import settings
from trade_engine.models.network import TradeNetworkEdge, TradeNetworkGraph
from trade_engine.models.patterns import FunnelPattern, pattern_id

logger = logging.getLogger(__name__)


def detect_funnels(graph: TradeNetworkGraph, min_sources: int | None = None) -> List[FunnelPattern]:
    min_sources = min_sources or settings.FUNNEL_MIN_SOURCES

    incoming: Dict[int, List[TradeNetworkEdge]] = {}
    for edge in graph.edges:
        incoming.setdefault(edge.to_user_id, []).append(edge)

    patterns: List[FunnelPattern] = []
    for central in sorted(incoming):
        edges = sorted(incoming[central], key=lambda e: e.from_user_id)
        sources = sorted({e.from_user_id for e in edges})
        if len(sources) < min_sources:
            continue

        total_value = sum(e.total_value for e in edges)
        reasons: List[str] = []

        if total_value > settings.FUNNEL_HIGH_TOTAL_VALUE:
            reasons.append("High value concentration")

        average = total_value / len(sources)
        if len(sources) >= settings.FUNNEL_MANY_SOURCES and average < settings.FUNNEL_SMALL_AVERAGE_VALUE:
            reasons.append("Many small value sources")

        new_sources = sum(
            1 for uid in sources
            if uid in graph.nodes and graph.nodes[uid].account_age_days < settings.NEW_ACCOUNT_DAYS
        )
        if new_sources > len(sources) * settings.FUNNEL_NEW_SOURCE_SHARE:
            reasons.append("Many new account sources")

        imbalanced = sum(1 for e in edges if e.value_imbalance_ratio > settings.FUNNEL_IMBALANCE_RATIO)
        if imbalanced > len(edges) * settings.FUNNEL_IMBALANCED_EDGE_SHARE:
            reasons.append("High value imbalance ratios")

        score = min(1.0, len(reasons) / 4)
        if score < settings.FUNNEL_SUSPICION_THRESHOLD:
            continue

        starts = [e.first_trade_time for e in edges if e.first_trade_time]
        ends = [e.last_trade_time for e in edges if e.last_trade_time]
        patterns.append(FunnelPattern(
            pattern_id=pattern_id("funnel", [central]),
            central_user_id=central,
            source_user_ids=sources,
            total_value_funneled=total_value,
            trade_count=sum(e.trade_count for e in edges),
            suspicion_score=score,
            suspicion_reasons=reasons,
            flow_start_time=min(starts) if starts else None,
            flow_end_time=max(ends) if ends else None,
            detected_at=graph.generated_at,
            time_window_days=graph.time_window_days,
        ))

    patterns.sort(key=lambda p: (-p.suspicion_score, p.central_user_id))
    if patterns:
        logger.info("Detected %d funnel patterns", len(patterns))
    return patterns
