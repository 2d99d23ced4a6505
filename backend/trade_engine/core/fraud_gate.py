"""
Pre-commit fraud gate.

Called once per trade, after both participants confirmed and before any
inventory mutation:

  1. pair relationship  – whitelisted pairs pass; a relationship risk at or
                          above FRAUD_BLOCK_THRESHOLD blocks
  2. network check      – optional bounded user-centred analysis; blocks
                          when a funnel, cluster or circular flow involves
                          both participants

A failure reading the relationship propagates to the caller. A failure in
the optional network check is logged and the decision rests on step 1.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from trade_engine.config import settings
from trade_engine.core.graph_builder import NetworkGraphBuilder
from trade_engine.detection.network_analysis import NetworkAnalysis, analyze_network
from trade_engine.models.results import FraudDecision
from trade_engine.models.trade import TradeSession

logger = logging.getLogger(__name__)

BLOCK_MESSAGE = (
    "This trade has been blocked due to suspicious activity. "
    "Please contact an administrator if you believe this is an error."
)


def patterns_involving_pair(analysis: NetworkAnalysis, user_a: int, user_b: int) -> Tuple[List[str], float]:
    """Reasons and highest suspicion among patterns containing both users."""
    pair = {user_a, user_b}
    reasons: List[str] = []
    score = 0.0
    for funnel in analysis.funnels:
        members = set(funnel.source_user_ids) | {funnel.central_user_id}
        if pair <= members:
            reasons.append(f"Funnel into {funnel.central_user_id}: " + ", ".join(funnel.suspicion_reasons))
            score = max(score, funnel.suspicion_score)
    for cluster in analysis.clusters:
        if pair <= set(cluster.user_ids):
            reasons.append("Account cluster: " + ", ".join(cluster.suspicion_reasons))
            score = max(score, cluster.suspicion_score)
    for flow in analysis.circular_flows:
        if pair <= set(flow.user_ids):
            reasons.append("Circular flow: " + ", ".join(flow.suspicion_reasons))
            score = max(score, flow.suspicion_score)
    return reasons, score


class FraudGate:
    def __init__(
        self,
        relationship_store,
        graph_builder: Optional[NetworkGraphBuilder] = None,
        network_check: bool | None = None,
    ) -> None:
        self.relationships = relationship_store
        self.graphs = graph_builder
        self.network_check = settings.FRAUD_GATE_NETWORK_CHECK if network_check is None else network_check

    async def evaluate(self, session: TradeSession) -> FraudDecision:
        user_a, user_b = session.player1_id, session.player2_id

        # ── 1. pair relationship ─────────────────────────────
        rel = await self.relationships.get(user_a, user_b)
        risk = rel.relationship_risk_score if rel else 0.0
        if rel is not None and rel.whitelisted:
            return FraudDecision(allowed=True, risk_score=risk, reasons=["Whitelisted relationship"])

        if risk >= settings.FRAUD_BLOCK_THRESHOLD:
            reasons = [f"Relationship risk {risk:.2f}"]
            if rel.flagged_potential_alts:
                reasons.append("Potential alt accounts")
            if rel.flagged_potential_rmt:
                reasons.append("Potential real-money trading")
            if rel.flagged_newbie_exploitation:
                reasons.append("Potential newbie exploitation")
            logger.warning("🚨 Trade %s blocked: %s", session.session_id, "; ".join(reasons))
            return FraudDecision(allowed=False, message=BLOCK_MESSAGE, risk_score=risk, reasons=reasons)

        # ── 2. bounded network check ─────────────────────────
        if self.network_check and self.graphs is not None:
            try:
                reasons, score = await self._network_reasons(user_a, user_b)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Network check skipped for trade %s: %s", session.session_id, exc)
                reasons, score = [], 0.0
            if reasons:
                logger.warning("🚨 Trade %s blocked by network patterns: %s", session.session_id, "; ".join(reasons))
                return FraudDecision(
                    allowed=False,
                    message=BLOCK_MESSAGE,
                    risk_score=max(risk, score),
                    reasons=reasons,
                )

        return FraudDecision(allowed=True, risk_score=risk)

    async def _network_reasons(self, user_a: int, user_b: int) -> Tuple[List[str], float]:
        graph = await self.graphs.build_user_centered_network(
            user_a, settings.FRAUD_GATE_HOPS, settings.FRAUD_GATE_WINDOW_DAYS,
        )
        if user_b not in graph.nodes:
            return [], 0.0
        return patterns_involving_pair(analyze_network(graph), user_a, user_b)
