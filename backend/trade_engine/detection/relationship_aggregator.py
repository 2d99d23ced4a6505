"""
Relationship aggregation – per-pair trade statistics.

Runs once for every completed trade:
  • increments the pair's cumulative counters (atomic upsert in Neo4j)
  • recomputes derived fields: imbalance ratio, trade frequency,
    account-age difference
  • scores the relationship and raises sticky risk flags

Relationship risk  R ∈ [0, 1]
  R = w_imb · imbalance + w_freq · frequency + w_age · account_age
    imbalance   = clamp((ratio − 1) / (saturation − 1))
    frequency   = clamp(trades_per_day / high_frequency)
    account_age = 1.0 newer account < 7d, 0.5 < 30d, else 0
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from trade_engine.config import settings
from trade_engine.features.account_age import account_age_days
from trade_engine.features.trade_value import TradeValueCalculator
from trade_engine.models.relationship import (
    UserTradeRelationship,
    canonical_pair,
    value_imbalance_ratio,
)
from trade_engine.models.trade import TradeSession, TradeStatus

logger = logging.getLogger(__name__)


def _clamp(value: float) -> float:
    return max(0.0, min(value, 1.0))


def score_relationship(
    rel: UserTradeRelationship,
    now: Optional[datetime] = None,
) -> UserTradeRelationship:
    """Return a copy of ``rel`` with every derived field recomputed."""
    now = now or datetime.now(timezone.utc)
    given1, given2 = rel.user1_total_given_value, rel.user2_total_given_value
    ratio = value_imbalance_ratio(given1, given2)

    first = rel.first_trade_at or now
    days_active = max((now - first).total_seconds() / 86400, 1.0)
    frequency = rel.total_trades / days_active

    age1 = account_age_days(rel.user1_id, now)
    age2 = account_age_days(rel.user2_id, now)
    newer_age = min(age1, age2)
    age_difference = abs(age1 - age2)

    # ── component scores ─────────────────────────────────────
    imbalance_score = _clamp((ratio - 1.0) / (settings.REL_IMBALANCE_SATURATION - 1.0))
    frequency_score = _clamp(frequency / settings.REL_HIGH_FREQUENCY_PER_DAY)
    if newer_age < settings.REL_VERY_NEW_ACCOUNT_DAYS:
        age_score = 1.0
    elif newer_age < settings.NEW_ACCOUNT_DAYS:
        age_score = 0.5
    else:
        age_score = 0.0

    risk = _clamp(
        settings.REL_WEIGHT_IMBALANCE * imbalance_score
        + settings.REL_WEIGHT_FREQUENCY * frequency_score
        + settings.REL_WEIGHT_ACCOUNT_AGE * age_score
    )

    # ── flags ────────────────────────────────────────────────
    alts = (
        age_difference < settings.ALT_CREATION_WINDOW_DAYS
        and newer_age < settings.NEW_ACCOUNT_DAYS
    )
    rmt = (
        max(given1, given2) > settings.RMT_VALUE_THRESHOLD
        and ratio > settings.RMT_IMBALANCE_RATIO
    )
    newer_gave, older_gave = (given1, given2) if age1 < age2 else (given2, given1)
    newbie = (
        newer_age < settings.REL_VERY_NEW_ACCOUNT_DAYS
        and newer_gave > older_gave
        and ratio > settings.NEWBIE_IMBALANCE_RATIO
    )

    return rel.model_copy(update={
        "value_imbalance_ratio": round(ratio, 4),
        "trading_frequency": round(frequency, 4),
        "account_age_difference_days": round(age_difference, 2),
        "relationship_risk_score": round(risk, 4),
        "flagged_potential_alts": rel.flagged_potential_alts or alts,
        "flagged_potential_rmt": rel.flagged_potential_rmt or rmt,
        "flagged_newbie_exploitation": rel.flagged_newbie_exploitation or newbie,
    })


class RelationshipAggregator:
    """Folds completed trades into ``UserTradeRelationship`` rows."""

    def __init__(self, store, value_calculator: TradeValueCalculator) -> None:
        self.store = store
        self.values = value_calculator

    async def record_completed_trade(
        self,
        session: TradeSession,
        traded_at: Optional[datetime] = None,
    ) -> UserTradeRelationship:
        if session.status != TradeStatus.COMPLETED:
            raise ValueError(
                f"only completed trades are aggregated (session {session.session_id} is {session.status.value})"
            )
        traded_at = traded_at or session.last_modified_at
        values = await self.values.session_values(session)
        user1_id, user2_id = canonical_pair(session.player1_id, session.player2_id)
        value1, value2 = values[user1_id], values[user2_id]

        multiplier = settings.REL_FAVORING_MULTIPLIER
        user1_favoring = int(value1 > value2 * multiplier)
        user2_favoring = int(value2 > value1 * multiplier)

        rel = await self.store.increment(
            user1_id,
            user2_id,
            value1,
            value2,
            traded_at,
            user1_favoring=user1_favoring,
            user2_favoring=user2_favoring,
            balanced=int(not (user1_favoring or user2_favoring)),
        )
        rel = await self.store.update_risk(score_relationship(rel, traded_at))

        logger.info(
            "Relationship %s↔%s trades=%d ratio=%.2f risk=%.2f",
            user1_id, user2_id, rel.total_trades,
            rel.value_imbalance_ratio, rel.relationship_risk_score,
        )
        return rel
