"""
Trade value estimation.

Converts each side of a session into a single comparable number:
  credits  × CURRENCY_UNIT_VALUE
  tokens   × TOKEN_UNIT_VALUE (per token, any type)
  assets   → stored asset value, DEFAULT_ASSET_VALUE when unknown
"""

from __future__ import annotations

import logging
from typing import Dict

from trade_engine.config import settings
from trade_engine.models.trade import TradeSession

logger = logging.getLogger(__name__)


class TradeValueCalculator:
    def __init__(self, inventory) -> None:
        self.inventory = inventory

    async def side_value(self, session: TradeSession, user_id: int) -> float:
        total = session.currency_of(user_id) * settings.CURRENCY_UNIT_VALUE
        total += sum(session.tokens_of(user_id).values()) * settings.TOKEN_UNIT_VALUE
        for entry in session.assets_of(user_id):
            info = await self.inventory.asset_info(entry.asset_ref)
            total += info.value if info is not None else settings.DEFAULT_ASSET_VALUE
        return float(total)

    async def session_values(self, session: TradeSession) -> Dict[int, float]:
        """Value given by each participant."""
        return {uid: await self.side_value(session, uid) for uid in session.participants}
