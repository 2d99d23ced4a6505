"""
Persistent inventory: asset ownership, currency and token balances.

Every mutating call is a single guarded Cypher write; a call that would
overdraw a balance or move an asset its supposed owner no longer holds
matches no rows and raises ``ExecutionFailure`` instead.
"""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import BaseModel

from trade_engine.config import settings
from trade_engine.core.exceptions import ExecutionFailure
from trade_engine.models.trade import TokenType
from trade_engine.neo4j_manager import Neo4jManager
from trade_engine.utils import cypher_queries as CQ

logger = logging.getLogger(__name__)


class AssetInfo(BaseModel):
    asset_ref: int
    species: str
    value: float
    tradable: bool = True
    held_item: Optional[str] = None
    owner_id: Optional[int] = None


class Neo4jInventoryStore:
    def __init__(self, neo4j: Neo4jManager) -> None:
        self.neo4j = neo4j

    # ── reads ────────────────────────────────────────────────

    async def user_exists(self, user_id: int) -> bool:
        rows = await self.neo4j.read_async(CQ.INV_USER_EXISTS, {"user_id": user_id})
        return bool(rows)

    async def asset_info(self, asset_ref: int) -> Optional[AssetInfo]:
        rows = await self.neo4j.read_async(CQ.INV_GET_ASSET, {
            "asset_ref": asset_ref,
            "default_value": settings.DEFAULT_ASSET_VALUE,
        })
        return AssetInfo(**rows[0]) if rows else None

    async def currency_balance(self, user_id: int) -> int:
        rows = await self.neo4j.read_async(CQ.INV_CURRENCY_BALANCE, {"user_id": user_id})
        return int(rows[0]["credits"]) if rows else 0

    async def token_balance(self, user_id: int, token_type: TokenType) -> int:
        rows = await self.neo4j.read_async(CQ.INV_TOKEN_BALANCE, {
            "user_id": user_id,
            "token_type": token_type.value,
        })
        return int(rows[0]["count"]) if rows else 0

    # ── writes ───────────────────────────────────────────────

    async def transfer_asset(self, asset_ref: int, from_user_id: int, to_user_id: int) -> None:
        rows = await self.neo4j.write_async(CQ.INV_TRANSFER_ASSET, {
            "asset_ref": asset_ref,
            "from_user_id": from_user_id,
            "to_user_id": to_user_id,
        })
        if not rows:
            raise ExecutionFailure(f"Asset {asset_ref} is no longer owned by {from_user_id}")

    async def adjust_currency(self, user_id: int, delta: int) -> int:
        rows = await self.neo4j.write_async(CQ.INV_ADJUST_CURRENCY, {
            "user_id": user_id,
            "delta": delta,
        })
        if not rows:
            raise ExecutionFailure(f"User {user_id} has insufficient credits")
        return int(rows[0]["credits"])

    async def adjust_tokens(self, user_id: int, token_type: TokenType, delta: int) -> int:
        rows = await self.neo4j.write_async(CQ.INV_ADJUST_TOKENS, {
            "user_id": user_id,
            "token_type": token_type.value,
            "delta": delta,
        })
        if not rows:
            raise ExecutionFailure(f"User {user_id} has insufficient {token_type.value} tokens")
        return int(rows[0]["count"])
