"""
Redis-backed trade session store.

Keys
────
trade_session:{session_id}       session JSON, TTL = session lifetime
trade_user_session:{user_id}     {"session_id", "counterpart_id"} index
trade_processing:{session_id}    one-shot processing claim (SET NX)

Terminal sessions are kept for a short retention window and then expire;
the participant index is dropped as soon as a session ends.
"""

from __future__ import annotations

import json
import logging
from typing import Optional

import redis.asyncio as aioredis
from pydantic import ValidationError

from trade_engine.config import settings
from trade_engine.models.trade import TradeSession

logger = logging.getLogger(__name__)

SESSION_PREFIX = "trade_session:"
USER_INDEX_PREFIX = "trade_user_session:"
PROCESSING_PREFIX = "trade_processing:"


class TradeSessionStore:
    """Keyed, expiring storage of sessions by id."""

    def __init__(self, redis_client: aioredis.Redis) -> None:
        self.redis = redis_client

    # ── sessions ─────────────────────────────────────────────

    async def save(self, session: TradeSession) -> None:
        ttl = (
            settings.TRADE_TERMINAL_RETENTION_SEC
            if session.is_terminal
            else settings.TRADE_SESSION_TTL_SEC
        )
        await self.redis.set(SESSION_PREFIX + session.session_id, session.model_dump_json(), ex=ttl)

        if session.is_terminal:
            for uid in session.participants:
                await self.drop_index_if_owned(uid, session.session_id)
        else:
            for uid in session.participants:
                await self.redis.set(
                    USER_INDEX_PREFIX + str(uid),
                    json.dumps({
                        "session_id": session.session_id,
                        "counterpart_id": session.counterpart_of(uid),
                    }),
                    ex=ttl,
                )

    async def get(self, session_id: str) -> Optional[TradeSession]:
        raw = await self.redis.get(SESSION_PREFIX + session_id)
        if raw is None:
            return None
        try:
            return TradeSession.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Discarding undecodable session %s: %s", session_id, exc)
            return None

    # ── participant index ────────────────────────────────────

    async def user_entry(self, user_id: int) -> Optional[dict]:
        """Return ``{"session_id", "counterpart_id"}`` for the user's open session."""
        raw = await self.redis.get(USER_INDEX_PREFIX + str(user_id))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Discarding undecodable session index for user %s", user_id)
            await self.redis.delete(USER_INDEX_PREFIX + str(user_id))
            return None

    async def active_session_for(self, user_id: int) -> Optional[TradeSession]:
        entry = await self.user_entry(user_id)
        if entry is None:
            return None
        session = await self.get(entry["session_id"])
        if session is None or session.is_terminal:
            return None
        return session

    async def clear_user_index(self, user_id: int) -> None:
        await self.redis.delete(USER_INDEX_PREFIX + str(user_id))

    async def drop_index_if_owned(self, user_id: int, session_id: str) -> None:
        entry = await self.user_entry(user_id)
        if entry is not None and entry.get("session_id") == session_id:
            await self.clear_user_index(user_id)

    # ── processing claim ─────────────────────────────────────

    async def claim_processing(self, session_id: str) -> bool:
        """Idempotent check-and-set: only the first caller gets ``True``."""
        ok = await self.redis.set(
            PROCESSING_PREFIX + session_id,
            "1",
            nx=True,
            ex=settings.TRADE_PROCESSING_CLAIM_TTL_SEC,
        )
        return bool(ok)
