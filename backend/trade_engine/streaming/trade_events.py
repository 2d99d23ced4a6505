"""
Redis connection and trade event channel.

The orchestrator never talks to a presentation layer directly; it emits
plain event dicts which are fanned out to

  trade_events  (Redis pub/sub)  ←  other processes / bot shards
  /ws/trades    (WebSocket)      ←  dashboards
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List

import redis.asyncio as aioredis
from pydantic import BaseModel, ConfigDict

from trade_engine.config import settings

logger = logging.getLogger(__name__)


# ── Connection ───────────────────────────────────────────────

async def get_redis_client() -> aioredis.Redis:
    """Create and return an async Redis client."""
    client = aioredis.Redis(
        host=settings.REDIS_HOST,
        port=settings.REDIS_PORT,
        db=settings.REDIS_DB,
        decode_responses=True,
    )
    await client.ping()
    logger.info("✅ Redis connected at %s:%d", settings.REDIS_HOST, settings.REDIS_PORT)
    return client


# ── Trade events (pub/sub) ───────────────────────────────────

class TradeEvent(BaseModel):
    """Envelope of every trade event; event-specific fields ride along as extras."""
    model_config = ConfigDict(extra="allow")

    type: str
    session_id: str
    status: str
    participants: List[int]
    timestamp: datetime

    def concerns(self, user_id: int) -> bool:
        return user_id in self.participants


async def publish_trade_event(
    redis_client: aioredis.Redis,
    event: Dict[str, Any],
) -> int:
    """
    Publish a trade lifecycle event on the pub/sub channel.
    Returns the number of subscribers that received the message.
    """
    payload = json.dumps(event, default=str)
    return await redis_client.publish(settings.REDIS_TRADE_EVENTS_CHANNEL, payload)


def fan_out(
    redis_client: aioredis.Redis,
    listeners: Iterable[Callable[[Dict[str, Any]], Awaitable[None]]] = (),
) -> Callable[[Dict[str, Any]], Awaitable[None]]:
    """Build the orchestrator's event callback: Redis first, then local listeners."""
    local = list(listeners)

    async def _emit(event: Dict[str, Any]) -> None:
        await publish_trade_event(redis_client, event)
        for listener in local:
            await listener(event)

    return _emit
