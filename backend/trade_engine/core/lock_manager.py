"""
Per-user trade locks on Redis.

Each lock is a single key ``{namespace}:{user_id}`` written with
``SET NX EX``: the holder token is the value and the TTL bounds how long a
crashed holder can block the user. Release is a compare-and-delete on that
token, so a holder whose lock expired never frees someone else's. Multi-user
acquisition always walks ids in ascending order and rolls back on the first
failure, so two callers locking the same pair in opposite orders can never both succeed.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, List, Optional

import redis.asyncio as aioredis

from trade_engine.config import settings

logger = logging.getLogger(__name__)

# Delete KEYS[1] only while it still holds our token ARGV[1].
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


@dataclass
class LockOutcome:
    acquired: bool
    value: Any = None
    blocked_by: Optional[int] = None


class LockManager:
    """Mutual exclusion per user id."""

    def __init__(
        self,
        redis_client: aioredis.Redis,
        namespace: str = "trade_lock",
        ttl_sec: int | None = None,
    ) -> None:
        self.redis = redis_client
        self.namespace = namespace
        self.ttl_sec = ttl_sec or settings.TRADE_LOCK_TTL_SEC

    def _key(self, user_id: int) -> str:
        return f"{self.namespace}:{user_id}"

    # ── single lock ──────────────────────────────────────────

    async def try_acquire(
        self,
        user_id: int,
        holder: str | None = None,
        ttl_sec: int | None = None,
    ) -> bool:
        ok = await self.redis.set(
            self._key(user_id),
            holder or uuid.uuid4().hex,
            nx=True,
            ex=ttl_sec or self.ttl_sec,
        )
        return bool(ok)

    async def release(self, user_id: int, holder: str) -> bool:
        """Drop the lock if ``holder`` still owns it.

        A lock that expired and was re-taken by someone else is left alone.
        """
        released = await self.redis.eval(_RELEASE_SCRIPT, 1, self._key(user_id), holder)
        if not released:
            logger.warning("%s for user %s no longer held by %s", self.namespace, user_id, holder)
        return bool(released)

    async def is_locked(self, user_id: int) -> bool:
        return bool(await self.redis.exists(self._key(user_id)))

    async def holder(self, user_id: int) -> Optional[str]:
        value = await self.redis.get(self._key(user_id))
        if isinstance(value, bytes):
            value = value.decode()
        return value

    async def clear_all_locks(self, user_id: int) -> None:
        """Recovery hook: drop the user's lock regardless of holder."""
        await self.redis.delete(self._key(user_id))
        logger.info("Cleared %s for user %s", self.namespace, user_id)

    # ── multi lock ───────────────────────────────────────────

    async def acquire_many(
        self,
        user_ids: Iterable[int],
        holder: str | None = None,
        ttl_sec: int | None = None,
    ) -> Optional[int]:
        """Acquire every lock or none.

        Returns ``None`` on success, otherwise the id of the first user
        whose lock was already held.
        """
        holder = holder or uuid.uuid4().hex
        acquired: List[int] = []
        for uid in sorted(set(user_ids)):
            if not await self.try_acquire(uid, holder, ttl_sec):
                for held in reversed(acquired):
                    await self.release(held, holder)
                logger.debug("%s busy for user %s (holder=%s)", self.namespace, uid, holder)
                return uid
            acquired.append(uid)
        return None

    async def release_many(self, user_ids: Iterable[int], holder: str) -> None:
        for uid in sorted(set(user_ids), reverse=True):
            await self.release(uid, holder)

    async def with_lock(
        self,
        user_ids: Iterable[int],
        action: Callable[[], Awaitable[Any]],
        ttl_sec: int | None = None,
    ) -> LockOutcome:
        """Run ``action`` only while every listed user is locked by us."""
        ids = sorted(set(user_ids))
        holder = uuid.uuid4().hex
        blocked = await self.acquire_many(ids, holder=holder, ttl_sec=ttl_sec)
        if blocked is not None:
            return LockOutcome(acquired=False, blocked_by=blocked)
        try:
            return LockOutcome(acquired=True, value=await action())
        finally:
            await self.release_many(ids, holder)
