"""
Account age from platform snowflake ids.

User ids are Discord-style snowflakes: the top 42 bits hold milliseconds
since the platform epoch (2015-01-01T00:00:00Z), so an account's creation
time can be recovered from its id without any lookup.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

PLATFORM_EPOCH_MS = 1420070400000
_TIMESTAMP_SHIFT = 22


def account_created_at(user_id: int) -> datetime:
    created_ms = (user_id >> _TIMESTAMP_SHIFT) + PLATFORM_EPOCH_MS
    return datetime.fromtimestamp(created_ms / 1000, tz=timezone.utc)


def account_age_days(user_id: int, now: Optional[datetime] = None) -> float:
    """Fractional days between the id's embedded timestamp and ``now``."""
    now = now or datetime.now(timezone.utc)
    return (now - account_created_at(user_id)).total_seconds() / 86400


def snowflake_for(created_at: datetime, sequence: int = 0) -> int:
    """Build a snowflake whose embedded timestamp is ``created_at``.

    ``sequence`` fills the low 22 bits so several ids can share a creation
    instant (seeding, fixtures).
    """
    created_ms = int(created_at.timestamp() * 1000)
    return ((created_ms - PLATFORM_EPOCH_MS) << _TIMESTAMP_SHIFT) | (sequence & ((1 << _TIMESTAMP_SHIFT) - 1))
