"""
WebSocket feed of trade lifecycle events.

  ws://<host>/ws/trades                 every event (dashboards)
  ws://<host>/ws/trades?user_id=<id>    only trades that user takes part in

Orchestrator events are validated into ``TradeEvent`` before they are
sent, so every subscriber sees one payload shape.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from trade_engine.streaming.trade_events import TradeEvent

logger = logging.getLogger(__name__)


class TradeFeed:
    """Sockets keyed to the participant they follow (``None`` follows all)."""

    def __init__(self) -> None:
        self._subscribers: Dict[WebSocket, Optional[int]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, ws: WebSocket, user_id: Optional[int] = None) -> None:
        await ws.accept()
        async with self._lock:
            self._subscribers[ws] = user_id
        logger.info("Trade feed subscriber for %s (%d total)", user_id or "all", len(self._subscribers))

    async def disconnect(self, ws: WebSocket) -> None:
        async with self._lock:
            self._subscribers.pop(ws, None)

    async def publish(self, event: Dict[str, Any]) -> int:
        """Deliver one orchestrator event; returns how many sockets got it."""
        try:
            parsed = TradeEvent.model_validate(event)
        except ValidationError as exc:
            logger.warning("Dropping malformed trade event: %s", exc)
            return 0

        payload = parsed.model_dump_json()
        async with self._lock:
            targets = [
                ws for ws, user_id in self._subscribers.items()
                if user_id is None or parsed.concerns(user_id)
            ]

        delivered = 0
        stale: List[WebSocket] = []
        for ws in targets:
            try:
                await ws.send_text(payload)
                delivered += 1
            except Exception as exc:  # noqa: BLE001
                logger.debug("Dropping trade feed subscriber: %s", exc)
                stale.append(ws)
        if stale:
            async with self._lock:
                for ws in stale:
                    self._subscribers.pop(ws, None)
        return delivered

    def subscriber_count(self, user_id: Optional[int] = None) -> int:
        if user_id is None:
            return len(self._subscribers)
        return sum(1 for followed in self._subscribers.values() if followed == user_id)


trade_feed = TradeFeed()


async def websocket_endpoint(ws: WebSocket, user_id: Optional[int] = None) -> None:
    await trade_feed.connect(ws, user_id)
    try:
        while True:
            await ws.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await trade_feed.disconnect(ws)
