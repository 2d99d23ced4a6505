"""
Trade command routes.

Every command returns the orchestrator's ``TradeResult``; the HTTP status
mirrors the result code so clients can branch on either.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse

from trade_engine.core.exceptions import TradeResultCode
from trade_engine.models.requests import (
    CancelTradeRequest,
    ConfirmTradeRequest,
    EntryOp,
    MutateTradeRequest,
    StartTradeRequest,
)
from trade_engine.models.results import TradeResult

logger = logging.getLogger(__name__)

router = APIRouter()

# These will be injected by main.py at startup
_orchestrator = None
_neo4j = None
_redis = None

STATUS_BY_CODE = {
    TradeResultCode.OK: 200,
    TradeResultCode.STILL_WAITING: 200,
    TradeResultCode.COMPLETED: 200,
    TradeResultCode.NOT_FOUND: 404,
    TradeResultCode.CONFLICT: 409,
    TradeResultCode.VALIDATION_FAILED: 400,
    TradeResultCode.FRAUD_BLOCKED: 403,
    TradeResultCode.EXECUTION_FAILED: 500,
}


def init_routes(orchestrator, neo4j, redis_client):
    """Called once at startup to inject shared dependencies."""
    global _orchestrator, _neo4j, _redis
    _orchestrator = orchestrator
    _neo4j = neo4j
    _redis = redis_client


def _respond(result: TradeResult) -> JSONResponse:
    return JSONResponse(
        status_code=STATUS_BY_CODE[result.code],
        content=result.model_dump(mode="json"),
    )


def _engine():
    if _orchestrator is None:
        raise HTTPException(503, "Engine not ready")
    return _orchestrator


# ── health ───────────────────────────────────────────────────

@router.get("/health")
async def health():
    neo4j_health = await _neo4j.health_check() if _neo4j else {"status": "not_initialized"}
    redis_ok = False
    if _redis is not None:
        try:
            redis_ok = bool(await _redis.ping())
        except Exception as exc:  # noqa: BLE001
            logger.warning("Redis ping failed: %s", exc)
    return {
        "status": "ok",
        "neo4j": neo4j_health,
        "redis": "healthy" if redis_ok else "unhealthy",
    }


# ── trade commands ───────────────────────────────────────────

@router.post("/trades")
async def start_trade(body: StartTradeRequest):
    return _respond(await _engine().create_session(body.player1_id, body.player2_id))


@router.get("/trades/{session_id}")
async def get_trade(session_id: str):
    return _respond(await _engine().get_session(session_id))


@router.post("/trades/{session_id}/entries")
async def mutate_trade(session_id: str, body: MutateTradeRequest):
    engine = _engine()
    if body.op == EntryOp.ADD:
        result = await engine.add_entry(session_id, body.acting_user_id, body.entry)
    else:
        result = await engine.remove_entry(session_id, body.acting_user_id, body.entry)
    return _respond(result)


@router.post("/trades/{session_id}/confirm")
async def confirm_trade(session_id: str, body: ConfirmTradeRequest):
    return _respond(await _engine().set_confirmation(session_id, body.acting_user_id, body.confirmed))


@router.post("/trades/{session_id}/cancel")
async def cancel_trade(session_id: str, body: CancelTradeRequest):
    return _respond(await _engine().cancel_session(session_id, body.acting_user_id))


@router.post("/trades/locks/{user_id}/recover")
async def recover_locks(user_id: int):
    return _respond(await _engine().recover_orphaned_locks(user_id))
