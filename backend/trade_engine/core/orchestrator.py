"""
Trade orchestrator – the command surface of the trade engine.

  start ─▶ add/remove entries ─▶ confirm ×2 ─▶ fraud gate ─▶ execute
                                      │                         │
                                   cancel               completed / failed

Locking
───────
trade_lock:{user}     held by a session from creation until it ends
trade_op_lock:{user}  held by one mutating call; every mutation takes
                      both participants' op locks in ascending id order

Every public method returns a ``TradeResult``; expected failures never
escape as exceptions. Execution applies each transfer step with an undo
entry and compensates in reverse order if any step fails.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional

from trade_engine.core.exceptions import (
    SessionEnded,
    SessionNotFound,
    TradeConflict,
    TradeError,
    TradeResultCode,
    TradeValidationError,
)
from trade_engine.core.fraud_gate import FraudGate
from trade_engine.core.lock_manager import LockManager
from trade_engine.core.session_store import TradeSessionStore
from trade_engine.detection.relationship_aggregator import RelationshipAggregator
from trade_engine.features.trade_evolution import TradeEvolutionChecker
from trade_engine.models.results import FraudDecision, TradeResult
from trade_engine.models.trade import (
    AssetEntry,
    CurrencyEntry,
    TokenEntry,
    TradeEntry,
    TradeSession,
)

logger = logging.getLogger(__name__)

EventCallback = Callable[[Dict[str, Any]], Awaitable[None]]
UndoStep = Callable[[], Awaitable[Any]]


class TradeOrchestrator:
    def __init__(
        self,
        store: TradeSessionStore,
        trade_locks: LockManager,
        op_locks: LockManager,
        inventory,
        fraud_gate: FraudGate,
        aggregator: RelationshipAggregator,
        evolution_checker: Optional[TradeEvolutionChecker] = None,
        event_callback: Optional[EventCallback] = None,
    ) -> None:
        self.store = store
        self.trade_locks = trade_locks
        self.op_locks = op_locks
        self.inventory = inventory
        self.fraud_gate = fraud_gate
        self.aggregator = aggregator
        self.evolutions = evolution_checker
        self.event_callback = event_callback

    # ── queries ──────────────────────────────────────────────

    async def get_session(self, session_id: str) -> TradeResult:
        session = await self.store.get(session_id)
        if session is None:
            return TradeResult(
                code=TradeResultCode.NOT_FOUND,
                message="This trade has expired or no longer exists",
                session_id=session_id,
            )
        return TradeResult(code=TradeResultCode.OK, session_id=session_id, session=session)

    # ── commands ─────────────────────────────────────────────

    async def create_session(self, player1_id: int, player2_id: int) -> TradeResult:
        if player1_id == player2_id:
            return _result(TradeValidationError("You can't trade with yourself"))
        for uid in (player1_id, player2_id):
            if not await self.inventory.user_exists(uid):
                return _result(TradeValidationError(f"User {uid} has not started playing yet"))
            existing = await self.store.active_session_for(uid)
            if existing is not None:
                return _result(
                    TradeConflict(f"User {uid} is already in an active trade"),
                    existing.session_id,
                )

        session = TradeSession(player1_id=player1_id, player2_id=player2_id)
        blocked = await self.trade_locks.acquire_many(session.participants, holder=session.session_id)
        if blocked is not None:
            return _result(TradeConflict(f"User {blocked} is already in a trade"))
        try:
            await self.store.save(session)
        except Exception:
            await self.trade_locks.release_many(session.participants, session.session_id)
            raise

        logger.info("Trade %s started: %s ↔ %s", session.session_id, player1_id, player2_id)
        await self._publish("trade_started", session)
        return TradeResult(
            code=TradeResultCode.OK,
            message="Trade started",
            session_id=session.session_id,
            session=session,
        )

    async def add_entry(self, session_id: str, user_id: int, entry: TradeEntry) -> TradeResult:
        async def _add(session: TradeSession) -> TradeResult:
            await self._check_holdings(session, user_id, entry)
            session.add_entry(user_id, entry)
            await self.store.save(session)
            await self._publish("trade_updated", session)
            return TradeResult(code=TradeResultCode.OK, session_id=session_id, session=session)

        return await self._mutate(session_id, user_id, _add)

    async def remove_entry(self, session_id: str, user_id: int, entry: TradeEntry) -> TradeResult:
        async def _remove(session: TradeSession) -> TradeResult:
            session.remove_entry(user_id, entry)
            await self.store.save(session)
            await self._publish("trade_updated", session)
            return TradeResult(code=TradeResultCode.OK, session_id=session_id, session=session)

        return await self._mutate(session_id, user_id, _remove)

    async def set_confirmation(self, session_id: str, user_id: int, confirmed: bool = True) -> TradeResult:
        async def _confirm(session: TradeSession) -> TradeResult:
            session.set_confirmation(user_id, confirmed)
            if not (confirmed and session.both_confirmed):
                await self.store.save(session)
                await self._publish("trade_confirmation", session, user_id=user_id, confirmed=confirmed)
                return TradeResult(
                    code=TradeResultCode.STILL_WAITING if confirmed else TradeResultCode.OK,
                    message=(
                        "Waiting for the other participant to confirm"
                        if confirmed else "Confirmation withdrawn"
                    ),
                    session_id=session_id,
                    session=session,
                )
            return await self._commit(session)

        return await self._mutate(session_id, user_id, _confirm)

    async def cancel_session(self, session_id: str, user_id: int) -> TradeResult:
        async def _cancel(session: TradeSession) -> TradeResult:
            session.cancel()
            await self.store.save(session)
            await self.trade_locks.release_many(session.participants, session.session_id)
            logger.info("Trade %s cancelled by %s", session_id, user_id)
            await self._publish("trade_cancelled", session, user_id=user_id)
            return TradeResult(
                code=TradeResultCode.OK,
                message="Trade cancelled",
                session_id=session_id,
                session=session,
            )

        return await self._mutate(session_id, user_id, _cancel)

    async def recover_orphaned_locks(self, user_id: int) -> TradeResult:
        """Clear trade locks left behind by a session that no longer exists."""
        entry = await self.store.user_entry(user_id)
        holder = await self.trade_locks.holder(user_id)
        session_ids = {sid for sid in (entry.get("session_id") if entry else None, holder) if sid}

        for sid in sorted(session_ids):
            session = await self.store.get(sid)
            if session is not None and not session.is_terminal:
                return TradeResult(
                    code=TradeResultCode.OK,
                    message="Trade session is still active",
                    session_id=sid,
                    session=session,
                )

        counterpart = entry.get("counterpart_id") if entry else None
        await self.trade_locks.clear_all_locks(user_id)
        await self.store.clear_user_index(user_id)
        if counterpart is not None and await self.trade_locks.holder(counterpart) in session_ids:
            await self.trade_locks.clear_all_locks(counterpart)
            for sid in session_ids:
                await self.store.drop_index_if_owned(counterpart, sid)

        logger.info("Recovered trade locks for %s (counterpart=%s)", user_id, counterpart)
        return TradeResult(
            code=TradeResultCode.OK,
            message="Trade locks cleared",
            counterpart_id=counterpart,
        )

    # ── locking & error mapping ──────────────────────────────

    async def _mutate(
        self,
        session_id: str,
        user_id: int,
        action: Callable[[TradeSession], Awaitable[TradeResult]],
    ) -> TradeResult:
        """Run ``action`` on a freshly loaded session under both op locks."""
        try:
            participants = (await self._load(session_id, user_id)).participants

            async def _locked() -> TradeResult:
                return await action(await self._load(session_id, user_id))

            outcome = await self.op_locks.with_lock(participants, _locked)
        except SessionEnded as exc:
            return TradeResult(
                code=exc.code,
                message=exc.message,
                session_id=session_id,
                session=exc.session,
            )
        except SessionNotFound as exc:
            recovery = await self.recover_orphaned_locks(user_id)
            return TradeResult(
                code=exc.code,
                message=exc.message,
                session_id=session_id,
                counterpart_id=recovery.counterpart_id,
            )
        except TradeError as exc:
            return _result(exc, session_id)

        if not outcome.acquired:
            return _result(
                TradeConflict("Another action on this trade is in progress, please try again"),
                session_id,
            )
        return outcome.value

    async def _load(self, session_id: str, user_id: int) -> TradeSession:
        session = await self.store.get(session_id)
        if session is None:
            raise SessionNotFound("This trade has expired or no longer exists")
        if not session.is_participant(user_id):
            raise TradeValidationError("You are not part of this trade")
        if session.is_terminal:
            raise SessionEnded(f"This trade has already ended ({session.status.value})", session)
        return session

    # ── commit path ──────────────────────────────────────────

    async def _commit(self, session: TradeSession) -> TradeResult:
        if not await self.store.claim_processing(session.session_id):
            raise TradeConflict("This trade is already being processed")
        session.begin_processing()
        await self.store.save(session)

        try:
            decision = await self.fraud_gate.evaluate(session)
        except Exception as exc:  # noqa: BLE001
            logger.error("Fraud check failed for trade %s: %s", session.session_id, exc)
            return await self._fail_session(
                session,
                "The trade could not be verified, no items were exchanged",
                TradeResultCode.EXECUTION_FAILED,
            )
        if not decision.allowed:
            return await self._fail_session(session, decision.message, TradeResultCode.FRAUD_BLOCKED, decision)

        try:
            await self._execute(session)
        except TradeError as exc:
            return await self._fail_session(session, exc.message, exc.code, decision)
        except Exception as exc:  # noqa: BLE001
            logger.error("Trade %s execution failed: %s", session.session_id, exc)
            return await self._fail_session(
                session,
                "The trade failed and no items were exchanged",
                TradeResultCode.EXECUTION_FAILED,
                decision,
            )

        session.mark_completed()
        await self.store.save(session)
        await self.trade_locks.release_many(session.participants, session.session_id)

        try:
            await self.aggregator.record_completed_trade(session)
        except Exception as exc:  # noqa: BLE001
            logger.error("Relationship update failed for trade %s: %s", session.session_id, exc)

        evolutions = await self.evolutions.eligible(session) if self.evolutions else []
        logger.info("✅ Trade %s completed", session.session_id)
        await self._publish("trade_completed", session, evolutions=[e.model_dump() for e in evolutions])
        return TradeResult(
            code=TradeResultCode.COMPLETED,
            message="Trade completed",
            session_id=session.session_id,
            session=session,
            evolutions=evolutions,
            fraud=decision,
        )

    async def _fail_session(
        self,
        session: TradeSession,
        message: str,
        code: TradeResultCode,
        decision: Optional[FraudDecision] = None,
    ) -> TradeResult:
        session.mark_failed(message)
        await self.store.save(session)
        await self.trade_locks.release_many(session.participants, session.session_id)
        logger.warning("Trade %s failed (%s): %s", session.session_id, code.value, message)
        await self._publish("trade_failed", session, code=code.value)
        return TradeResult(
            code=code,
            message=message,
            session_id=session.session_id,
            session=session,
            fraud=decision,
        )

    # ── execution ────────────────────────────────────────────

    async def _check_holdings(self, session: TradeSession, user_id: int, entry: TradeEntry) -> None:
        if isinstance(entry, AssetEntry):
            info = await self.inventory.asset_info(entry.asset_ref)
            if info is None or info.owner_id != user_id:
                raise TradeValidationError(f"You don't own asset {entry.asset_ref}")
            if not info.tradable:
                raise TradeValidationError(f"Asset {entry.asset_ref} cannot be traded")
        elif isinstance(entry, CurrencyEntry):
            if await self.inventory.currency_balance(user_id) < entry.amount:
                raise TradeValidationError("You don't have enough credits")
        elif isinstance(entry, TokenEntry):
            offered = session.tokens_of(user_id).get(entry.token_type, 0)
            if await self.inventory.token_balance(user_id, entry.token_type) < offered + entry.count:
                raise TradeValidationError(f"You don't have enough {entry.token_type.value} tokens")

    async def _revalidate(self, session: TradeSession) -> None:
        """Holdings can change between offer and commit; check everything again."""
        for uid in session.participants:
            for entry in session.assets_of(uid):
                info = await self.inventory.asset_info(entry.asset_ref)
                if info is None or info.owner_id != uid or not info.tradable:
                    raise TradeValidationError(f"Asset {entry.asset_ref} is no longer available from {uid}")
            if await self.inventory.currency_balance(uid) < session.currency_of(uid):
                raise TradeValidationError(f"User {uid} no longer has enough credits")
            for token_type, count in session.tokens_of(uid).items():
                if await self.inventory.token_balance(uid, token_type) < count:
                    raise TradeValidationError(f"User {uid} no longer has enough {token_type.value} tokens")

    async def _execute(self, session: TradeSession) -> None:
        await self._revalidate(session)
        undo: List[UndoStep] = []
        inv = self.inventory
        try:
            for uid in session.participants:
                other = session.counterpart_of(uid)

                amount = session.currency_of(uid)
                if amount:
                    await inv.adjust_currency(uid, -amount)
                    undo.append(partial(inv.adjust_currency, uid, amount))
                    await inv.adjust_currency(other, amount)
                    undo.append(partial(inv.adjust_currency, other, -amount))

                for token_type, count in session.tokens_of(uid).items():
                    await inv.adjust_tokens(uid, token_type, -count)
                    undo.append(partial(inv.adjust_tokens, uid, token_type, count))
                    await inv.adjust_tokens(other, token_type, count)
                    undo.append(partial(inv.adjust_tokens, other, token_type, -count))

                for entry in session.assets_of(uid):
                    await inv.transfer_asset(entry.asset_ref, uid, other)
                    undo.append(partial(inv.transfer_asset, entry.asset_ref, other, uid))
        except Exception:
            await self._compensate(session.session_id, undo)
            raise

    async def _compensate(self, session_id: str, undo: List[UndoStep]) -> None:
        for step in reversed(undo):
            try:
                await step()
            except Exception as exc:  # noqa: BLE001
                logger.error("Compensation step failed for trade %s: %s", session_id, exc)
        if undo:
            logger.warning("Rolled back %d transfer steps for trade %s", len(undo), session_id)

    # ── events ───────────────────────────────────────────────

    async def _publish(self, event_type: str, session: TradeSession, **extra: Any) -> None:
        if self.event_callback is None:
            return
        event = {
            "type": event_type,
            "session_id": session.session_id,
            "status": session.status.value,
            "participants": session.participants,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **extra,
        }
        try:
            await self.event_callback(event)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Trade event %s not delivered: %s", event_type, exc)


def _result(exc: TradeError, session_id: Optional[str] = None) -> TradeResult:
    return TradeResult(code=exc.code, message=exc.message, session_id=session_id)
