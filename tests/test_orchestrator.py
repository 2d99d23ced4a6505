"""End-to-end tests of the trade orchestrator over in-memory backends."""

import asyncio

import pytest

from factories import relationship
from trade_engine.core.exceptions import TradeResultCode
from trade_engine.core.fraud_gate import BLOCK_MESSAGE
from trade_engine.core.orchestrator import TradeOrchestrator
from trade_engine.core.session_store import SESSION_PREFIX
from trade_engine.models.trade import (
    AssetEntry,
    CurrencyEntry,
    TokenEntry,
    TokenType,
    TradeStatus,
)


async def _start(orchestrator, a, b) -> str:
    result = await orchestrator.create_session(a, b)
    assert result.code == TradeResultCode.OK, result.message
    return result.session_id


async def _offer(orchestrator, sid, uid, entry):
    result = await orchestrator.add_entry(sid, uid, entry)
    assert result.code == TradeResultCode.OK, result.message
    return result


async def _both_confirm(orchestrator, sid, first, second):
    waiting = await orchestrator.set_confirmation(sid, first)
    assert waiting.code == TradeResultCode.STILL_WAITING
    return await orchestrator.set_confirmation(sid, second)


class TestCreateSession:
    @pytest.mark.asyncio
    async def test_start_locks_both_players(self, orchestrator, players, trade_locks, events):
        sid = await _start(orchestrator, players.alice, players.bob)
        assert await trade_locks.holder(players.alice) == sid
        assert await trade_locks.holder(players.bob) == sid
        assert events[0]["type"] == "trade_started"

    @pytest.mark.asyncio
    async def test_cannot_trade_with_self(self, orchestrator, players):
        result = await orchestrator.create_session(players.alice, players.alice)
        assert result.code == TradeResultCode.VALIDATION_FAILED
        assert result.success is False

    @pytest.mark.asyncio
    async def test_unknown_player_rejected(self, orchestrator, players):
        result = await orchestrator.create_session(players.alice, 12345)
        assert result.code == TradeResultCode.VALIDATION_FAILED

    @pytest.mark.asyncio
    async def test_player_in_active_trade_conflicts(self, orchestrator, players):
        sid = await _start(orchestrator, players.alice, players.bob)
        result = await orchestrator.create_session(players.carol, players.alice)
        assert result.code == TradeResultCode.CONFLICT
        assert result.session_id == sid
        assert result.retryable is True

    @pytest.mark.asyncio
    async def test_stale_lock_blocks_without_partial_locking(self, orchestrator, players, trade_locks):
        await trade_locks.try_acquire(players.carol, "ghost")
        result = await orchestrator.create_session(players.bob, players.carol)
        assert result.code == TradeResultCode.CONFLICT
        assert not await trade_locks.is_locked(players.bob)


class TestEntries:
    @pytest.mark.asyncio
    async def test_holdings_are_checked(self, orchestrator, players):
        sid = await _start(orchestrator, players.alice, players.bob)
        cases = [
            AssetEntry(owner_id=players.alice, asset_ref=201),
            CurrencyEntry(owner_id=players.alice, amount=10_001),
        ]
        for entry in cases:
            result = await orchestrator.add_entry(sid, players.alice, entry)
            assert result.code == TradeResultCode.VALIDATION_FAILED

        untradable = await orchestrator.add_entry(sid, players.bob, AssetEntry(owner_id=players.bob, asset_ref=202))
        assert untradable.code == TradeResultCode.VALIDATION_FAILED

    @pytest.mark.asyncio
    async def test_token_check_counts_tokens_already_offered(self, orchestrator, players):
        sid = await _start(orchestrator, players.alice, players.bob)
        await _offer(orchestrator, sid, players.alice, TokenEntry(owner_id=players.alice, token_type=TokenType.FIRE, count=4))
        result = await orchestrator.add_entry(
            sid, players.alice, TokenEntry(owner_id=players.alice, token_type=TokenType.FIRE, count=2),
        )
        assert result.code == TradeResultCode.VALIDATION_FAILED

    @pytest.mark.asyncio
    async def test_outsider_cannot_touch_trade(self, orchestrator, players):
        sid = await _start(orchestrator, players.alice, players.bob)
        result = await orchestrator.add_entry(sid, players.carol, CurrencyEntry(owner_id=players.carol, amount=1))
        assert result.code == TradeResultCode.VALIDATION_FAILED

    @pytest.mark.asyncio
    async def test_change_after_confirm_resets_confirmations(self, orchestrator, players):
        sid = await _start(orchestrator, players.alice, players.bob)
        await _offer(orchestrator, sid, players.alice, CurrencyEntry(owner_id=players.alice, amount=100))
        await orchestrator.set_confirmation(sid, players.alice)

        result = await _offer(orchestrator, sid, players.bob, AssetEntry(owner_id=players.bob, asset_ref=201))
        assert result.session.status == TradeStatus.ACTIVE
        assert not any(result.session.confirmations.values())

    @pytest.mark.asyncio
    async def test_remove_entry(self, orchestrator, players):
        sid = await _start(orchestrator, players.alice, players.bob)
        await _offer(orchestrator, sid, players.alice, AssetEntry(owner_id=players.alice, asset_ref=101))
        result = await orchestrator.remove_entry(sid, players.alice, AssetEntry(owner_id=players.alice, asset_ref=101))
        assert result.code == TradeResultCode.OK
        assert result.session.entries == []


class TestConfirmAndExecute:
    @pytest.mark.asyncio
    async def test_completed_trade_moves_everything(self, orchestrator, players, inventory, trade_locks, events):
        credits_before, tokens_before = inventory.total_credits(), inventory.total_tokens()
        sid = await _start(orchestrator, players.alice, players.bob)
        await _offer(orchestrator, sid, players.alice, AssetEntry(owner_id=players.alice, asset_ref=101))
        await _offer(orchestrator, sid, players.alice, CurrencyEntry(owner_id=players.alice, amount=500))
        await _offer(orchestrator, sid, players.bob, AssetEntry(owner_id=players.bob, asset_ref=201))
        await _offer(orchestrator, sid, players.bob, TokenEntry(owner_id=players.bob, token_type=TokenType.FIRE, count=2))

        result = await _both_confirm(orchestrator, sid, players.alice, players.bob)

        assert result.code == TradeResultCode.COMPLETED
        assert result.session.status == TradeStatus.COMPLETED
        assert inventory.assets[101].owner_id == players.bob
        assert inventory.assets[201].owner_id == players.alice
        assert inventory.credits[players.alice] == 9_500
        assert inventory.credits[players.bob] == 10_500
        assert await inventory.token_balance(players.alice, TokenType.FIRE) == 7
        assert await inventory.token_balance(players.bob, TokenType.FIRE) == 3
        assert inventory.total_credits() == credits_before
        assert inventory.total_tokens() == tokens_before

        assert not await trade_locks.is_locked(players.alice)
        assert not await trade_locks.is_locked(players.bob)
        assert events[-1]["type"] == "trade_completed"

    @pytest.mark.asyncio
    async def test_completed_trade_reports_evolutions(self, orchestrator, players):
        sid = await _start(orchestrator, players.alice, players.bob)
        await _offer(orchestrator, sid, players.alice, AssetEntry(owner_id=players.alice, asset_ref=101))
        await _offer(orchestrator, sid, players.bob, AssetEntry(owner_id=players.bob, asset_ref=201))

        result = await _both_confirm(orchestrator, sid, players.bob, players.alice)
        evolved = {(e.species, e.evolves_to, e.new_owner_id) for e in result.evolutions}
        assert evolved == {
            ("kadabra", "alakazam", players.bob),
            ("onix", "steelix", players.alice),
        }

    @pytest.mark.asyncio
    async def test_completed_trade_updates_relationship(self, orchestrator, players, relationships):
        sid = await _start(orchestrator, players.alice, players.bob)
        await _offer(orchestrator, sid, players.alice, CurrencyEntry(owner_id=players.alice, amount=3_000))
        await _offer(orchestrator, sid, players.bob, AssetEntry(owner_id=players.bob, asset_ref=201))
        await _both_confirm(orchestrator, sid, players.alice, players.bob)

        rel = await relationships.get(players.alice, players.bob)
        assert rel.total_trades == 1
        assert rel.given_by(players.alice) == 3_000
        assert rel.given_by(players.bob) == 2_000
        assert rel.value_imbalance_ratio == 1.5
        assert rel.balanced_trades == 1

    @pytest.mark.asyncio
    async def test_repeated_confirm_is_idempotent(self, orchestrator, players):
        sid = await _start(orchestrator, players.alice, players.bob)
        await _offer(orchestrator, sid, players.alice, CurrencyEntry(owner_id=players.alice, amount=100))
        first = await orchestrator.set_confirmation(sid, players.alice)
        second = await orchestrator.set_confirmation(sid, players.alice)
        assert first.code == second.code == TradeResultCode.STILL_WAITING
        assert second.session.status == TradeStatus.PENDING_CONFIRMATION

    @pytest.mark.asyncio
    async def test_withdrawn_confirmation(self, orchestrator, players):
        sid = await _start(orchestrator, players.alice, players.bob)
        await _offer(orchestrator, sid, players.alice, CurrencyEntry(owner_id=players.alice, amount=100))
        await orchestrator.set_confirmation(sid, players.alice)
        result = await orchestrator.set_confirmation(sid, players.alice, confirmed=False)
        assert result.code == TradeResultCode.OK
        assert result.session.status == TradeStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_concurrent_final_confirms_execute_once(self, orchestrator, players, inventory):
        sid = await _start(orchestrator, players.alice, players.bob)
        await _offer(orchestrator, sid, players.alice, CurrencyEntry(owner_id=players.alice, amount=1_000))
        await orchestrator.set_confirmation(sid, players.alice)

        results = await asyncio.gather(
            orchestrator.set_confirmation(sid, players.bob),
            orchestrator.set_confirmation(sid, players.bob),
        )
        codes = sorted(r.code.value for r in results)
        assert codes == sorted([TradeResultCode.COMPLETED.value, TradeResultCode.CONFLICT.value])
        assert inventory.credits[players.alice] == 9_000
        assert inventory.credits[players.bob] == 11_000

    @pytest.mark.asyncio
    async def test_holdings_revalidated_at_commit(self, orchestrator, players, inventory):
        sid = await _start(orchestrator, players.alice, players.bob)
        await _offer(orchestrator, sid, players.alice, AssetEntry(owner_id=players.alice, asset_ref=102))
        inventory.assets[102].owner_id = players.carol

        result = await _both_confirm(orchestrator, sid, players.alice, players.bob)
        assert result.code == TradeResultCode.VALIDATION_FAILED
        assert result.session.status == TradeStatus.FAILED
        assert inventory.assets[102].owner_id == players.carol

    @pytest.mark.asyncio
    async def test_failed_step_is_compensated(self, orchestrator, players, inventory, relationships, trade_locks):
        inventory.fail_transfer_of = 201
        sid = await _start(orchestrator, players.alice, players.bob)
        await _offer(orchestrator, sid, players.alice, CurrencyEntry(owner_id=players.alice, amount=500))
        await _offer(orchestrator, sid, players.alice, AssetEntry(owner_id=players.alice, asset_ref=101))
        await _offer(orchestrator, sid, players.bob, AssetEntry(owner_id=players.bob, asset_ref=201))

        result = await _both_confirm(orchestrator, sid, players.alice, players.bob)

        assert result.code == TradeResultCode.EXECUTION_FAILED
        assert result.session.status == TradeStatus.FAILED
        assert inventory.credits[players.alice] == 10_000
        assert inventory.credits[players.bob] == 10_000
        assert inventory.assets[101].owner_id == players.alice
        assert inventory.assets[201].owner_id == players.bob
        assert relationships.increment_calls == 0
        assert not await trade_locks.is_locked(players.alice)

    @pytest.mark.asyncio
    async def test_aggregator_failure_does_not_fail_trade(
        self, session_store, trade_locks, op_locks, inventory, fraud_gate, players,
    ):
        class BrokenAggregator:
            async def record_completed_trade(self, session):
                raise RuntimeError("neo4j down")

        orchestrator = TradeOrchestrator(
            session_store, trade_locks, op_locks, inventory, fraud_gate, BrokenAggregator(),
        )
        sid = await _start(orchestrator, players.alice, players.bob)
        await _offer(orchestrator, sid, players.alice, CurrencyEntry(owner_id=players.alice, amount=10))
        result = await _both_confirm(orchestrator, sid, players.alice, players.bob)
        assert result.code == TradeResultCode.COMPLETED
        assert result.evolutions == []


class TestFraudGateIntegration:
    @pytest.mark.asyncio
    async def test_risky_relationship_blocks_trade(self, orchestrator, players, inventory, relationships, events):
        relationships.put(relationship(players.alice, players.bob, risk=0.9))
        sid = await _start(orchestrator, players.alice, players.bob)
        await _offer(orchestrator, sid, players.alice, AssetEntry(owner_id=players.alice, asset_ref=101))

        result = await _both_confirm(orchestrator, sid, players.alice, players.bob)

        assert result.code == TradeResultCode.FRAUD_BLOCKED
        assert result.message == BLOCK_MESSAGE
        assert result.fraud.allowed is False
        assert result.session.status == TradeStatus.FAILED
        assert inventory.assets[101].owner_id == players.alice
        assert relationships.increment_calls == 0
        assert events[-1]["type"] == "trade_failed"

    @pytest.mark.asyncio
    async def test_blocked_trade_cannot_be_confirmed_again(self, orchestrator, players, inventory, relationships):
        relationships.put(relationship(players.alice, players.bob, risk=0.9))
        sid = await _start(orchestrator, players.alice, players.bob)
        await _offer(orchestrator, sid, players.alice, AssetEntry(owner_id=players.alice, asset_ref=101))
        blocked = await _both_confirm(orchestrator, sid, players.alice, players.bob)
        assert blocked.retryable is False

        again = await orchestrator.set_confirmation(sid, players.bob)
        assert again.code == TradeResultCode.NOT_FOUND
        assert again.session.status == TradeStatus.FAILED
        assert again.retryable is False
        assert inventory.assets[101].owner_id == players.alice

    @pytest.mark.asyncio
    async def test_whitelisted_pair_passes(self, orchestrator, players, relationships):
        relationships.put(relationship(players.alice, players.bob, risk=0.9, whitelisted=True))
        sid = await _start(orchestrator, players.alice, players.bob)
        await _offer(orchestrator, sid, players.alice, CurrencyEntry(owner_id=players.alice, amount=10))
        result = await _both_confirm(orchestrator, sid, players.alice, players.bob)
        assert result.code == TradeResultCode.COMPLETED

    @pytest.mark.asyncio
    async def test_unverifiable_trade_fails_without_transfer(self, orchestrator, players, inventory, relationships):
        relationships.fail_reads = True
        sid = await _start(orchestrator, players.alice, players.bob)
        await _offer(orchestrator, sid, players.alice, CurrencyEntry(owner_id=players.alice, amount=10))

        result = await _both_confirm(orchestrator, sid, players.alice, players.bob)
        assert result.code == TradeResultCode.EXECUTION_FAILED
        assert "could not be verified" in result.message
        assert inventory.credits[players.alice] == 10_000


class TestCancelAndRecovery:
    @pytest.mark.asyncio
    async def test_cancel_releases_players(self, orchestrator, players, trade_locks):
        sid = await _start(orchestrator, players.alice, players.bob)
        result = await orchestrator.cancel_session(sid, players.bob)
        assert result.code == TradeResultCode.OK
        assert result.session.status == TradeStatus.CANCELLED
        assert not await trade_locks.is_locked(players.alice)

        await _start(orchestrator, players.alice, players.carol)

    @pytest.mark.asyncio
    async def test_cancelled_trade_rejects_changes(self, orchestrator, players):
        sid = await _start(orchestrator, players.alice, players.bob)
        await orchestrator.cancel_session(sid, players.alice)
        result = await orchestrator.add_entry(sid, players.alice, CurrencyEntry(owner_id=players.alice, amount=1))
        assert result.code == TradeResultCode.NOT_FOUND
        assert result.session.status == TradeStatus.CANCELLED
        assert "already ended" in result.message

    @pytest.mark.asyncio
    async def test_vanished_session_recovers_locks(self, orchestrator, players, fake_redis, trade_locks):
        sid = await _start(orchestrator, players.alice, players.bob)
        await fake_redis.delete(SESSION_PREFIX + sid)

        result = await orchestrator.add_entry(sid, players.alice, CurrencyEntry(owner_id=players.alice, amount=1))
        assert result.code == TradeResultCode.NOT_FOUND
        assert result.counterpart_id == players.bob
        assert not await trade_locks.is_locked(players.alice)
        assert not await trade_locks.is_locked(players.bob)

        await _start(orchestrator, players.bob, players.alice)

    @pytest.mark.asyncio
    async def test_recovery_leaves_live_session_alone(self, orchestrator, players, trade_locks):
        sid = await _start(orchestrator, players.alice, players.bob)
        result = await orchestrator.recover_orphaned_locks(players.alice)
        assert result.session_id == sid
        assert await trade_locks.holder(players.alice) == sid

    @pytest.mark.asyncio
    async def test_get_session(self, orchestrator, players):
        sid = await _start(orchestrator, players.alice, players.bob)
        assert (await orchestrator.get_session(sid)).session.session_id == sid
        assert (await orchestrator.get_session("missing")).code == TradeResultCode.NOT_FOUND
