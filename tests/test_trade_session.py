"""Tests for the trade session state machine."""

import pytest

from trade_engine.core.exceptions import TradeConflict, TradeValidationError
from trade_engine.models.trade import (
    AssetEntry,
    CurrencyEntry,
    TokenEntry,
    TokenType,
    TradeSession,
    TradeStatus,
)


@pytest.fixture
def session():
    return TradeSession(player1_id=1, player2_id=2)


class TestEntries:
    def test_new_session_is_active_and_unconfirmed(self, session):
        assert session.status == TradeStatus.ACTIVE
        assert session.confirmations == {1: False, 2: False}

    def test_duplicate_asset_conflicts(self, session):
        session.add_entry(1, AssetEntry(owner_id=1, asset_ref=9))
        with pytest.raises(TradeConflict):
            session.add_entry(1, AssetEntry(owner_id=1, asset_ref=9))

    def test_cannot_offer_someone_elses_items(self, session):
        with pytest.raises(TradeValidationError):
            session.add_entry(1, CurrencyEntry(owner_id=2, amount=10))

    def test_outsider_rejected(self, session):
        with pytest.raises(TradeValidationError):
            session.add_entry(3, CurrencyEntry(owner_id=3, amount=10))

    def test_currency_replaces_and_tokens_merge(self, session):
        session.add_entry(1, CurrencyEntry(owner_id=1, amount=100))
        session.add_entry(1, CurrencyEntry(owner_id=1, amount=250))
        session.add_entry(1, TokenEntry(owner_id=1, token_type=TokenType.FIRE, count=2))
        session.add_entry(1, TokenEntry(owner_id=1, token_type=TokenType.FIRE, count=3))
        assert session.currency_of(1) == 250
        assert session.tokens_of(1) == {TokenType.FIRE: 5}
        assert len(session.entries) == 2

    def test_remove_reduces_then_drops(self, session):
        session.add_entry(2, TokenEntry(owner_id=2, token_type=TokenType.ICE, count=4))
        session.remove_entry(2, TokenEntry(owner_id=2, token_type=TokenType.ICE, count=1))
        assert session.tokens_of(2) == {TokenType.ICE: 3}
        session.remove_entry(2, TokenEntry(owner_id=2, token_type=TokenType.ICE, count=3))
        assert session.entries == []

    def test_remove_missing_asset_fails(self, session):
        with pytest.raises(TradeValidationError):
            session.remove_entry(1, AssetEntry(owner_id=1, asset_ref=1))


class TestConfirmation:
    def test_cannot_confirm_empty_trade(self, session):
        with pytest.raises(TradeValidationError):
            session.set_confirmation(1)

    def test_one_confirmation_moves_to_pending(self, session):
        session.add_entry(1, CurrencyEntry(owner_id=1, amount=5))
        assert session.set_confirmation(1) == TradeStatus.PENDING_CONFIRMATION
        assert not session.both_confirmed

    def test_any_entry_change_resets_confirmations(self, session):
        session.add_entry(1, CurrencyEntry(owner_id=1, amount=5))
        session.set_confirmation(1)
        session.set_confirmation(2)
        assert session.both_confirmed

        session.add_entry(2, TokenEntry(owner_id=2, token_type=TokenType.DARK, count=1))
        assert session.confirmations == {1: False, 2: False}
        assert session.status == TradeStatus.ACTIVE

    def test_withdrawing_last_confirmation_returns_to_active(self, session):
        session.add_entry(1, CurrencyEntry(owner_id=1, amount=5))
        session.set_confirmation(1)
        assert session.set_confirmation(1, confirmed=False) == TradeStatus.ACTIVE


class TestLifecycle:
    def _ready(self, session):
        session.add_entry(1, CurrencyEntry(owner_id=1, amount=5))
        session.set_confirmation(1)
        session.set_confirmation(2)
        return session

    def test_begin_processing_is_check_and_set(self, session):
        self._ready(session).begin_processing()
        assert session.status == TradeStatus.PROCESSING
        with pytest.raises(TradeConflict):
            session.begin_processing()

    def test_processing_requires_both_confirmations(self, session):
        session.add_entry(1, CurrencyEntry(owner_id=1, amount=5))
        session.set_confirmation(1)
        with pytest.raises(TradeConflict):
            session.begin_processing()

    def test_processing_session_rejects_mutation_and_cancel(self, session):
        self._ready(session).begin_processing()
        with pytest.raises(TradeConflict):
            session.add_entry(1, CurrencyEntry(owner_id=1, amount=1))
        with pytest.raises(TradeConflict):
            session.cancel()

    def test_terminal_states_are_final(self, session):
        self._ready(session).begin_processing()
        session.mark_failed("fraud")
        assert session.is_terminal
        assert session.failure_reason == "fraud"
        with pytest.raises(TradeConflict):
            session.mark_completed()
        with pytest.raises(TradeConflict):
            session.cancel()

    def test_cancel_from_active(self, session):
        session.cancel()
        assert session.status == TradeStatus.CANCELLED

    def test_json_round_trip_keeps_int_keys(self, session):
        self._ready(session)
        restored = TradeSession.model_validate_json(session.model_dump_json())
        assert restored.confirmations == {1: True, 2: True}
        assert isinstance(restored.entries[0], CurrencyEntry)
