"""
Shared fixtures: an in-memory Redis, inventory and relationship store,
plus a fully wired orchestrator over them.
"""

from types import SimpleNamespace

import pytest

from fakes import FakeRedis, InMemoryInventory, InMemoryRelationshipStore
from factories import live_user_id
from trade_engine.core.fraud_gate import FraudGate
from trade_engine.core.graph_builder import NetworkGraphBuilder
from trade_engine.core.lock_manager import LockManager
from trade_engine.core.orchestrator import TradeOrchestrator
from trade_engine.core.session_store import TradeSessionStore
from trade_engine.detection.relationship_aggregator import RelationshipAggregator
from trade_engine.features.trade_evolution import TradeEvolutionChecker
from trade_engine.features.trade_value import TradeValueCalculator
from trade_engine.models.trade import TokenType


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def inventory():
    return InMemoryInventory()


@pytest.fixture
def relationships():
    return InMemoryRelationshipStore()


@pytest.fixture
def session_store(fake_redis):
    return TradeSessionStore(fake_redis)


@pytest.fixture
def trade_locks(fake_redis):
    return LockManager(fake_redis, "trade_lock", 420)


@pytest.fixture
def op_locks(fake_redis):
    return LockManager(fake_redis, "trade_op_lock", 30)


@pytest.fixture
def graph_builder(relationships, fake_redis):
    return NetworkGraphBuilder(relationships, fake_redis)


@pytest.fixture
def fraud_gate(relationships, graph_builder):
    return FraudGate(relationships, graph_builder, network_check=True)


@pytest.fixture
def events():
    return []


@pytest.fixture
def orchestrator(session_store, trade_locks, op_locks, inventory, fraud_gate, relationships, events):
    async def _collect(event):
        events.append(event)

    return TradeOrchestrator(
        store=session_store,
        trade_locks=trade_locks,
        op_locks=op_locks,
        inventory=inventory,
        fraud_gate=fraud_gate,
        aggregator=RelationshipAggregator(relationships, TradeValueCalculator(inventory)),
        evolution_checker=TradeEvolutionChecker(inventory),
        event_callback=_collect,
    )


@pytest.fixture
def players(inventory):
    """Three established accounts with credits, tokens and two assets each."""
    alice, bob, carol = (live_user_id(400, seq) for seq in (1, 2, 3))
    for uid in (alice, bob, carol):
        inventory.add_user(uid, credits=10_000, tokens={TokenType.FIRE: 5})
    inventory.add_asset(101, alice, species="kadabra", value=4_000.0)
    inventory.add_asset(102, alice, species="eevee", value=1_500.0)
    inventory.add_asset(201, bob, species="onix", value=2_000.0, held_item="metal-coat")
    inventory.add_asset(202, bob, species="pikachu", value=1_000.0, tradable=False)
    inventory.add_asset(301, carol, species="gastly", value=800.0)
    return SimpleNamespace(alice=alice, bob=bob, carol=carol)
