"""
FastAPI application entry-point.

Lifespan:
  startup  → connect Neo4j, Redis; setup schema; wire stores, fraud gate,
             orchestrator and pattern service into the routes
  shutdown → close connections
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from trade_engine.api.network_routes import init_network_routes, network_router
from trade_engine.api.routes import init_routes, router as api_router
from trade_engine.api.websocket import trade_feed, websocket_endpoint
from trade_engine.config import settings
from trade_engine.core.fraud_gate import FraudGate
from trade_engine.core.graph_builder import NetworkGraphBuilder
from trade_engine.core.inventory import Neo4jInventoryStore
from trade_engine.core.lock_manager import LockManager
from trade_engine.core.orchestrator import TradeOrchestrator
from trade_engine.core.relationship_store import Neo4jRelationshipStore
from trade_engine.core.session_store import TradeSessionStore
from trade_engine.detection.network_analysis import PatternDetectionService
from trade_engine.detection.relationship_aggregator import RelationshipAggregator
from trade_engine.features.trade_evolution import TradeEvolutionChecker
from trade_engine.features.trade_value import TradeValueCalculator
from trade_engine.neo4j_manager import Neo4jManager
from trade_engine.streaming.trade_events import fan_out, get_redis_client
from trade_engine.utils.cypher_queries import SCHEMA_CONSTRAINTS, SCHEMA_INDEXES

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s │ %(levelname)-7s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("🚀 Starting %s v%s", settings.APP_NAME, settings.APP_VERSION)

    # ── Neo4j ────────────────────────────────────────────────
    neo4j = Neo4jManager.get_instance()
    await neo4j.connect()
    await neo4j.setup_schema(SCHEMA_CONSTRAINTS, SCHEMA_INDEXES)

    # ── Redis ────────────────────────────────────────────────
    redis_client = await get_redis_client()

    # ── Storage ──────────────────────────────────────────────
    relationships = Neo4jRelationshipStore(neo4j)
    inventory = Neo4jInventoryStore(neo4j)
    sessions = TradeSessionStore(redis_client)
    trade_locks = LockManager(redis_client, "trade_lock", settings.TRADE_LOCK_TTL_SEC)
    op_locks = LockManager(redis_client, "trade_op_lock", settings.TRADE_OP_LOCK_TTL_SEC)

    # ── Network analysis ─────────────────────────────────────
    graph_builder = NetworkGraphBuilder(relationships, redis_client)
    patterns = PatternDetectionService(graph_builder, redis_client)
    fraud_gate = FraudGate(relationships, graph_builder)

    # ── Orchestrator ─────────────────────────────────────────
    values = TradeValueCalculator(inventory)
    orchestrator = TradeOrchestrator(
        store=sessions,
        trade_locks=trade_locks,
        op_locks=op_locks,
        inventory=inventory,
        fraud_gate=fraud_gate,
        aggregator=RelationshipAggregator(relationships, values),
        evolution_checker=TradeEvolutionChecker(inventory),
        event_callback=fan_out(redis_client, [trade_feed.publish]),
    )

    # ── Inject deps into routes ──────────────────────────────
    init_routes(orchestrator, neo4j, redis_client)
    init_network_routes(graph_builder, patterns, relationships)

    app.state.neo4j = neo4j
    app.state.redis = redis_client
    app.state.orchestrator = orchestrator
    app.state.patterns = patterns

    logger.info("✅ All systems online")
    yield

    # ── shutdown ─────────────────────────────────────────────
    logger.info("Shutting down …")
    await neo4j.close()
    await redis_client.aclose()
    logger.info("👋 Shutdown complete")


# ── App ──────────────────────────────────────────────────────

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api")
app.include_router(network_router, prefix="/api")

app.websocket("/ws/trades")(websocket_endpoint)


@app.get("/")
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
