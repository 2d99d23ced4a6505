#!/usr/bin/env python3
"""
seed_data.py – Populate Neo4j with demo players, inventories and a
month of trade relationships, including three planted fraud patterns:

  • a funnel   – six fresh accounts dumping value into one collector
  • a cluster  – four same-day accounts trading only among themselves
  • a ring     – A → B → C → A value loop completed within an hour

Usage:
    python scripts/seed_data.py                 # from project root
    python scripts/seed_data.py --clear         # wipe DB first (recommended)
"""

import argparse
import asyncio
import random
from datetime import datetime, timedelta, timezone
from typing import List

from trade_engine.config import settings
from trade_engine.core.relationship_store import Neo4jRelationshipStore
from trade_engine.detection.relationship_aggregator import score_relationship
from trade_engine.features.account_age import snowflake_for
from trade_engine.features.trade_evolution import TRADE_EVOLUTIONS
from trade_engine.models.trade import TokenType
from trade_engine.neo4j_manager import Neo4jManager
from trade_engine.utils.cypher_queries import MAINT_COUNT_NODES, SCHEMA_CONSTRAINTS, SCHEMA_INDEXES

random.seed(42)

SPECIES = ["eevee", "pikachu", "bulbasaur", "charmander", "squirtle", "gastly", *TRADE_EVOLUTIONS]


def _make_players(now: datetime) -> dict:
    honest = [snowflake_for(now - timedelta(days=random.randint(200, 1500)), i) for i in range(15)]
    funnel_sources = [snowflake_for(now - timedelta(days=random.randint(2, 10)), 100 + i) for i in range(6)]
    collector = snowflake_for(now - timedelta(days=400), 200)
    cluster_day = now - timedelta(days=5)
    cluster = [snowflake_for(cluster_day + timedelta(hours=i), 300 + i) for i in range(4)]
    ring = [snowflake_for(now - timedelta(days=3 + i), 400 + i) for i in range(3)]
    return {
        "honest": honest,
        "funnel_sources": funnel_sources,
        "collector": collector,
        "cluster": cluster,
        "ring": ring,
    }


async def _seed_users(neo4j: Neo4jManager, user_ids: List[int]) -> int:
    assets = 0
    for uid in user_ids:
        await neo4j.write_async(
            "MERGE (u:User {user_id: $uid}) SET u.credits = $credits",
            {"uid": uid, "credits": random.randint(5_000, 250_000)},
        )
        for token_type in random.sample(list(TokenType), 3):
            await neo4j.write_async(
                """
                MERGE (t:TokenBalance {user_id: $uid, token_type: $token_type})
                SET t.count = $count
                """,
                {"uid": uid, "token_type": token_type.value, "count": random.randint(1, 20)},
            )
        for _ in range(3):
            assets += 1
            await neo4j.write_async(
                """
                MATCH (u:User {user_id: $uid})
                MERGE (a:Asset {asset_ref: $ref})
                SET a.species = $species, a.value = $value, a.tradable = true
                MERGE (a)-[:OWNED_BY]->(u)
                """,
                {
                    "uid": uid,
                    "ref": assets,
                    "species": random.choice(SPECIES),
                    "value": float(random.randint(500, 20_000)),
                },
            )
    return assets


async def _trade(
    store: Neo4jRelationshipStore,
    giver: int,
    receiver: int,
    value_given: float,
    value_back: float,
    at: datetime,
) -> None:
    user1, user2 = sorted((giver, receiver))
    v1, v2 = (value_given, value_back) if giver == user1 else (value_back, value_given)
    rel = await store.increment(user1, user2, v1, v2, at)
    await store.update_risk(score_relationship(rel, at))


async def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--clear", action="store_true", help="Clear DB before seeding")
    args = parser.parse_args()

    print(f"Connecting to Neo4j at {settings.NEO4J_URI} ...")
    neo4j = Neo4jManager.get_instance()
    await neo4j.connect()
    store = Neo4jRelationshipStore(neo4j)
    now = datetime.now(timezone.utc)

    if args.clear:
        print("Clearing ALL data from database ...")
        await neo4j.clear_database()

    await neo4j.setup_schema(SCHEMA_CONSTRAINTS, SCHEMA_INDEXES)

    players = _make_players(now)
    everyone = [uid for group in players.values() for uid in (group if isinstance(group, list) else [group])]
    print(f"Creating {len(everyone)} players ...")
    assets = await _seed_users(neo4j, everyone)
    print(f"   {assets} assets created\n")

    # -- Normal trading between established players --
    honest = players["honest"]
    normal = 0
    for _ in range(120):
        a, b = random.sample(honest, 2)
        value = random.uniform(1_000, 30_000)
        await _trade(store, a, b, value, value * random.uniform(0.7, 1.3),
                     now - timedelta(days=random.uniform(0, 29)))
        normal += 1

    # -- Pattern 1: funnel into the collector --
    for src in players["funnel_sources"]:
        for i in range(3):
            await _trade(store, src, players["collector"], random.uniform(30_000, 45_000), 1_000.0,
                         now - timedelta(hours=20 - i))

    # -- Pattern 2: closed same-day cluster --
    cluster = players["cluster"]
    for i, a in enumerate(cluster):
        for b in cluster[i + 1:]:
            for _ in range(12):
                await _trade(store, a, b, random.uniform(5_000, 9_000), 500.0,
                             now - timedelta(hours=random.uniform(1, 40)))

    # -- Pattern 3: rapid ring --
    ring = players["ring"]
    start = now - timedelta(hours=2)
    for i, giver in enumerate(ring):
        receiver = ring[(i + 1) % len(ring)]
        for j in range(15):
            await _trade(store, giver, receiver, 60_000.0, 2_000.0, start + timedelta(minutes=4 * i + j))

    print(f"   Normal trades: {normal}  |  planted patterns: funnel, cluster, ring\n")

    print("Final node counts:")
    for row in await neo4j.run_async(MAINT_COUNT_NODES):
        print(f"   {row['label']}: {row['count']}")

    await neo4j.close()
    print("\nSeed data complete!")


if __name__ == "__main__":
    asyncio.run(main())
