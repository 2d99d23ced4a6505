#!/usr/bin/env python3
"""
setup_neo4j.py – Create constraints, indexes, and verify Neo4j connectivity.

Usage:
    python scripts/setup_neo4j.py
"""

import asyncio

from trade_engine.config import settings
from trade_engine.neo4j_manager import Neo4jManager
from trade_engine.utils.cypher_queries import (
    MAINT_COUNT_NODES,
    MAINT_COUNT_RELS,
    SCHEMA_CONSTRAINTS,
    SCHEMA_INDEXES,
)


async def main() -> None:
    print(f"🔗 Connecting to Neo4j at {settings.NEO4J_URI} …")
    neo4j = Neo4jManager.get_instance()
    await neo4j.connect()

    print("\n📋 Setting up schema …")
    await neo4j.setup_schema(SCHEMA_CONSTRAINTS, SCHEMA_INDEXES)

    print("\n📊 Current counts:")
    nodes = await neo4j.run_async(MAINT_COUNT_NODES)
    rels = await neo4j.run_async(MAINT_COUNT_RELS)
    for row in nodes:
        print(f"   :{row['label']}  {row['count']}")
    for row in rels:
        print(f"   [:{row['type']}]  {row['count']}")
    if not nodes:
        print("   (no nodes yet)")

    await neo4j.close()
    print("\n✅ Neo4j setup complete!")


if __name__ == "__main__":
    asyncio.run(main())
