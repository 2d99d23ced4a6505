"""
Neo4j database manager.

Async driver pool shared by the relationship store, the inventory store
and the maintenance scripts, with schema bootstrap and health-check support.
"""

import logging
from typing import Any, Dict, List, Optional

from neo4j import AsyncDriver, AsyncGraphDatabase, AsyncManagedTransaction
from neo4j.exceptions import AuthError, ServiceUnavailable

from trade_engine.config import settings

logger = logging.getLogger(__name__)


class Neo4jManager:
    """Singleton wrapper around the async Neo4j driver."""

    _instance: Optional["Neo4jManager"] = None

    def __init__(self) -> None:
        self._driver: Optional[AsyncDriver] = None

    # ── singleton ────────────────────────────────────────────

    @classmethod
    def get_instance(cls) -> "Neo4jManager":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    # ── lifecycle ────────────────────────────────────────────

    async def connect(self) -> None:
        try:
            self._driver = AsyncGraphDatabase.driver(
                settings.NEO4J_URI,
                auth=(settings.NEO4J_USER, settings.NEO4J_PASSWORD),
                max_connection_pool_size=settings.NEO4J_MAX_POOL_SIZE,
            )
            await self._driver.verify_connectivity()
            logger.info("✅ Neo4j connected at %s", settings.NEO4J_URI)
        except (ServiceUnavailable, AuthError) as exc:
            logger.error("❌ Neo4j connection failed: %s", exc)
            raise

    async def close(self) -> None:
        if self._driver:
            await self._driver.close()
            self._driver = None
        logger.info("Neo4j driver closed")

    # ── queries ──────────────────────────────────────────────

    async def run_async(self, query: str, params: Dict[str, Any] | None = None) -> List[Dict]:
        async with self._driver.session(database=settings.NEO4J_DATABASE) as session:
            result = await session.run(query, params or {})
            return [record.data() async for record in result]

    async def write_async(self, query: str, params: Dict[str, Any] | None = None) -> List[Dict]:
        """Run ``query`` inside a managed (retried) write transaction."""
        async with self._driver.session(database=settings.NEO4J_DATABASE) as session:
            async def _work(tx: AsyncManagedTransaction):
                res = await tx.run(query, params or {})
                return [record.data() async for record in res]
            return await session.execute_write(_work)

    async def read_async(self, query: str, params: Dict[str, Any] | None = None) -> List[Dict]:
        async with self._driver.session(database=settings.NEO4J_DATABASE) as session:
            async def _work(tx: AsyncManagedTransaction):
                res = await tx.run(query, params or {})
                return [record.data() async for record in res]
            return await session.execute_read(_work)

    # ── schema management ────────────────────────────────────

    async def setup_schema(self, constraints: List[str], indexes: List[str]) -> None:
        for stmt in constraints + indexes:
            try:
                await self.run_async(stmt)
                logger.info("  ✔ %s", stmt[:70])
            except Exception as exc:          # noqa: BLE001
                logger.warning("  ⚠ %s – %s", stmt[:50], exc)
        logger.info("✅ Schema setup complete")

    async def clear_database(self) -> None:
        await self.run_async("MATCH (n) DETACH DELETE n")
        logger.warning("⚠️  All data deleted from Neo4j")

    # ── health check ─────────────────────────────────────────

    async def health_check(self) -> Dict:
        try:
            await self.run_async("RETURN 1 AS ok")
            counts = await self.run_async(
                "MATCH (n) RETURN labels(n)[0] AS label, count(n) AS cnt"
            )
            return {
                "status": "healthy",
                "nodes": {r["label"]: r["cnt"] for r in counts if r["label"]},
            }
        except Exception as exc:  # noqa: BLE001
            return {"status": "unhealthy", "error": str(exc)}
