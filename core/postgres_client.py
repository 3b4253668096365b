"""
PostgreSQL Client Wrapper

Async PostgreSQL access built on an asyncpg connection pool.
Provides the query/query_row/execute surface repositories are written against.

Usage:
    from core.postgres_client import PostgresClientWrapper

    db = PostgresClientWrapper("performance_service")
    await db.connect()

    async with db:
        rows = await db.query("SELECT * FROM performance.click_events WHERE link_id = $1", [link_id])
"""

import logging
from typing import Any, Dict, List, Optional

import asyncpg

from core.config import InfraConfig

logger = logging.getLogger(__name__)


class PostgresClientWrapper:
    """
    PostgreSQL client wrapper around an asyncpg pool.

    - Lazy pool creation from InfraConfig
    - Rows returned as plain dicts
    - ``execute`` returns the affected row count
    """

    def __init__(
        self,
        service_name: str,
        config: Optional[InfraConfig] = None,
        pool: Optional[asyncpg.Pool] = None,
    ):
        """
        Initialize PostgreSQL client wrapper.

        Args:
            service_name: Name of the service using this client
            config: Infrastructure configuration (defaults to environment)
            pool: Pre-built pool (tests inject a fake here)
        """
        self.service_name = service_name
        self.config = config or InfraConfig.from_env()
        self._pool = pool

    async def connect(self) -> None:
        """Create the connection pool if needed"""
        if self._pool is not None:
            return
        logger.info(
            f"[{self.service_name}] Connecting to PostgreSQL at "
            f"{self.config.postgres_host}:{self.config.postgres_port}"
        )
        self._pool = await asyncpg.create_pool(
            dsn=self.config.postgres_dsn,
            min_size=self.config.postgres_min_pool,
            max_size=self.config.postgres_max_pool,
        )

    async def close(self) -> None:
        """Close the connection pool"""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info(f"[{self.service_name}] PostgreSQL pool closed")

    async def __aenter__(self) -> "PostgresClientWrapper":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        # Pool stays open across requests; closed explicitly on shutdown
        return None

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("PostgreSQL pool not initialized. Call connect() first.")
        return self._pool

    async def query(self, sql: str, params: Optional[List[Any]] = None) -> List[Dict[str, Any]]:
        """Run a statement and return all rows as dicts"""
        async with self.pool.acquire() as conn:
            records = await conn.fetch(sql, *(params or []))
        return [dict(record) for record in records]

    async def query_row(self, sql: str, params: Optional[List[Any]] = None) -> Optional[Dict[str, Any]]:
        """Run a statement and return the first row, if any"""
        async with self.pool.acquire() as conn:
            record = await conn.fetchrow(sql, *(params or []))
        return dict(record) if record is not None else None

    async def execute(self, sql: str, params: Optional[List[Any]] = None) -> int:
        """Run a statement and return the affected row count"""
        async with self.pool.acquire() as conn:
            status = await conn.execute(sql, *(params or []))
        # asyncpg status strings look like "UPDATE 1" / "INSERT 0 1"
        try:
            return int(status.split()[-1])
        except (ValueError, IndexError):
            return 0

    async def execute_batch(self, operations: List[Dict[str, Any]]) -> int:
        """
        Run statements in one transaction.

        Args:
            operations: List of {'sql': str, 'params': List} dictionaries

        Returns:
            Total affected row count; nothing is applied if any statement fails
        """
        total = 0
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                for op in operations:
                    status = await conn.execute(op["sql"], *(op.get("params") or []))
                    try:
                        total += int(status.split()[-1])
                    except (ValueError, IndexError):
                        pass
        return total

    async def health_check(self) -> bool:
        try:
            row = await self.query_row("SELECT 1 AS healthy")
            return row is not None
        except Exception as e:
            logger.error(f"[{self.service_name}] Health check failed: {e}")
            return False


__all__ = ["PostgresClientWrapper"]
