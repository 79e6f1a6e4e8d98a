"""
Database Module - PostgreSQL Pool
=================================
AsyncPG connection pool used by the Postgres entitlement backend.

The pool is an explicit object owned by the app lifespan: construct it,
`await initialize()` on startup and `await close()` on shutdown.

pip install asyncpg
"""

from contextlib import asynccontextmanager
from typing import Optional

import asyncpg
import structlog


MIGRATIONS = [
    # Users table: created by registration, premium flipped by webhooks
    """
    CREATE TABLE IF NOT EXISTS users (
        user_id VARCHAR(255) PRIMARY KEY,
        username VARCHAR(255),
        premium BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_users_premium ON users(premium)",
]


class Database:
    """Async database connection pool manager"""

    def __init__(self, dsn: str, min_size: int = 1, max_size: int = 10):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self._pool: Optional[asyncpg.Pool] = None
        self._logger = structlog.get_logger().bind(component="database")

    async def initialize(self, run_migrations: bool = True):
        """Initialize the connection pool"""
        if self._pool is not None:
            return

        try:
            self._pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
            )
        except (OSError, asyncpg.PostgresError) as e:
            self._logger.error("database_init_failed", error=str(e))
            raise

        self._logger.info("database_pool_initialized",
                          min_size=self.min_size, max_size=self.max_size)

        if run_migrations:
            await self._run_migrations()

    async def close(self):
        """Close the connection pool"""
        if self._pool:
            await self._pool.close()
            self._pool = None
            self._logger.info("database_pool_closed")

    @asynccontextmanager
    async def acquire(self):
        """Acquire a connection from the pool"""
        if self._pool is None:
            await self.initialize()

        async with self._pool.acquire() as conn:
            yield conn

    async def fetch_one(self, query: str, *args) -> Optional[asyncpg.Record]:
        """Fetch a single row"""
        async with self.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def _run_migrations(self):
        async with self.acquire() as conn:
            for migration in MIGRATIONS:
                await conn.execute(migration)

        self._logger.info("database_migrations_complete", count=len(MIGRATIONS))
