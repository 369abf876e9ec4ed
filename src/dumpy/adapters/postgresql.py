"""
PostgreSQL Adapter
Pooled PostgreSQL access through asyncpg.

- Pool bounds and idle lifetime come from the descriptor's pool options
- ``ssl: true`` negotiates TLS without certificate verification
- Query parameters use asyncpg's positional ``$1`` placeholders
"""

from typing import Any, Dict, List, Optional, Sequence

import asyncpg

from ..core.models import ConnectionDescriptor, EngineKind, PoolHandle, PoolOptions
from .base import EngineAdapter, insecure_ssl_context


class PostgreSQLAdapter(EngineAdapter):
    """Adapter for PostgreSQL using ``asyncpg.create_pool``."""

    engine_kind = EngineKind.POSTGRESQL
    default_port = 5432

    async def _open_pool(
        self,
        descriptor: ConnectionDescriptor,
        pool_options: PoolOptions
    ) -> asyncpg.Pool:
        """Create the asyncpg pool; min_size connections are opened eagerly."""
        return await asyncpg.create_pool(
            host=descriptor.host,
            port=self.port_for(descriptor),
            user=descriptor.username,
            password=descriptor.password,
            database=descriptor.database_name,
            ssl=insecure_ssl_context() if descriptor.use_tls else None,
            min_size=pool_options.min_size,
            max_size=pool_options.max_size,
            max_inactive_connection_lifetime=pool_options.idle_timeout_ms / 1000.0,
            timeout=self.connect_timeout,
        )

    async def _close_pool(self, pool: asyncpg.Pool) -> None:
        await pool.close()

    async def health_check(self, handle: PoolHandle) -> None:
        async with handle.pool.acquire(timeout=handle.acquire_timeout) as conn:
            await conn.fetchval("SELECT NOW()")

    async def query(
        self,
        handle: PoolHandle,
        text: str,
        params: Optional[Sequence[Any]] = None
    ) -> List[Dict[str, Any]]:
        async with handle.pool.acquire(timeout=handle.acquire_timeout) as conn:
            rows = await conn.fetch(text, *(params or ()))
        return [dict(row) for row in rows]
