"""
MySQL Adapter
Pooled MySQL / MariaDB access through aiomysql.

Connections run in autocommit mode so INSERT/UPDATE statements pushed from
the data grid take effect without an explicit commit.
"""

import asyncio
from typing import Any, Dict, List, Optional, Sequence

import aiomysql

from ..core.models import ConnectionDescriptor, EngineKind, PoolHandle, PoolOptions
from .base import EngineAdapter, insecure_ssl_context


class MySQLAdapter(EngineAdapter):
    """Adapter for MySQL using ``aiomysql.create_pool``."""

    engine_kind = EngineKind.MYSQL
    default_port = 3306

    async def _open_pool(
        self,
        descriptor: ConnectionDescriptor,
        pool_options: PoolOptions
    ) -> aiomysql.Pool:
        return await aiomysql.create_pool(
            host=descriptor.host,
            port=self.port_for(descriptor),
            user=descriptor.username,
            password=descriptor.password,
            db=descriptor.database_name,
            ssl=insecure_ssl_context() if descriptor.use_tls else None,
            minsize=pool_options.min_size,
            maxsize=pool_options.max_size,
            pool_recycle=max(1, pool_options.idle_timeout_ms // 1000),
            connect_timeout=self.connect_timeout,
            autocommit=True,
        )

    async def _close_pool(self, pool: aiomysql.Pool) -> None:
        pool.close()
        await pool.wait_closed()

    async def _acquire(self, handle: PoolHandle) -> aiomysql.Connection:
        return await asyncio.wait_for(handle.pool.acquire(), timeout=handle.acquire_timeout)

    async def health_check(self, handle: PoolHandle) -> None:
        conn = await self._acquire(handle)
        try:
            await conn.ping(reconnect=False)
        finally:
            handle.pool.release(conn)

    async def query(
        self,
        handle: PoolHandle,
        text: str,
        params: Optional[Sequence[Any]] = None
    ) -> List[Dict[str, Any]]:
        conn = await self._acquire(handle)
        try:
            async with conn.cursor(aiomysql.DictCursor) as cursor:
                await cursor.execute(text, tuple(params) if params else None)
                if cursor.description is None:
                    return []
                return list(await cursor.fetchall())
        finally:
            handle.pool.release(conn)
