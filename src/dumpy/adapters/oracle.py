"""
Oracle Adapter
Pooled Oracle access through python-oracledb's asyncio API (thin mode).

The database name of the descriptor is used as the service name of an
Easy Connect string: ``host:port/service``, or ``tcps://host:port/service``
when ``ssl`` is set.
"""

import asyncio
from typing import Any, Dict, List, Optional, Sequence

import oracledb

from ..core.models import ConnectionDescriptor, EngineKind, PoolHandle, PoolOptions
from .base import EngineAdapter


class OracleAdapter(EngineAdapter):
    """Adapter for Oracle using ``oracledb.create_pool_async``."""

    engine_kind = EngineKind.ORACLE
    default_port = 1521

    def build_dsn(self, descriptor: ConnectionDescriptor) -> str:
        scheme = "tcps://" if descriptor.use_tls else ""
        return (
            f"{scheme}{descriptor.host}:{self.port_for(descriptor)}"
            f"/{descriptor.database_name}"
        )

    async def _open_pool(
        self,
        descriptor: ConnectionDescriptor,
        pool_options: PoolOptions
    ) -> oracledb.AsyncConnectionPool:
        """Create the pool and check out one connection to prove it works."""
        pool = oracledb.create_pool_async(
            user=descriptor.username,
            password=descriptor.password,
            dsn=self.build_dsn(descriptor),
            min=pool_options.min_size,
            max=pool_options.max_size,
            increment=1,
            timeout=max(1, pool_options.idle_timeout_ms // 1000),
            getmode=oracledb.POOL_GETMODE_TIMEDWAIT,
            wait_timeout=pool_options.acquire_timeout_ms,
            tcp_connect_timeout=self.connect_timeout,
        )
        try:
            conn = await asyncio.wait_for(pool.acquire(), timeout=self.connect_timeout)
            await pool.release(conn)
        except Exception:
            await pool.close(force=True)
            raise
        return pool

    async def _close_pool(self, pool: oracledb.AsyncConnectionPool) -> None:
        await pool.close(force=True)

    async def health_check(self, handle: PoolHandle) -> None:
        async with handle.pool.acquire() as conn:
            await conn.ping()
            with conn.cursor() as cursor:
                await cursor.execute("SELECT SYSDATE FROM DUAL")
                await cursor.fetchone()

    async def query(
        self,
        handle: PoolHandle,
        text: str,
        params: Optional[Sequence[Any]] = None
    ) -> List[Dict[str, Any]]:
        async with handle.pool.acquire() as conn:
            with conn.cursor() as cursor:
                await cursor.execute(text, list(params or ()))
                if cursor.description is None:
                    await conn.commit()
                    return []
                columns = [desc[0] for desc in cursor.description]
                rows = await cursor.fetchall()
        return [dict(zip(columns, row)) for row in rows]
