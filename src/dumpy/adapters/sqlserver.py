"""
SQL Server Adapter
Pooled SQL Server access through aioodbc (pyodbc on a worker thread).

Requires the Microsoft ODBC driver on the host. The driver is imported
when a pool is opened so the other engines work without unixODBC.
"""

import asyncio
from typing import Any, Dict, List, Optional, Sequence

from ..core.models import ConnectionDescriptor, EngineKind, PoolHandle, PoolOptions
from .base import DEFAULT_CONNECT_TIMEOUT_SECONDS, EngineAdapter

ODBC_DRIVER = "ODBC Driver 18 for SQL Server"


class SQLServerAdapter(EngineAdapter):
    """Adapter for SQL Server using ``aioodbc.create_pool``."""

    engine_kind = EngineKind.SQLSERVER
    default_port = 1433

    def __init__(
        self,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
        driver: str = ODBC_DRIVER
    ):
        super().__init__(connect_timeout)
        self.driver = driver

    def build_connection_string(self, descriptor: ConnectionDescriptor) -> str:
        """Build the ODBC connection string."""
        parts = [
            f"DRIVER={{{self.driver}}}",
            f"SERVER={descriptor.host},{self.port_for(descriptor)}",
            f"DATABASE={descriptor.database_name}",
            f"UID={descriptor.username}",
            f"PWD={{{descriptor.password.replace('}', '}}')}}}",
            f"Encrypt={'yes' if descriptor.use_tls else 'no'}",
            "TrustServerCertificate=yes",
            f"Connection Timeout={int(self.connect_timeout)}",
        ]
        return ";".join(parts)

    async def _open_pool(
        self,
        descriptor: ConnectionDescriptor,
        pool_options: PoolOptions
    ) -> Any:
        import aioodbc

        return await aioodbc.create_pool(
            dsn=self.build_connection_string(descriptor),
            minsize=pool_options.min_size,
            maxsize=pool_options.max_size,
            pool_recycle=max(1, pool_options.idle_timeout_ms // 1000),
            autocommit=True,
            timeout=int(self.connect_timeout),
        )

    async def _close_pool(self, pool: Any) -> None:
        pool.close()
        await pool.wait_closed()

    async def _fetch(
        self,
        handle: PoolHandle,
        text: str,
        params: Sequence[Any] = ()
    ) -> List[Dict[str, Any]]:
        conn = await asyncio.wait_for(handle.pool.acquire(), timeout=handle.acquire_timeout)
        try:
            async with conn.cursor() as cursor:
                await cursor.execute(text, *params)
                if cursor.description is None:
                    return []
                columns = [desc[0] for desc in cursor.description]
                rows = await cursor.fetchall()
        finally:
            await handle.pool.release(conn)
        return [dict(zip(columns, row)) for row in rows]

    async def health_check(self, handle: PoolHandle) -> None:
        await self._fetch(handle, "SELECT GETDATE()")

    async def query(
        self,
        handle: PoolHandle,
        text: str,
        params: Optional[Sequence[Any]] = None
    ) -> List[Dict[str, Any]]:
        return await self._fetch(handle, text, tuple(params or ()))
