"""
Engine Adapter Interface
Uniform open / health-check / query / close surface over vendor pools.

Each adapter translates a ConnectionDescriptor into its driver's pool
construction call. Adapters never retry and never classify errors; driver
exceptions propagate to the ConnectionManager unchanged.
"""

import ssl
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from ..core.models import (
    DEFAULT_CONNECT_TIMEOUT_SECONDS,
    ConnectionDescriptor,
    EngineKind,
    PoolHandle,
    PoolOptions,
)


def insecure_ssl_context() -> ssl.SSLContext:
    """TLS without certificate verification, as the front-end expects for ``ssl: true``."""
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


class EngineAdapter(ABC):
    """Abstract adapter for one database engine."""

    engine_kind: EngineKind
    default_port: int

    def __init__(self, connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_SECONDS):
        self.connect_timeout = connect_timeout

    @abstractmethod
    async def _open_pool(
        self,
        descriptor: ConnectionDescriptor,
        pool_options: PoolOptions
    ) -> Any:
        """Create the vendor pool. Must fail if the server is unreachable."""
        pass

    @abstractmethod
    async def _close_pool(self, pool: Any) -> None:
        """Release every connection held by the vendor pool."""
        pass

    @abstractmethod
    async def health_check(self, handle: PoolHandle) -> None:
        """Run the cheapest possible round trip; raise if it fails."""
        pass

    @abstractmethod
    async def query(
        self,
        handle: PoolHandle,
        text: str,
        params: Optional[Sequence[Any]] = None
    ) -> List[Dict[str, Any]]:
        """Execute *text* and return the rows as dicts."""
        pass

    async def open(
        self,
        descriptor: ConnectionDescriptor,
        pool_options: Optional[PoolOptions] = None
    ) -> PoolHandle:
        """Open a pool for *descriptor* and wrap it in a PoolHandle."""
        options = (pool_options or descriptor.pool_options or PoolOptions()).resolved()
        pool = await self._open_pool(descriptor, options)
        return PoolHandle(
            engine_kind=self.engine_kind,
            pool=pool,
            database_name=descriptor.database_name,
            acquire_timeout=options.acquire_timeout_ms / 1000.0,
        )

    async def close(self, handle: PoolHandle) -> None:
        """Close the handle's pool. Closing twice is a no-op."""
        if handle.closed:
            return
        handle.closed = True
        await self._close_pool(handle.pool)

    def port_for(self, descriptor: ConnectionDescriptor) -> int:
        try:
            return descriptor.port_number
        except (TypeError, ValueError):
            return self.default_port
